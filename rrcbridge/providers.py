"""Provider adapters: the network-specific side of the bridge."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Callable, Union

from .models import Conversation, Event, Message

Payload = Union[str, Message]
Publisher = Callable[[Event], None]


class ProviderError(Exception):
    """A provider could not deliver a message."""


def format_forward(message: Message) -> str:
    sender = message.sender.display_name or message.sender.provider_id.native_id
    return f"{sender} ({message.sender.provider_id.provider}): {message.body}"


class Provider(ABC):
    """
    Base class for chat network adapters.

    Subclasses implement:
    - start() / stop()
    - send() to deliver text or a forwarded message to one conversation

    and call publish() for every inbound chat line.
    """

    name: str = ""
    display_name: str = ""
    # Lines starting with this are commands. Bridge commands are always
    # handled in their "/name" form.
    command_prefix: str = "/"

    def __init__(self) -> None:
        self.log = logging.getLogger(f"rrcbridge.provider.{self.name or 'unnamed'}")
        self._publisher: Publisher | None = None

    @abstractmethod
    def start(self) -> None: ...

    @abstractmethod
    def stop(self) -> None: ...

    @abstractmethod
    def send(self, conversation: Conversation, payload: Payload) -> None:
        """Deliver ``payload``. Raises ProviderError (or anything) on failure."""

    def render(self, payload: Payload) -> str:
        if isinstance(payload, Message):
            return format_forward(payload)
        return str(payload)

    def is_command(self, text: str) -> bool:
        return text.lstrip().startswith(self.command_prefix)

    def bind(self, publisher: Publisher | None) -> None:
        self._publisher = publisher

    def publish(self, message: Message) -> None:
        publisher = self._publisher
        if publisher is None:
            self.log.debug(
                "Dropping inbound line from %s: provider is not registered",
                message.conversation.provider_id,
            )
            return
        if self.is_command(message.body):
            body = message.body.lstrip()
            if self.command_prefix != "/":
                body = "/" + body[len(self.command_prefix) :]
            publisher(Event.for_command(replace(message, body=body), self.name))
        else:
            publisher(Event.for_message(message, self.name))


class ProviderRegistry:
    """Providers currently attached to a bridge, keyed by network name."""

    def __init__(self, publisher: Publisher) -> None:
        self._publisher = publisher
        self._lock = threading.Lock()
        self._providers: dict[str, Provider] = {}

    def add(self, provider: Provider) -> None:
        if not provider.name:
            raise ValueError("provider has no name")
        with self._lock:
            if provider.name in self._providers:
                raise ValueError(f"provider {provider.name!r} is already registered")
            self._providers[provider.name] = provider
            provider.bind(self._publisher)

    def remove(self, provider: Provider) -> bool:
        with self._lock:
            if self._providers.get(provider.name) is not provider:
                return False
            del self._providers[provider.name]
            provider.bind(None)
            return True

    def get(self, name: str) -> Provider | None:
        with self._lock:
            return self._providers.get(name)

    def all(self) -> list[Provider]:
        with self._lock:
            return list(self._providers.values())

    def display_names(self) -> list[str]:
        return [p.display_name or p.name for p in self.all()]
