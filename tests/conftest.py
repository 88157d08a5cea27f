from __future__ import annotations

import re
import threading

import pytest

from rrcbridge.config import BridgeRuntimeConfig
from rrcbridge.constants import BOT_PREFIX, TOKEN_MARKER
from rrcbridge.models import Conversation, Message, Person, ProviderId
from rrcbridge.providers import Payload, Provider, ProviderError
from rrcbridge.service import BridgeService
from rrcbridge.store import DocumentStore

PASSWORD = "hunter2"


class FakeProvider(Provider):
    """Records everything sent; sends to conversations in ``failing`` raise."""

    def __init__(self, name: str, command_prefix: str = "/") -> None:
        self.name = name
        self.display_name = f"{name.title()} Network"
        self.command_prefix = command_prefix
        super().__init__()
        self.started = False
        self.failing: set[str] = set()
        self._sent: list[tuple[str, str]] = []
        self._sent_lock = threading.Lock()

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.started = False

    def send(self, conversation: Conversation, payload: Payload) -> None:
        native_id = conversation.provider_id.native_id
        if native_id in self.failing:
            raise ProviderError(f"cannot send to {native_id}")
        with self._sent_lock:
            self._sent.append((native_id, self.render(payload)))

    def sent_to(self, native_id: str) -> list[str]:
        with self._sent_lock:
            return [text for chat, text in self._sent if chat == native_id]

    def clear(self) -> None:
        with self._sent_lock:
            self._sent.clear()


class Clock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Bridge:
    """A started BridgeService with two fake networks, "alpha" and "beta"."""

    def __init__(self, service: BridgeService, clock: Clock) -> None:
        self.service = service
        self.clock = clock
        self.alpha = FakeProvider("alpha")
        self.beta = FakeProvider("beta")
        service.add_provider(self.alpha)
        service.add_provider(self.beta)

    def say(
        self,
        provider: FakeProvider,
        chat: str,
        body: str,
        *,
        user: str = "alice",
        admin: bool = False,
        title: str | None = None,
    ) -> None:
        """Publish one line as ``user`` in ``chat`` and wait until it is handled."""
        sender = Person(
            provider_id=ProviderId(provider.name, user),
            display_name=user,
            is_admin=admin,
        )
        conversation = Conversation(
            ProviderId(provider.name, chat), title=chat if title is None else title
        )
        provider.publish(Message(sender=sender, conversation=conversation, body=body))
        self.service.wait_idle()

    def replies(self, provider: FakeProvider, chat: str) -> list[str]:
        """Bot replies (not forwards) sent to ``chat``, without the bot prefix."""
        return [
            text[len(BOT_PREFIX) :]
            for text in provider.sent_to(chat)
            if text.startswith(BOT_PREFIX)
        ]

    def last_reply(self, provider: FakeProvider, chat: str) -> str:
        replies = self.replies(provider, chat)
        assert replies, f"no reply in {provider.name}:{chat}"
        return replies[-1]

    def issue_token(self, provider: FakeProvider, chat: str) -> str:
        self.say(provider, chat, "/token", admin=True)
        m = re.search(r"/connect (\S+)", self.last_reply(provider, chat))
        assert m is not None
        assert m.group(1).startswith(TOKEN_MARKER)
        return m.group(1)

    def pair(self, left: tuple[FakeProvider, str], right: tuple[FakeProvider, str]) -> None:
        token = self.issue_token(*left)
        self.say(right[0], right[1], f"/connect {token}")
        assert self.last_reply(*right).startswith("This chat is now connected to")


def make_config(**overrides) -> BridgeRuntimeConfig:
    values = {
        "auth_enabled": True,
        "auth_password": PASSWORD,
        "event_workers": 2,
        "send_workers": 2,
    }
    values.update(overrides)
    return BridgeRuntimeConfig(**values)


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def bridge_config() -> BridgeRuntimeConfig:
    return make_config()


@pytest.fixture
def bridge(bridge_config: BridgeRuntimeConfig, clock: Clock):
    service = BridgeService(bridge_config, store=DocumentStore(), clock=clock)
    harness = Bridge(service, clock)
    service.start()
    try:
        yield harness
    finally:
        service.stop()
