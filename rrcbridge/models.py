"""Entities shared by the bridge core and provider adapters."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

from .constants import EV_COMMAND, EV_MESSAGE


@dataclass(frozen=True)
class ProviderId:
    """Network name plus the network-native identifier of a chat or user."""

    provider: str
    native_id: str

    def __str__(self) -> str:
        return f"{self.provider}:{self.native_id}"


@dataclass
class Person:
    """A message sender.

    On inbound events ``is_admin`` is whatever the provider asserts about
    the sender. Persisted persons exist only for promoted admins.
    """

    provider_id: ProviderId
    display_name: str = ""
    profile_url: str = ""
    is_admin: bool = False
    id: str | None = None

    def __str__(self) -> str:
        if self.profile_url:
            return f"{self.display_name} [{self.profile_url}]"
        return self.display_name or str(self.provider_id)


@dataclass(eq=False)
class Conversation:
    """A chat room on one network. Identity is the ProviderId alone."""

    provider_id: ProviderId
    title: str = ""
    id: str | None = None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Conversation):
            return NotImplemented
        return self.provider_id == other.provider_id

    def __hash__(self) -> int:
        return hash(self.provider_id)

    def __str__(self) -> str:
        return f"{self.title or self.provider_id.native_id} ({self.provider_id.provider})"


class ConnectionDirection(enum.Enum):
    NONE = "none"
    TWO_WAY = "two_way"
    TO_LEFT = "to_left"
    TO_RIGHT = "to_right"


class PairingFailure(enum.Enum):
    """Why a pending connection could not be completed."""

    USED = "used"
    DUPLICATE = "duplicate"


@dataclass
class Connection:
    """A pairing between two conversations.

    ``right`` stays None while the pairing is pending; ``token`` is only
    honored while it is.
    """

    left: Conversation
    right: Conversation | None = None
    token: str | None = None
    created_at: float = 0.0
    direction: ConnectionDirection = ConnectionDirection.TWO_WAY
    id: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.right is None

    def is_expired(self, now: float, ttl_s: float) -> bool:
        return now > self.created_at + ttl_s

    def involves(self, conversation: Conversation) -> bool:
        return self.left == conversation or (
            self.right is not None and self.right == conversation
        )

    def other_side(self, conversation: Conversation) -> Conversation | None:
        if self.left == conversation:
            return self.right
        if self.right is not None and self.right == conversation:
            return self.left
        return None


@dataclass
class Message:
    sender: Person
    conversation: Conversation
    body: str


@dataclass
class Event:
    kind: str
    message: Message
    provider: str = field(default="")

    @property
    def is_command(self) -> bool:
        return self.kind == EV_COMMAND

    @classmethod
    def for_message(cls, message: Message, provider: str) -> Event:
        return cls(EV_MESSAGE, message, provider)

    @classmethod
    def for_command(cls, message: Message, provider: str) -> Event:
        return cls(EV_COMMAND, message, provider)
