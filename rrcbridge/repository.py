"""Typed access to the bridge collections."""

from __future__ import annotations

import logging
from typing import Any

from .constants import C_CONNECTIONS, C_CONVERSATIONS, C_PERSONS
from .models import (
    Connection,
    ConnectionDirection,
    Conversation,
    PairingFailure,
    Person,
    ProviderId,
)
from .store import Document, DocumentStore


def _conversation_from_doc(doc: Document) -> Conversation:
    return Conversation(
        provider_id=ProviderId(str(doc["provider"]), str(doc["native_id"])),
        title=str(doc.get("title") or ""),
        id=doc["_id"],
    )


def _person_from_doc(doc: Document) -> Person:
    return Person(
        provider_id=ProviderId(str(doc["provider"]), str(doc["native_id"])),
        display_name=str(doc.get("display_name") or ""),
        profile_url=str(doc.get("profile_url") or ""),
        is_admin=bool(doc.get("is_admin", False)),
        id=doc["_id"],
    )


def _direction_from_doc(value: Any) -> ConnectionDirection:
    try:
        return ConnectionDirection(value)
    except ValueError:
        return ConnectionDirection.TWO_WAY


class BridgeRepository:
    """Store access for conversations, persons and connections.

    Connections reference conversations by id; every read resolves those
    references into Conversation objects.
    """

    def __init__(self, store: DocumentStore) -> None:
        self.store = store
        self.log = logging.getLogger("rrcbridge.repository")

    # Conversations

    def find_conversation(self, provider_id: ProviderId) -> Conversation | None:
        doc = self.store.find_one(
            C_CONVERSATIONS,
            provider=provider_id.provider,
            native_id=provider_id.native_id,
        )
        return _conversation_from_doc(doc) if doc is not None else None

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        doc = self.store.get(C_CONVERSATIONS, conversation_id)
        return _conversation_from_doc(doc) if doc is not None else None

    def find_or_insert_conversation(self, candidate: Conversation) -> Conversation:
        with self.store.locked():
            stored = self.find_conversation(candidate.provider_id)
            if stored is None:
                doc_id = self.store.insert(
                    C_CONVERSATIONS,
                    {
                        "provider": candidate.provider_id.provider,
                        "native_id": candidate.provider_id.native_id,
                        "title": candidate.title,
                    },
                )
                self.log.debug("New conversation %s id=%s", candidate.provider_id, doc_id)
                return Conversation(candidate.provider_id, candidate.title, id=doc_id)

            if candidate.title and stored.title != candidate.title:
                assert stored.id is not None
                self.store.update(C_CONVERSATIONS, stored.id, {"title": candidate.title})
                stored.title = candidate.title
            return stored

    # Persons

    def find_person(self, provider_id: ProviderId) -> Person | None:
        doc = self.store.find_one(
            C_PERSONS,
            provider=provider_id.provider,
            native_id=provider_id.native_id,
        )
        return _person_from_doc(doc) if doc is not None else None

    def insert_person(self, person: Person) -> Person:
        doc_id = self.store.insert(
            C_PERSONS,
            {
                "provider": person.provider_id.provider,
                "native_id": person.provider_id.native_id,
                "display_name": person.display_name,
                "profile_url": person.profile_url,
                "is_admin": bool(person.is_admin),
            },
        )
        person.id = doc_id
        return person

    def set_person_admin(self, person_id: str, is_admin: bool) -> bool:
        return self.store.update(C_PERSONS, person_id, {"is_admin": bool(is_admin)})

    def delete_persons(self, provider_id: ProviderId) -> int:
        return self.store.delete_where(
            C_PERSONS,
            provider=provider_id.provider,
            native_id=provider_id.native_id,
        )

    # Connections

    def _include(self, doc: Document) -> Connection | None:
        left = self.get_conversation(doc.get("left") or "")
        if left is None:
            self.log.warning("Connection %s references a missing conversation", doc["_id"])
            return None
        right = None
        right_id = doc.get("right")
        if right_id:
            right = self.get_conversation(right_id)
        return Connection(
            left=left,
            right=right,
            token=doc.get("token"),
            created_at=float(doc.get("created_at") or 0.0),
            direction=_direction_from_doc(doc.get("direction")),
            id=doc["_id"],
        )

    def _include_all(self, docs: list[Document]) -> list[Connection]:
        out: list[Connection] = []
        for doc in docs:
            conn = self._include(doc)
            if conn is not None:
                out.append(conn)
        return out

    def insert_connection(self, connection: Connection) -> Connection:
        assert connection.left.id is not None
        doc: Document = {
            "left": connection.left.id,
            "right": connection.right.id if connection.right is not None else None,
            "token": connection.token,
            "created_at": float(connection.created_at),
            "direction": connection.direction.value,
        }
        connection.id = self.store.insert(C_CONNECTIONS, doc)
        return connection

    def get_connection(self, connection_id: str) -> Connection | None:
        doc = self.store.get(C_CONNECTIONS, connection_id)
        return self._include(doc) if doc is not None else None

    def find_connection_by_token(self, token: str) -> Connection | None:
        doc = self.store.find_one(C_CONNECTIONS, token=token)
        return self._include(doc) if doc is not None else None

    def find_connections_of(self, conversation: Conversation) -> list[Connection]:
        """All connections with ``conversation`` on either side, pending included."""
        if conversation.id is None:
            stored = self.find_conversation(conversation.provider_id)
            if stored is None:
                return []
            conversation = stored
        conv_id = conversation.id
        return self._include_all(
            self.store.find_all(
                C_CONNECTIONS,
                lambda d: d.get("left") == conv_id or d.get("right") == conv_id,
            )
        )

    def find_completed_between(self, a: Conversation, b: Conversation) -> list[Connection]:
        pair = {a.id, b.id}
        if None in pair or len(pair) != 2:
            return []
        return self._include_all(
            self.store.find_all(
                C_CONNECTIONS,
                lambda d: bool(d.get("right")) and {d.get("left"), d.get("right")} == pair,
            )
        )

    def complete_pairing(
        self,
        connection: Connection,
        right: Conversation,
        direction: ConnectionDirection = ConnectionDirection.TWO_WAY,
    ) -> PairingFailure | None:
        """Atomically turn a pending connection into a completed one.

        Returns None on success, PairingFailure.USED when the connection is
        no longer pending and PairingFailure.DUPLICATE when a completed
        connection already links the same two conversations.
        """
        assert connection.id is not None and right.id is not None
        with self.store.locked():
            if self.find_completed_between(connection.left, right):
                return PairingFailure.DUPLICATE
            ok = self.store.update(
                C_CONNECTIONS,
                connection.id,
                {"right": right.id, "direction": direction.value},
                expect={"right": None},
            )
            if not ok:
                return PairingFailure.USED
        connection.right = right
        connection.direction = direction
        return None

    def set_direction(self, connection_id: str, direction: ConnectionDirection) -> bool:
        return self.store.update(C_CONNECTIONS, connection_id, {"direction": direction.value})

    def delete_connection(self, connection_id: str) -> bool:
        return self.store.delete(C_CONNECTIONS, connection_id)

    def delete_expired_pending(self, now: float, ttl_s: float) -> int:
        return self.store.delete_where(
            C_CONNECTIONS,
            lambda d: not d.get("right") and now > float(d.get("created_at") or 0.0) + ttl_s,
        )
