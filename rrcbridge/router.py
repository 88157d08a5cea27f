from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .models import Connection, ConnectionDirection, Conversation, Message

if TYPE_CHECKING:
    from .service import BridgeService


class MessageRouter:
    """
    Forwards ordinary chat messages across connections.

    For each connection touching the origin conversation:
    - NONE: nothing
    - TWO_WAY: to the other side
    - TO_LEFT: only right -> left
    - TO_RIGHT: only left -> right

    Forwards go through the outbound worker pool; a failed forward is
    logged there and never reported to the sender.
    """

    def __init__(self, hub: BridgeService) -> None:
        self.hub = hub
        self.log = logging.getLogger("rrcbridge.router")

    @staticmethod
    def target_for(connection: Connection, origin: Conversation) -> Conversation | None:
        if connection.right is None:
            return None

        direction = connection.direction
        if direction == ConnectionDirection.TWO_WAY:
            return connection.other_side(origin)
        if direction == ConnectionDirection.TO_LEFT and connection.right == origin:
            return connection.left
        if direction == ConnectionDirection.TO_RIGHT and connection.left == origin:
            return connection.right
        return None

    def route(self, message: Message) -> int:
        origin = message.conversation

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "Message received provider=%s conversation=%s",
                origin.provider_id.provider,
                origin.provider_id.native_id,
            )

        forwarded = 0
        for connection in self.hub.repository.find_connections_of(origin):
            target = self.target_for(connection, origin)
            if target is None:
                continue
            self.hub.notify(target, message)
            forwarded += 1

        if forwarded and self.log.isEnabledFor(logging.DEBUG):
            self.log.debug("Forwarding from %s to %d chat(s)", origin.provider_id, forwarded)
        return forwarded
