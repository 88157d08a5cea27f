"""Command handling for bridge chat commands."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from . import __version__
from .constants import (
    BOT_PREFIX,
    CURRENT_CHAT_MARK,
    ERROR_ID_LENGTH,
    TOKEN_LENGTH,
    TOKEN_MARKER,
)
from .models import Connection, Conversation, Event, PairingFailure, ProviderId
from .store import parse_id
from .util import random_string, split_command

if TYPE_CHECKING:
    from .service import BridgeService

Handler = Callable[[Event, str, "str | None"], None]


class CommandHandler:
    """Parses command lines, applies the admin gate and runs the handlers."""

    def __init__(self, hub: BridgeService) -> None:
        self.hub = hub
        self.log = logging.getLogger("rrcbridge.commands")

        # command -> (handler, admin only)
        self._commands: dict[str, tuple[Handler, bool]] = {
            "/auth": (self._on_auth, False),
            "/start": (self._on_start, False),
            # Anybody may use a connection token; it keeps setup simple.
            "/connect": (self._on_connect, False),
            "/deauth": (self._on_deauth, True),
            "/token": (self._on_token, True),
            "/list": (self._on_list, True),
            "/disconnect": (self._on_disconnect, True),
        }

    def _reply(self, conversation: Conversation, text: str) -> None:
        self.hub.send_now(conversation, BOT_PREFIX + text)

    def handle(self, event: Event) -> bool:
        """Handle one command event.

        Returns True if the command was recognized. Unknown commands get no
        reply.
        """
        message = event.message
        conversation = message.conversation
        body = message.body

        self.log.debug(
            "Command received provider=%s conversation=%s",
            conversation.provider_id.provider,
            conversation.provider_id.native_id,
        )

        command, args = split_command(body)
        entry = self._commands.get(command)
        if entry is None:
            self.log.debug("Unknown command: %r", command)
            return False

        handler, admin_only = entry
        try:
            if admin_only and not self._ensure_has_admin_rights(event):
                return True
            handler(event, command, args)
        except Exception:
            error_id = random_string(ERROR_ID_LENGTH)
            self.log.exception(
                "Failed to process command: %r [error_id=%s]", body, error_id
            )
            try:
                self._reply(
                    conversation,
                    "Could not run the command because of an internal error.\n"
                    f"Please report this error id to the bot operator: {error_id}",
                )
            except Exception:
                self.log.warning(
                    "Could not report error_id=%s to %s",
                    error_id,
                    conversation.provider_id,
                    exc_info=True,
                )
        return True

    def _ensure_has_admin_rights(self, event: Event) -> bool:
        sender = event.message.sender
        if self.hub.auth.has_admin_rights(sender):
            return True

        self.log.debug(
            "Command execution access denied for %s",
            sender.profile_url or sender.provider_id,
        )
        self._reply(
            event.message.conversation,
            "Not enough rights to run this command. Authorize with "
            "/auth <bot password> (you can send it in a direct chat, I will remember you)",
        )
        return False

    def _on_start(self, event: Event, command: str, args: str | None) -> None:
        networks = ", ".join(self.hub.providers.display_names()) or "(none)"
        self._reply(
            event.message.conversation,
            "Hi! I am a bridge bot.\n"
            "I connect chats on different networks by forwarding messages between them.\n"
            "1) Make sure the bot can read all messages in the chat.\n"
            "2) Type /token in the main chat to get a command for connecting another chat.\n"
            "3) Send that command in the other chat, where this bot is present too.\n"
            "Type /list to see the current connections.\n"
            "\n"
            f"Supported networks: {networks}\n"
            f"Bot version: {__version__}",
        )

    def _on_auth(self, event: Event, command: str, args: str | None) -> None:
        conversation = event.message.conversation
        if not self.hub.auth.enabled:
            self._reply(conversation, "This bot does not require authorization")
            return

        if not self.hub.auth.check_password(args):
            self._reply(conversation, "Wrong password")
            return

        sender = event.message.sender
        if not self.hub.auth.promote(sender):
            self._reply(conversation, "User is already an admin")
            return
        self._reply(conversation, f"User {sender} is now an admin")

    def _on_deauth(self, event: Event, command: str, args: str | None) -> None:
        conversation = event.message.conversation
        if not self.hub.auth.enabled:
            self._reply(conversation, "This bot does not require authorization")
            return

        sender = event.message.sender
        if args:
            provider_id = ProviderId(sender.provider_id.provider, args)
        else:
            provider_id = sender.provider_id

        person = self.hub.auth.demote(provider_id)
        if person is None:
            self._reply(conversation, "User not found")
            return
        self._reply(conversation, f"User {person} is no longer an admin")

    def _on_token(self, event: Event, command: str, args: str | None) -> None:
        conversation = self.hub.repository.find_or_insert_conversation(
            event.message.conversation
        )

        connection = self.hub.repository.insert_connection(
            Connection(
                left=conversation,
                token=random_string(TOKEN_LENGTH),
                created_at=self.hub.now(),
            )
        )
        self.log.info("Issued pairing token connection=%s left=%s", connection.id, conversation.provider_id)

        self._reply(
            conversation,
            "Command for connecting chats:\n"
            f"/connect {TOKEN_MARKER}{connection.token}\n"
            "\n"
            "Send this command in another chat to connect it to this one",
        )

    def _on_connect(self, event: Event, command: str, args: str | None) -> None:
        conversation = self.hub.repository.find_or_insert_conversation(
            event.message.conversation
        )

        if not args:
            self._reply(
                conversation,
                "Usage:\n/connect <token>\n\n"
                "Where <token> is the key for connecting to another chat. "
                "Type /token to get one",
            )
            return

        token = args.strip()
        if not token.startswith(TOKEN_MARKER):
            self._reply(conversation, "Connection key is invalid")
            return
        token = token[len(TOKEN_MARKER) :]

        connection = self.hub.repository.find_connection_by_token(token)
        if connection is None:
            self._reply(conversation, "Connection key is invalid")
            return

        if not connection.is_pending or connection.is_expired(
            self.hub.now(), self.hub.config.token_ttl_s
        ):
            self._reply(conversation, "Connection key is outdated")
            return

        if connection.left == conversation:
            self._reply(
                conversation,
                "You cannot connect a chat to itself.\n"
                "Please send this command in another chat with this bot",
            )
            return

        if self.hub.repository.find_completed_between(connection.left, conversation):
            self._reply(conversation, "These chats are already connected to each other")
            return

        try:
            self.hub.send_now(
                connection.left,
                f"{BOT_PREFIX}This chat is now connected to {conversation}\n"
                "/list - list of all connections",
            )
        except Exception:
            self.log.warning(
                "Could not send test message to conversation %s while connecting",
                connection.left.provider_id,
                exc_info=True,
            )
            self._reply(
                conversation,
                f"Cannot connect chat {connection.left}: failed to send a test message "
                "(was the bot removed from that chat?)",
            )
            return

        failure = self.hub.repository.complete_pairing(connection, conversation)
        if failure is PairingFailure.DUPLICATE:
            self._reply(conversation, "These chats are already connected to each other")
            return
        if failure is not None:
            self._reply(conversation, "Connection key is outdated")
            return

        self.log.info(
            "Connected %s <-> %s connection=%s",
            connection.left.provider_id,
            conversation.provider_id,
            connection.id,
        )
        self._reply(
            conversation,
            f"This chat is now connected to {connection.left}\n"
            "/list - list of all connections",
        )

    def _on_list(self, event: Event, command: str, args: str | None) -> None:
        conversation = self.hub.repository.find_or_insert_conversation(
            event.message.conversation
        )

        connections = self.hub.repository.find_connections_of(conversation)
        if not connections:
            self._reply(conversation, "No connected chats. Type /start to begin")
            return

        lines = ["Connected chats:"]
        for i, connection in enumerate(connections, start=1):
            left = self._list_side(connection.left, conversation)
            right = self._list_side(connection.right, conversation)
            lines.append(f"{i}. {left} <--> {right} /disconnect_{connection.id}")

        self._reply(conversation, "\n".join(lines))

    @staticmethod
    def _list_side(side: Conversation | None, current: Conversation) -> str:
        if side is None:
            return "<NONE>"
        if side == current:
            return f"{CURRENT_CHAT_MARK}{side}"
        return str(side)

    def _on_disconnect(self, event: Event, command: str, args: str | None) -> None:
        conversation = event.message.conversation

        if not args:
            self._reply(
                conversation,
                "Usage:\n/disconnect <connectionId>\n\n"
                "Where <connectionId> is the id of the connection. Type /list to see it",
            )
            return

        connection = None
        try:
            connection = self.hub.repository.get_connection(parse_id(args))
        except ValueError:
            connection = None

        if connection is None or not connection.involves(conversation):
            self._reply(conversation, "Connection with this id was not found")
            return

        assert connection.id is not None
        other = connection.other_side(conversation)
        self.hub.repository.delete_connection(connection.id)
        self.log.info("Disconnected connection=%s", connection.id)

        if other is None:
            # Pending connection: there is nobody else to tell.
            self.hub.notify(conversation, f"{BOT_PREFIX}Pending connection {connection.id} removed")
            return

        self.hub.notify(conversation, f"{BOT_PREFIX}Chat {other} disconnected")
        self.hub.notify(other, f"{BOT_PREFIX}Chat {conversation} disconnected")
