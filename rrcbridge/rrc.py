"""Reticulum Relay Chat (RRC) provider.

Connects to an RRC hub as an ordinary client over an RNS Link, joins the
configured rooms and exposes each room as a bridge conversation.

RRC hubs treat every line starting with "/" as a hub operator command,
so bridge commands are typed with ``rrc_command_prefix`` ("!token",
"!connect ...") in RRC rooms.
"""

from __future__ import annotations

import os
import threading
import time
from pathlib import Path
from typing import Any

import RNS

from . import __version__
from .codec import decode, encode
from .config import BridgeRuntimeConfig
from .constants import (
    B_HELLO_NAME,
    B_HELLO_VER,
    K_BODY,
    K_NICK,
    K_ROOM,
    K_SRC,
    K_T,
    RRC_PROVIDER,
    T_ERROR,
    T_HELLO,
    T_JOIN,
    T_JOINED,
    T_MSG,
    T_PING,
    T_PONG,
    T_WELCOME,
)
from .envelope import make_envelope, validate_envelope
from .models import Conversation, Message, Person, ProviderId
from .paths import default_identity_path, ensure_private_dir
from .providers import Payload, Provider, ProviderError
from .util import expand_path, parse_identity_hash

# Upper bound for one chunk of outgoing text; shrunk until it fits the MDU.
_MAX_CHUNK_CHARS = 512

# Delay before re-opening a dropped hub link; doubles per failed attempt.
_RECONNECT_MIN_S = 1.0
_RECONNECT_MAX_S = 60.0


class RRCProvider(Provider):
    name = RRC_PROVIDER
    display_name = "Reticulum Relay Chat"

    def __init__(self, config: BridgeRuntimeConfig) -> None:
        super().__init__()
        self.config = config
        self.command_prefix = config.rrc_command_prefix or "/"

        self._lock = threading.Lock()
        self.identity: RNS.Identity | None = None
        self.link: RNS.Link | None = None
        self._joined: set[str] = set()
        self._destination: RNS.Destination | None = None
        self._stopping = threading.Event()
        self._reconnect_thread: threading.Thread | None = None
        self._backoff_s = _RECONNECT_MIN_S
        self._admins: set[bytes] = {
            parse_identity_hash(h) for h in config.rrc_admin_identities if str(h).strip()
        }

    # Lifecycle

    def start(self) -> None:
        if not self.config.rrc_hub:
            raise RuntimeError("rrc hub destination hash is not set")
        hub_hash = parse_identity_hash(self.config.rrc_hub)
        expected_len = RNS.Reticulum.TRUNCATED_HASHLENGTH // 8
        if len(hub_hash) != expected_len:
            raise ValueError(
                f"rrc hub hash must be {expected_len} bytes, got {len(hub_hash)}"
            )

        self._stopping.clear()
        self.log.info("Starting Reticulum")
        RNS.Reticulum(configdir=self.config.rrc_configdir, require_shared_instance=False)
        self.identity = self._load_or_create_identity(
            self.config.rrc_identity_path or str(default_identity_path())
        )

        if not RNS.Transport.has_path(hub_hash):
            self.log.info("Requesting path to hub %s", hub_hash.hex())
            RNS.Transport.request_path(hub_hash)
            deadline = time.monotonic() + float(self.config.rrc_path_timeout_s)
            while not RNS.Transport.has_path(hub_hash):
                if time.monotonic() > deadline:
                    raise RuntimeError(f"no path to hub {hub_hash.hex()}")
                time.sleep(0.1)

        hub_identity = RNS.Identity.recall(hub_hash)
        if hub_identity is None:
            raise RuntimeError(f"could not recall hub identity {hub_hash.hex()}")

        parts = [p for p in str(self.config.rrc_dest_name).split(".") if p]
        if not parts:
            raise ValueError("rrc dest_name must not be empty")
        app_name, aspects = parts[0], parts[1:]

        destination = RNS.Destination(
            hub_identity,
            RNS.Destination.OUT,
            RNS.Destination.SINGLE,
            app_name,
            *aspects,
        )
        if destination.hash != hub_hash:
            self.log.warning(
                "Hub hash %s does not match dest_name %r (%s)",
                hub_hash.hex(),
                self.config.rrc_dest_name,
                destination.hash.hex(),
            )

        self._destination = destination
        self._open_link()

    def _open_link(self) -> None:
        destination = self._destination
        if destination is None:
            raise RuntimeError("hub destination is not known; start() first")
        link = RNS.Link(
            destination,
            established_callback=self._on_established,
            closed_callback=self._on_closed,
        )
        with self._lock:
            self.link = link

    def stop(self) -> None:
        self._stopping.set()
        with self._lock:
            link = self.link
            self.link = None
            self._joined.clear()
        if link is not None:
            try:
                link.teardown()
            except Exception:
                self.log.debug("Link teardown failed", exc_info=True)

    def _load_or_create_identity(self, path: str) -> RNS.Identity:
        p = expand_path(path)
        if os.path.exists(p):
            ident = RNS.Identity.from_file(p)
            if ident is None:
                raise RuntimeError(f"Failed to load identity from {p}")
            return ident

        storage_dir = os.path.dirname(p)
        if storage_dir:
            ensure_private_dir(Path(storage_dir))
        ident = RNS.Identity()
        ident.to_file(p)
        try:
            os.chmod(p, 0o600)
        except OSError:
            pass
        self.log.info("Created RRC client identity at %s", p)
        return ident

    # Link callbacks

    def _on_established(self, link: RNS.Link) -> None:
        if self.identity is None:
            return
        self._backoff_s = _RECONNECT_MIN_S
        link.set_packet_callback(lambda data, packet: self._on_packet(data))
        link.identify(self.identity)
        self._send_env(
            link,
            make_envelope(
                T_HELLO,
                src=self.identity.hash,
                body={B_HELLO_NAME: "rrcbridge", B_HELLO_VER: __version__},
                nick=self.config.rrc_nick,
            ),
        )
        self.log.info("Link to hub established, sent HELLO")

    def _on_closed(self, link: RNS.Link) -> None:
        with self._lock:
            if self.link is not link:
                # An older link; the current one is unaffected.
                return
            self.link = None
            self._joined.clear()

        if self._stopping.is_set():
            self.log.info("Link to hub closed")
            return
        self.log.warning("Link to hub closed, reconnecting in %.1fs", self._backoff_s)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        delay = self._backoff_s
        self._backoff_s = min(max(delay * 2, _RECONNECT_MIN_S), _RECONNECT_MAX_S)
        t = threading.Thread(
            target=self._reconnect_after,
            args=(delay,),
            name="rrcbridge-rrc-reconnect",
            daemon=True,
        )
        self._reconnect_thread = t
        t.start()

    def _reconnect_after(self, delay: float) -> None:
        if self._stopping.wait(delay):
            return
        try:
            self._open_link()
        except Exception:
            self.log.warning("Re-opening the hub link failed", exc_info=True)
            self._schedule_reconnect()
            return
        self.log.info("Opened a new link to hub")

    def _on_packet(self, data: bytes) -> None:
        try:
            env = decode(data)
            validate_envelope(env)
        except Exception as e:
            self.log.debug("Bad packet from hub bytes=%s err=%s", len(data), e)
            return
        try:
            self.handle_envelope(env)
        except Exception:
            self.log.exception("Failed to handle envelope t=%s", env.get(K_T))

    def handle_envelope(self, env: dict[int, Any]) -> None:
        t = env.get(K_T)
        room = env.get(K_ROOM)
        body = env.get(K_BODY)

        if t == T_PING:
            link = self.link
            if link is not None and self.identity is not None:
                self._send_env(link, make_envelope(T_PONG, src=self.identity.hash, body=body))
        elif t == T_WELCOME:
            self._join_rooms()
        elif t == T_JOINED:
            if isinstance(room, str) and room:
                with self._lock:
                    self._joined.add(room)
                self.log.info("Joined room %s", room)
        elif t == T_ERROR:
            self.log.warning("Hub error room=%r: %s", room, body)
            if isinstance(room, str) and isinstance(body, str) and body.startswith("kicked"):
                with self._lock:
                    self._joined.discard(room)
        elif t == T_MSG:
            self._on_room_message(env)

    def _join_rooms(self) -> None:
        link = self.link
        if link is None or self.identity is None:
            return
        for room in self.config.rrc_rooms:
            self._send_env(link, make_envelope(T_JOIN, src=self.identity.hash, room=room))

    def _is_own(self, env: dict[int, Any]) -> bool:
        return self.identity is not None and bytes(env[K_SRC]) == self.identity.hash

    def _on_room_message(self, env: dict[int, Any]) -> None:
        room = env.get(K_ROOM)
        body = env.get(K_BODY)
        src = bytes(env[K_SRC])
        if not isinstance(room, str) or not isinstance(body, str) or not body.strip():
            return
        # The hub echoes our own messages back to us.
        if self._is_own(env):
            return

        nick = env.get(K_NICK)
        sender = Person(
            provider_id=ProviderId(self.name, src.hex()),
            display_name=nick if isinstance(nick, str) and nick else src.hex()[:12],
            profile_url=f"rrc://{src.hex()}",
            is_admin=src in self._admins,
        )
        conversation = Conversation(ProviderId(self.name, room), title=room)
        self.publish(Message(sender=sender, conversation=conversation, body=body))

    # Sending

    def _send_env(self, link: RNS.Link, env: dict) -> None:
        payload = encode(env)
        if RNS.Packet(link, payload).send() is False:
            raise ProviderError("packet was not sent")

    def _fits(self, link: RNS.Link, payload: bytes) -> bool:
        mdu = getattr(link, "MDU", None)
        if mdu is None:
            return True
        return len(payload) <= int(mdu)

    def send(self, conversation: Conversation, payload: Payload) -> None:
        room = conversation.provider_id.native_id
        with self._lock:
            link = self.link
            joined = room in self._joined
        if link is None or self.identity is None or link.status != RNS.Link.ACTIVE:
            raise ProviderError("not connected to the hub")
        if not joined:
            raise ProviderError(f"not a member of room {room!r}")

        for env in self.build_chunks(link, room, self.render(payload)):
            self._send_env(link, env)

    def build_chunks(self, link: RNS.Link, room: str, text: str) -> list[dict]:
        """Split text into MSG envelopes that each fit the link MDU.

        Splits on lines first, then halves the chunk size until a piece fits.
        """
        assert self.identity is not None
        out: list[dict] = []
        for line in text.splitlines() or [text]:
            remaining = line
            max_chars = min(len(remaining), _MAX_CHUNK_CHARS)
            while remaining:
                chunk = remaining[:max_chars]
                env = make_envelope(
                    T_MSG,
                    src=self.identity.hash,
                    room=room,
                    body=chunk,
                    nick=self.config.rrc_nick,
                )
                if self._fits(link, encode(env)):
                    out.append(env)
                    remaining = remaining[len(chunk) :]
                    continue
                if max_chars <= 1:
                    raise ProviderError("message does not fit the link MDU")
                max_chars = max(1, max_chars // 2)
        return out
