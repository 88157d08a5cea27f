from __future__ import annotations

import os
import time
from typing import Any

from .constants import K_BODY, K_ID, K_NICK, K_ROOM, K_SRC, K_T, K_TS, K_V, RRC_VERSION

# key -> (accepted types, name used in errors)
_REQUIRED: dict[int, tuple[tuple[type, ...], str]] = {
    K_V: ((int,), "protocol version"),
    K_T: ((int,), "message type"),
    K_ID: ((bytes, bytearray), "message id"),
    K_TS: ((int,), "timestamp"),
    K_SRC: ((bytes, bytearray), "sender identity"),
}


def now_ms() -> int:
    return int(time.time() * 1000)


def make_envelope(
    msg_type: int,
    *,
    src: bytes,
    room: str | None = None,
    body: Any = None,
    nick: str | None = None,
) -> dict:
    env: dict[int, Any] = {
        K_V: RRC_VERSION,
        K_T: int(msg_type),
        K_ID: os.urandom(8),
        K_TS: now_ms(),
        K_SRC: bytes(src),
    }
    if room is not None:
        env[K_ROOM] = room
    if body is not None:
        env[K_BODY] = body
    if nick is not None:
        env[K_NICK] = nick
    return env


def validate_envelope(env: Any) -> None:
    """Raise TypeError/ValueError unless ``env`` is a well-formed RRC envelope.

    Unknown integer keys are allowed (extensions).
    """
    if not isinstance(env, dict):
        raise TypeError("envelope must be a CBOR map (dict)")

    if any(not isinstance(k, int) or isinstance(k, bool) for k in env):
        raise TypeError("envelope keys must be integers")
    if any(k < 0 for k in env):
        raise ValueError("envelope keys must be unsigned integers")

    for key, (types, what) in _REQUIRED.items():
        if key not in env:
            raise ValueError(f"missing envelope key {key}")
        if not isinstance(env[key], types) or isinstance(env[key], bool):
            raise TypeError(f"{what} has wrong type {type(env[key]).__name__}")

    if env[K_V] != RRC_VERSION:
        raise ValueError(f"unsupported version {env[K_V]}")
    if env[K_TS] < 0:
        raise ValueError("timestamp must be unsigned")

    room = env.get(K_ROOM)
    if room is not None:
        if not isinstance(room, str):
            raise TypeError("room name must be a string")
        if not room:
            raise ValueError("room name must not be empty")

    nick = env.get(K_NICK)
    if nick is not None and not isinstance(nick, str):
        raise TypeError("nickname must be a string")
