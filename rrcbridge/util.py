from __future__ import annotations

import os
import re
import secrets
import string

_ALPHABET = string.ascii_letters + string.digits

# Command name and arguments are separated by the first whitespace or
# underscore ("/disconnect_<id>" is clickable in most chat clients).
_COMMAND_SPLITTER = re.compile(r"[\s_]")


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def random_string(length: int) -> str:
    """Cryptographically random alphanumeric string."""
    if length <= 0:
        raise ValueError("length must be positive")
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def split_command(body: str) -> tuple[str, str | None]:
    """Split a command line into (command, args).

    ``args`` is None when the line has no splitter at all, otherwise it is
    the trimmed remainder (possibly empty).
    """
    text = body.strip()
    m = _COMMAND_SPLITTER.search(text)
    if m is None:
        return text, None
    return text[: m.start()].strip(), text[m.end() :].strip()


def parse_identity_hash(text: str) -> bytes:
    s = str(text).strip().lower()
    if s.startswith("0x"):
        s = s[2:]
    s = "".join(ch for ch in s if not ch.isspace())
    try:
        b = bytes.fromhex(s)
    except ValueError as e:
        raise ValueError(f"invalid identity hash {text!r}: {e}") from e
    if len(b) < 4:
        raise ValueError(f"identity hash too short: {text!r}")
    return b
