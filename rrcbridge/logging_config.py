from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from .config import BridgeRuntimeConfig

_DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def parse_level(value: Any, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, int):
        return value
    text = str(value).strip().upper()
    if not text:
        return default
    if text == "WARN":
        text = "WARNING"
    # No TRACE level in stdlib logging.
    if text == "TRACE":
        text = "DEBUG"

    level = logging.getLevelName(text)
    if isinstance(level, int):
        return level

    try:
        return int(text)
    except ValueError:
        return default


def _file_handler(path_text: str) -> logging.Handler:
    p = Path(os.path.expanduser(path_text))
    p.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(p, encoding="utf-8")
    try:
        os.chmod(p, 0o600)
    except OSError:
        pass
    return handler


def configure_logging(
    cfg: BridgeRuntimeConfig,
    *,
    override_level: str | None = None,
    override_file: str | None = None,
) -> None:
    """Configure Python logging for rrcbridge.

    Replaces any handlers on the root logger, so it can be called again
    with a different config.
    """

    level = parse_level(override_level or cfg.log_level, logging.INFO)

    handlers: list[logging.Handler] = []
    if cfg.log_console:
        handlers.append(logging.StreamHandler())

    log_file = override_file if override_file is not None else cfg.log_file
    if log_file and str(log_file).strip():
        handlers.append(_file_handler(str(log_file)))

    fmt = str(cfg.log_format or "").strip() or _DEFAULT_FORMAT
    datefmt = cfg.log_datefmt or None
    formatter = logging.Formatter(fmt=fmt, datefmt=datefmt)

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    for h in handlers:
        h.setFormatter(formatter)
        root.addHandler(h)
    root.setLevel(level)

    # Reticulum is chatty at DEBUG; keep it on its own level.
    logging.getLogger("RNS").setLevel(parse_level(cfg.log_rns_level, logging.WARNING))

    logging.captureWarnings(True)
