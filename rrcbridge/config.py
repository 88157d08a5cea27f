from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from typing import Any

from .constants import TOKEN_TTL_S


@dataclass(frozen=True)
class BridgeRuntimeConfig:
    config_path: str | None = None
    store_path: str | None = None
    auth_enabled: bool = True
    auth_password: str = ""
    token_ttl_s: float = TOKEN_TTL_S
    token_cleanup_interval_s: float = 0.0
    event_workers: int = 4
    send_workers: int = 4
    rrc_enabled: bool = False
    rrc_configdir: str | None = None
    rrc_identity_path: str | None = None
    rrc_hub: str | None = None
    rrc_dest_name: str = "rrc.hub"
    rrc_nick: str = "bridge"
    rrc_command_prefix: str = "!"
    rrc_rooms: tuple[str, ...] = ()
    rrc_admin_identities: tuple[str, ...] = ()
    rrc_path_timeout_s: float = 15.0
    log_level: str = "INFO"
    log_rns_level: str = "WARNING"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
    log_datefmt: str | None = None


# TOML table -> {file key: config field}
_TABLES: dict[str, dict[str, str]] = {
    "auth": {
        "enabled": "auth_enabled",
        "password": "auth_password",
    },
    "rrc": {
        "enabled": "rrc_enabled",
        "configdir": "rrc_configdir",
        "identity_path": "rrc_identity_path",
        "hub": "rrc_hub",
        "dest_name": "rrc_dest_name",
        "nick": "rrc_nick",
        "command_prefix": "rrc_command_prefix",
        "rooms": "rrc_rooms",
        "admin_identities": "rrc_admin_identities",
        "path_timeout_s": "rrc_path_timeout_s",
    },
    "logging": {
        "level": "log_level",
        "rns_level": "log_rns_level",
        "console": "log_console",
        "file": "log_file",
        "format": "log_format",
        "datefmt": "log_datefmt",
    },
}

_OPTIONAL_STRINGS = (
    "store_path",
    "rrc_configdir",
    "rrc_identity_path",
    "rrc_hub",
    "log_file",
    "log_datefmt",
)


def load_toml(path: str) -> dict:
    import tomllib

    with open(path, "rb") as f:
        data = tomllib.load(f)
    return data if isinstance(data, dict) else {}


def apply_config_data(base: BridgeRuntimeConfig, data: dict[str, Any]) -> BridgeRuntimeConfig:
    """Merge a parsed config document into ``base``.

    Keys of the ``[bridge]`` table map to fields directly; ``[auth]``,
    ``[rrc]`` and ``[logging]`` use short names. Unknown keys are ignored.
    """
    bridge = data.get("bridge")
    if isinstance(bridge, dict):
        data = {**data, **bridge}

    mapped: dict[str, Any] = {}
    for table_name, keys in _TABLES.items():
        table = data.get(table_name)
        if not isinstance(table, dict):
            continue
        for key, field_name in keys.items():
            if key in table:
                mapped[field_name] = table[key]
    data = {**data, **mapped}

    allowed = set(asdict(base).keys())
    # This identifies where the config came from; do not let the file override it.
    allowed.discard("config_path")
    updates = {k: v for k, v in data.items() if k in allowed}

    for list_key in ("rrc_rooms", "rrc_admin_identities"):
        if list_key in updates and isinstance(updates[list_key], list):
            updates[list_key] = tuple(str(x) for x in updates[list_key] if str(x).strip())

    for key in _OPTIONAL_STRINGS:
        if key in updates and updates[key] == "":
            updates[key] = None

    return replace(base, **updates) if updates else base


def validate_config(cfg: BridgeRuntimeConfig) -> None:
    if cfg.auth_enabled and not str(cfg.auth_password or "").strip():
        raise ValueError("auth is enabled but auth password is empty")
    if int(cfg.event_workers) < 1 or int(cfg.send_workers) < 1:
        raise ValueError("worker counts must be at least 1")
    if float(cfg.token_ttl_s) <= 0:
        raise ValueError("token_ttl_s must be positive")
    if cfg.rrc_enabled and not cfg.rrc_hub:
        raise ValueError("rrc provider is enabled but rrc hub is not set")
