from __future__ import annotations

import argparse
import os
import sys
from dataclasses import replace
from pathlib import Path

from .config import BridgeRuntimeConfig, apply_config_data, load_toml
from .logging_config import configure_logging
from .paths import (
    default_config_path,
    default_identity_path,
    default_store_path,
    ensure_private_dir,
)
from .service import BridgeService
from .util import random_string


def _write_default_config(config_path: str, store_path: str, identity_path: str) -> None:
    cfg_dir = os.path.dirname(config_path)
    if cfg_dir:
        ensure_private_dir(Path(cfg_dir))

    password = random_string(24)

    content = f"""# rrcbridge configuration (TOML)
#
# This file was created on first run.
# Edit it, then start rrcbridge again.

[bridge]

# Where bridge state (chats, connections, admins) is stored.
store_path = {store_path!r}

# Worker threads handling inbound events and outbound sends.
event_workers = 4
send_workers = 4

# Pairing tokens issued by /token are valid for this many seconds.
token_ttl_s = 3600.0

# If >0, periodically delete pending connections whose token expired.
token_cleanup_interval_s = 0.0

[auth]

# When enabled, /token, /list, /disconnect and /deauth require an admin.
# Users become admins by sending "/auth <password>" to the bot.
enabled = true
password = {password!r}

[rrc]

# Reticulum Relay Chat provider: connects to an RRC hub as a client.
enabled = false

# Destination hash (hex) of the hub, and its destination name.
hub = ""
dest_name = "rrc.hub"

# Optional: Reticulum configuration directory.
configdir = ""

# Where the bridge keeps its Reticulum identity (created if missing).
identity_path = {identity_path!r}

nick = "bridge"
rooms = []

# RRC hubs handle "/" lines themselves; bridge commands use this prefix.
command_prefix = "!"

# Identity hashes (hex) that are always treated as bridge admins.
admin_identities = []

# Seconds to wait for a path to the hub on startup.
path_timeout_s = 15.0

[logging]

level = "INFO"
rns_level = "WARNING"
console = true
file = ""
format = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
datefmt = ""
"""

    with open(config_path, "w", encoding="utf-8") as f:
        f.write(content)
    try:
        os.chmod(config_path, 0o600)
    except OSError:
        pass


def _ensure_first_run_files(config_path: str, store_path: str, identity_path: str) -> bool:
    if os.path.exists(config_path):
        return False
    _write_default_config(config_path, store_path, identity_path)
    return True


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="rrcbridge", description="Bridge chats between messaging networks"
    )

    p.add_argument(
        "--config",
        default=str(default_config_path()),
        help="Path to a TOML config file (created on first run)",
    )
    p.add_argument(
        "--store",
        default=None,
        help="Path to the state store (default comes from config)",
    )
    p.add_argument(
        "--identity",
        default=None,
        help="Path to the Reticulum identity used by the RRC provider",
    )
    p.add_argument("--configdir", default=None, help="Reticulum config directory")
    p.add_argument(
        "--no-auth",
        action="store_true",
        help="Let everybody run privileged commands",
    )
    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR). Default comes from config.",
    )
    p.add_argument(
        "--log-file",
        default=None,
        help="Log file path override (empty disables file logging). Default comes from config.",
    )

    return p


def build_config(args: argparse.Namespace) -> BridgeRuntimeConfig:
    cfg = BridgeRuntimeConfig(
        config_path=str(args.config),
        store_path=str(default_store_path()),
        rrc_identity_path=str(default_identity_path()),
    )
    if args.config and os.path.exists(args.config):
        cfg = apply_config_data(cfg, load_toml(args.config))

    if args.store is not None:
        cfg = replace(cfg, store_path=str(args.store))
    if args.identity is not None:
        cfg = replace(cfg, rrc_identity_path=str(args.identity))
    if args.configdir is not None:
        cfg = replace(cfg, rrc_configdir=str(args.configdir))
    if args.no_auth:
        cfg = replace(cfg, auth_enabled=False)
    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)
    return cfg


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    config_path = str(args.config)
    store_path = str(args.store or default_store_path())
    identity_path = str(args.identity or default_identity_path())

    if _ensure_first_run_files(config_path, store_path, identity_path):
        print(
            "Created a default rrcbridge config. Edit it before starting:\n"
            f"- Config: {config_path}\n"
            "\nEnable at least one provider, then re-run rrcbridge.",
            file=sys.stderr,
        )
        raise SystemExit(0)

    try:
        cfg = build_config(args)
    except (OSError, ValueError) as e:
        print(f"rrcbridge: bad config {config_path}: {e}", file=sys.stderr)
        raise SystemExit(2) from e

    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)

    try:
        svc = BridgeService(cfg)
    except ValueError as e:
        print(f"rrcbridge: {e}", file=sys.stderr)
        raise SystemExit(2) from e

    if cfg.rrc_enabled:
        from .rrc import RRCProvider

        svc.add_provider(RRCProvider(cfg))

    if not svc.providers.all():
        print(
            "rrcbridge: no providers enabled. Enable one in the config (e.g. [rrc] enabled = true).",
            file=sys.stderr,
        )
        raise SystemExit(1)

    try:
        svc.start()
    except RuntimeError:
        svc.log.exception("Startup failed")
        svc.stop()
        raise SystemExit(1)

    svc.run_forever()


if __name__ == "__main__":
    main()
