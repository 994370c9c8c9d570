from __future__ import annotations

import argparse
import os
import sys
import time
from dataclasses import replace
from pathlib import Path

import RNS

from .bans import BanGuard
from .config import HubRuntimeConfig, apply_config_data, load_toml
from .logging_config import configure_logging
from .paths import (
    default_ban_file_path,
    default_config_path,
    default_identity_path,
    ensure_private_dir,
)
from .service import HubService


def _write_default_config(config_path: str, identity_path: str, ban_file_path: str) -> None:
    cfg_dir = os.path.dirname(config_path)
    if cfg_dir:
        ensure_private_dir(Path(cfg_dir))

    storage_dir = os.path.dirname(identity_path)
    if storage_dir:
        ensure_private_dir(Path(storage_dir))

    content = f"""# bonzid configuration (TOML)
#
# This file was created on first run.
# Edit it, then start bonzid again.

[hub]

# Optional: Reticulum configuration directory.
# If left unset, Reticulum will choose its default (usually ~/.reticulum).
configdir = ""

# Where bonzid stores its persistent identity (Reticulum Identity file).
identity_path = {identity_path!r}

# Timed and permanent bans, maintained with `bonzid --ban/--unban`.
ban_file_path = {ban_file_path!r}

# Destination name to host the hub on.
dest_name = "bonzi.hub"

# Announcing (Reticulum destination announces)
announce_on_start = true
announce_period_s = 0.0

hub_name = "bonzid"

# Identity hashes (hex) that are always refused.
banned_addresses = []

# Per-link inbound event budget.
rate_limit_events_per_minute = 240

# Events too large for one packet (room snapshots, long talk) are sent as a
# Reticulum Resource, announced by a small `resource` event.
# enable_resource_transfer: when false, oversized events are dropped
# max_resource_bytes: largest event sent this way (default: 256 KiB)
enable_resource_transfer = true
max_resource_bytes = 262144

# Colors accepted by the `color` command; new users get a random one.
palette = ["black", "blue", "brown", "green", "purple", "red"]

# Room preferences. Public rooms are handed out automatically to clients that
# do not ask for a room; private rooms are created by name.
#
# pitch/speed default may be an integer or "random" (uniform in [min, max]).
# runlevel maps a command name to the minimum runlevel needed to run it.
# godword enables `godmode <word>` (runlevel 3) in rooms of that kind.

[rooms.public]
room_max = 100
name_limit = 24
char_limit = 400
default_name = "Anonymous"
pitch = {{ min = 15, max = 125, default = "random" }}
speed = {{ min = 125, max = 275, default = 175 }}

[rooms.public.runlevel]

[rooms.private]
room_max = 20
name_limit = 24
char_limit = 400
default_name = "Anonymous"
pitch = {{ min = 15, max = 125, default = "random" }}
speed = {{ min = 125, max = 275, default = 175 }}

[rooms.private.runlevel]

[logging]

# Log level for bonzid itself.
level = "INFO"

# Log level for Reticulum/RNS Python logging (if used by your install).
rns_level = "WARNING"

# Log to stderr (systemd/journald friendly).
console = true

# Optional file path for logs (leave empty to disable).
file = ""

# Optional separate file for connect/disconnect records.
access_file = ""

# Log format and optional date format.
format = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
datefmt = ""
"""

    with open(config_path, "w", encoding="utf-8") as f:
        f.write(content)


def _ensure_first_run_files(config_path: str, identity_path: str, ban_file_path: str) -> bool:
    created_any = False

    if not os.path.exists(config_path):
        _write_default_config(config_path, identity_path, ban_file_path)
        created_any = True

    if not os.path.exists(identity_path):
        storage_dir = os.path.dirname(identity_path)
        if storage_dir:
            ensure_private_dir(Path(storage_dir))
        ident = RNS.Identity()
        ident.to_file(identity_path)
        try:
            os.chmod(identity_path, 0o600)
        except Exception:
            pass
        created_any = True

    if ban_file_path and not os.path.exists(ban_file_path):
        storage_dir = os.path.dirname(ban_file_path)
        if storage_dir:
            ensure_private_dir(Path(storage_dir))
        content = """# bonzid ban file (TOML)
#
# Maintained by `bonzid --ban/--unban`. Each ban is a table under [bans]
# keyed by the client's Reticulum Identity hash (hex):
#
#   [bans."0123abcd..."]
#   reason = "spam"
#   end = 1730003600.0   # unix seconds; 0 means permanent

[bans]
"""
        with open(ban_file_path, "w", encoding="utf-8") as f:
            f.write(content)
        try:
            os.chmod(ban_file_path, 0o600)
        except Exception:
            pass
        created_any = True

    return created_any


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="bonzid", description="Run a bonzid room hub")

    p.add_argument(
        "--config",
        default=str(default_config_path()),
        help="Path to a TOML config file (created on first run)",
    )
    p.add_argument("--configdir", default=None, help="Reticulum config directory")

    p.add_argument(
        "--identity",
        default=str(default_identity_path()),
        help="Path to hub identity file (created on first run)",
    )
    p.add_argument(
        "--ban-file",
        default=None,
        help="Path to the ban file (default comes from config, else ~/.bonzid/bans.toml)",
    )
    p.add_argument(
        "--dest-name", default=None, help="Destination app name (default: bonzi.hub)"
    )

    p.add_argument(
        "--no-announce",
        action="store_true",
        help="Disable announce on start (does not affect periodic announce)",
    )
    p.add_argument(
        "--announce-period",
        type=float,
        default=None,
        help="Periodic announce interval seconds (0 disables)",
    )
    p.add_argument("--hub-name", default=None, help="Hub name in announces")
    p.add_argument(
        "--rate-limit-events-per-minute",
        type=int,
        default=None,
        help="Per-link inbound event rate limit",
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

    bans = p.add_argument_group("ban management (edit the ban file and exit)")
    bans.add_argument("--ban", metavar="ADDRESS", default=None, help="Ban an identity hash")
    bans.add_argument("--reason", default="", help="Reason shown to the banned client")
    bans.add_argument(
        "--hours", type=float, default=None, help="Ban duration in hours (omit for permanent)"
    )
    bans.add_argument("--unban", metavar="ADDRESS", default=None, help="Lift a ban")
    bans.add_argument("--list-bans", action="store_true", help="Print current bans")

    return p


def _format_end(end: float) -> str:
    if end <= 0:
        return "permanent"
    return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(end))


def run_ban_command(args: argparse.Namespace, cfg: HubRuntimeConfig) -> int:
    guard = BanGuard(cfg.ban_file_path, cfg.banned_addresses)
    err = guard.load()
    if err:
        print(f"cannot read ban file {cfg.ban_file_path}: {err}", file=sys.stderr)
        return 1

    if args.ban is not None:
        entry = guard.add_ban(args.ban, reason=args.reason, hours=args.hours)
        guard.prune_expired()
        guard.save()
        print(f"banned {args.ban} until {_format_end(entry.end)}")
    elif args.unban is not None:
        if not guard.remove_ban(args.unban):
            print(f"not banned: {args.unban}", file=sys.stderr)
            return 1
        guard.prune_expired()
        guard.save()
        print(f"unbanned {args.unban}")
    else:
        bans = guard.list_bans()
        if not bans:
            print("no bans")
        for addr, entry in bans:
            state = " (expired)" if entry.expired() else ""
            print(f"{addr}  until={_format_end(entry.end)}{state}  reason={entry.reason!r}")
    return 0


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    config_path = str(args.config)
    identity_path = str(args.identity)
    ban_file_path = str(args.ban_file) if args.ban_file else str(default_ban_file_path())

    ban_mode = args.ban is not None or args.unban is not None or args.list_bans

    if not ban_mode and _ensure_first_run_files(config_path, identity_path, ban_file_path):
        print(
            "Created default bonzid files. Edit the configuration before starting:\n"
            f"- Config:   {config_path}\n"
            f"- Identity: {identity_path}\n"
            f"- Bans:     {ban_file_path}\n"
            "\nThen re-run bonzid.",
            file=sys.stderr,
        )
        raise SystemExit(0)

    cfg = HubRuntimeConfig(
        configdir=args.configdir,
        identity_path=identity_path,
        ban_file_path=ban_file_path,
    )
    cfg = replace(cfg, config_path=config_path)

    if config_path and os.path.exists(config_path):
        try:
            cfg = apply_config_data(cfg, load_toml(config_path))
        except Exception as e:
            print(f"invalid config {config_path}: {e}", file=sys.stderr)
            raise SystemExit(2)

    if args.ban_file:
        cfg = replace(cfg, ban_file_path=str(args.ban_file))

    if ban_mode:
        raise SystemExit(run_ban_command(args, cfg))

    if args.dest_name is not None:
        cfg = replace(cfg, dest_name=args.dest_name)

    if args.no_announce:
        cfg = replace(cfg, announce_on_start=False)
    if args.announce_period is not None:
        cfg = replace(cfg, announce_period_s=float(args.announce_period))

    if args.hub_name is not None:
        cfg = replace(cfg, hub_name=args.hub_name)

    if args.rate_limit_events_per_minute is not None:
        cfg = replace(
            cfg, rate_limit_events_per_minute=int(args.rate_limit_events_per_minute)
        )

    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)

    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)

    svc = HubService(cfg)
    svc.start()
    svc.run_forever()


if __name__ == "__main__":
    main()
