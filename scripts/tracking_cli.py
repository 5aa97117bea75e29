#!/usr/bin/env python3
"""
Command-line front end for the tracking kernel.

Creates the schema, registers items, applies scanned transitions and prints
an item's history.  Settings come from tracking_kernel.config.load_settings()
(YAML file via --config or TRACKING_CONFIG_FILE, then TRACKING_* env vars);
--db-url overrides the database URL.

Usage:
    python3 scripts/tracking_cli.py init-db
    python3 scripts/tracking_cli.py register "Pallet 7" --actor-id <uuid> --role operator
    python3 scripts/tracking_cli.py scan ITM-... stored --actor-id <uuid> --role operator
    python3 scripts/tracking_cli.py history ITM-... [--verify] [--json]

Exit codes:
    0 success, 1 storage/configuration error, 2 rejected by the kernel
    (not found, duplicate, forbidden, conflict, validation).
"""

import argparse
import json
import sys
from dataclasses import asdict, replace
from pathlib import Path
from uuid import UUID

import yaml

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from tracking_kernel.config import load_settings  # noqa: E402
from tracking_kernel.db.engine import (  # noqa: E402
    create_tables,
    get_session_factory,
    init_engine_from_settings,
    session_scope,
)
from tracking_kernel.db.immutability import register_immutability_listeners  # noqa: E402
from tracking_kernel.domain.actor import ActorContext  # noqa: E402
from tracking_kernel.exceptions import (  # noqa: E402
    StorageError,
    TrackingKernelError,
    http_status_for,
)
from tracking_kernel.logging_config import configure_logging  # noqa: E402
from tracking_kernel.selectors.history_selector import HistorySelector  # noqa: E402
from tracking_kernel.services.transition_engine import TransitionEngine  # noqa: E402

W = 72


def hline(char: str = "=") -> str:
    return char * W


def field(name: str, value, indent: int = 2) -> None:
    print(f"{' ' * indent}{name}: {value}")


def _actor_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--actor-id", required=True, type=UUID, help="Acting user id (UUID)")
    p.add_argument("--role", required=True, help="admin | operator | qc | viewer")
    p.add_argument("--inactive", action="store_true", help="Act as a deactivated user")


def _parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Item tracking kernel CLI")
    p.add_argument("--config", default=None, help="YAML settings file")
    p.add_argument("--db-url", default=None, help="Database URL (overrides settings)")
    p.add_argument("--log-level", default=None, help="Log level (overrides settings)")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create tables and immutability triggers")

    reg = sub.add_parser("register", help="Register a new item")
    reg.add_argument("label")
    _actor_args(reg)

    scan = sub.add_parser("scan", help="Transition an item by code or id")
    scan.add_argument("ref", help="Scannable code or item id")
    scan.add_argument("status", help="Requested status")
    scan.add_argument("--note", default=None)
    _actor_args(scan)

    hist = sub.add_parser("history", help="Show an item's transition history")
    hist.add_argument("ref", help="Scannable code or item id")
    hist.add_argument("--verify", action="store_true", help="Verify the history chain")
    hist.add_argument("--json", action="store_true", help="Output JSON")

    return p.parse_args(argv)


def _cmd_init_db(args, settings) -> int:
    create_tables(install_triggers=True)
    print(f"  Schema ready at {settings.database_url}")
    return 0


def _cmd_register(args, settings) -> int:
    engine = TransitionEngine.from_settings(settings, get_session_factory())
    actor = ActorContext(id=args.actor_id, role=args.role, is_active=not args.inactive)
    record = engine.register_item(args.label, actor)
    field("id", record.id)
    field("code", record.code)
    field("status", record.status.value)
    return 0


def _cmd_scan(args, settings) -> int:
    engine = TransitionEngine.from_settings(settings, get_session_factory())
    actor = ActorContext(id=args.actor_id, role=args.role, is_active=not args.inactive)
    result = engine.execute(args.ref, args.status, actor, note=args.note)
    field("code", result.item.code)
    field("transition", f"{result.event.from_status.value} -> {result.event.to_status.value}")
    field("seq", result.event.seq)
    field("attempts", result.attempts)
    return 0


def _cmd_history(args, settings) -> int:
    with session_scope(read_only=True) as session:
        selector = HistorySelector(session)
        item = selector.get_item(args.ref)
        events = selector.events_for_item(item.id)
        verified = selector.verify_chain(item.id) if args.verify else None

    if args.json:
        payload = {
            "item": asdict(item),
            "events": [asdict(e) for e in events],
            "verified_events": verified,
        }
        print(json.dumps(payload, default=str, indent=2))
        return 0

    print(hline())
    print(f"  {item.code}  {item.label}")
    print(f"  status={item.status.value}  version={item.version}")
    print(hline("-"))
    for event in events:
        print(
            f"  #{event.seq:<3} {event.occurred_at:%Y-%m-%d %H:%M:%S}  "
            f"{event.from_status.value:>10} -> {event.to_status.value:<10}  "
            f"{event.actor_role.value:<8} {event.actor_id}"
        )
    if verified is not None:
        print(hline("-"))
        print(f"  chain verified ({verified} events)")
    return 0


_COMMANDS = {
    "init-db": _cmd_init_db,
    "register": _cmd_register,
    "scan": _cmd_scan,
    "history": _cmd_history,
}


def main(argv=None) -> int:
    args = _parse_args(argv)

    try:
        settings = load_settings(config_file=args.config)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        print(f"  ERROR: invalid configuration: {exc}", file=sys.stderr)
        return 1

    configure_logging(level=(args.log_level or settings.log_level).upper(), stream=sys.stderr)
    if args.db_url:
        settings = replace(settings, database_url=args.db_url)

    init_engine_from_settings(settings)
    register_immutability_listeners()

    try:
        return _COMMANDS[args.command](args, settings)
    except StorageError as exc:
        print(f"  ERROR [{exc.code}]: {exc}", file=sys.stderr)
        return 1
    except TrackingKernelError as exc:
        print(f"  REJECTED [{exc.code} / {http_status_for(exc)}]: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
