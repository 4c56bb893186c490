# =============================================================================
# cloudtree_core/__main__.py
# Operator CLI: python -m cloudtree_core <command>
# =============================================================================
"""
Command-line access to the offline stack for field operators and support.

Examples:
    python -m cloudtree_core status
    python -m cloudtree_core sync
    python -m cloudtree_core offline on
    python -m cloudtree_core history --limit 5
    python -m cloudtree_core export parameters --csv readings.csv
    python -m cloudtree_core reset --yes
"""

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional

from cloudtree_core.api.config_manager import APIConfigManager
from cloudtree_core.errors import CloudTreeError, handle_error
from cloudtree_core.logging import setup_logging
from cloudtree_core.offline.bootstrap import OfflineStack, build_offline_stack

EXPORT_TABLES = {
    "soils": "Soils",
    "parameters": "Parameters",
    "mappings": "ID_Mappings",
}


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cloudtree_core",
        description="Inspect and synchronize the CloudTree local soil database",
    )
    parser.add_argument("--config", type=Path, help="Path to cloudtree.toml")
    parser.add_argument("--db", type=Path, help="Override the local database path")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--log-file", action="store_true", help="Also log to logs/cloudtree_YYYY-MM-DD.log")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("status", help="Connectivity, offline mode and pending counts")
    commands.add_parser("push", help="Upload pending local changes")
    commands.add_parser("pull", help="Download backend data into the local database")
    commands.add_parser("sync", help="Push then pull")

    offline = commands.add_parser("offline", help="Force offline mode on or off")
    offline.add_argument("mode", choices=["on", "off"])

    history = commands.add_parser("history", help="Recent sync log entries")
    history.add_argument("--limit", type=int, default=10)

    export = commands.add_parser("export", help="Export a local table to CSV")
    export.add_argument("table", choices=sorted(EXPORT_TABLES))
    export.add_argument("--csv", type=Path, required=True, dest="csv_path")

    reset = commands.add_parser("reset", help="Wipe local data (preferences are kept)")
    reset.add_argument("--yes", action="store_true", help="Confirm the wipe")

    return parser


def run_command(stack: OfflineStack, args: argparse.Namespace) -> int:
    """Execute one parsed command against a started stack. Returns exit code."""
    if args.command == "status":
        status = stack.data_service.get_status()
        status["sync"] = stack.sync_engine.get_status_display()
        _print_json(status)
        return 0

    if args.command in ("push", "pull", "sync"):
        engine = stack.sync_engine
        operation = {
            "push": engine.sync_to_server,
            "pull": engine.sync_from_server,
            "sync": engine.full_sync,
        }[args.command]
        result = operation()
        _print_json(result.to_dict())
        return 0 if result.success else 1

    if args.command == "offline":
        stack.data_service.set_offline_mode(args.mode == "on")
        _print_json({"offline_mode": stack.data_service.get_offline_mode()})
        return 0

    if args.command == "history":
        entries = stack.sync_engine.get_sync_history(args.limit)
        _print_json([
            dict(asdict(entry), status=entry.status.value) for entry in entries
        ])
        return 0

    if args.command == "export":
        df = stack.local_db.to_dataframe(EXPORT_TABLES[args.table])
        df.to_csv(args.csv_path, index=False)
        print(f"Exported {len(df)} rows from {args.table} to {args.csv_path}")
        return 0

    if args.command == "reset":
        if not args.yes:
            print("Refusing to wipe local data without --yes", file=sys.stderr)
            return 2
        stack.local_db.clear()
        print("Local data cleared")
        return 0

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        log_to_file=args.log_file,
        sync_level=None if args.verbose else logging.INFO,
        stream=sys.stderr,
    )

    try:
        stack = build_offline_stack(APIConfigManager(args.config), db_path=args.db)
        stack.startup()
    except CloudTreeError as e:
        _print_json(handle_error(e, log_error=False))
        return 2

    try:
        return run_command(stack, args)
    except CloudTreeError as e:
        _print_json(handle_error(e))
        return 2
    finally:
        stack.shutdown()


if __name__ == "__main__":
    sys.exit(main())
