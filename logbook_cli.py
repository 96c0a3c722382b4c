"""Command line helper for the PsA Logbook store and its Drive backup."""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime
from typing import Optional

import db
from core import drive_sync
from core.drive_sync import DriveBackup
from core.errors import LogbookError
from core.events import EventFilter
from core.logging_config import configure_logging

logger = logging.getLogger(__name__)


def _format_ms(value: Optional[int]) -> str:
    if value is None:
        return "never"
    return datetime.fromtimestamp(value / 1000).strftime("%Y-%m-%d %H:%M")


def command_status(args: argparse.Namespace) -> int:
    status = args.backup.status()
    print(f"Configured     : {'yes' if status.configured else 'no'}")
    print(f"Connected      : {'yes' if status.connected else 'no'}")
    print(f"Drive folder   : {status.folder_id or '-'}")
    print(f"Drive file     : {status.file_id or '-'}")
    print(f"Last backup    : {_format_ms(status.last_backup_at)}")
    print(f"Last restore   : {_format_ms(status.last_restore_at)}")
    print(f"Local events   : {db.count_events()}")
    return 0


def command_connect(args: argparse.Namespace) -> int:
    args.backup.connect()
    print("Connected to Google Drive.")
    return 0


def command_backup(args: argparse.Namespace) -> int:
    result = args.backup.backup()
    print(f"{result.message} ({result.file_id})")
    return 0


def command_restore(args: argparse.Namespace) -> int:
    result = args.backup.restore()
    print(result.message)
    return 0


def command_reset(args: argparse.Namespace) -> int:
    args.backup.reset()
    print("Connection reset. Run 'connect' to authorise again.")
    return 0


def command_export(args: argparse.Namespace) -> int:
    count = drive_sync.export_json_file(args.path)
    print(f"Exported {count} event(s) to {args.path}")
    return 0


def command_import(args: argparse.Namespace) -> int:
    count = drive_sync.import_json_file(args.path)
    print(f"Imported {count} event(s) from {args.path}")
    return 0


def command_list(args: argparse.Namespace) -> int:
    filters = EventFilter(
        min_pain=args.min_pain,
        days=args.days,
        region_key=args.region,
        joint_key=args.joint,
    )
    events = db.list_events(filters)
    for event in events:
        region = event.region_key or event.region or "-"
        print(f"{_format_ms(event.start_at)}  pain={event.pain:<2} {region:<12} {event.id}")
    print(f"{len(events)} event(s)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="PsA Logbook store and Google Drive backup tool")
    subparsers = parser.add_subparsers(dest="command", required=True)

    status_parser = subparsers.add_parser("status", help="Show the Drive backup status")
    status_parser.set_defaults(func=command_status)

    connect_parser = subparsers.add_parser("connect", help="Authorise access to Google Drive")
    connect_parser.set_defaults(func=command_connect)

    backup_parser = subparsers.add_parser("backup", help="Upload every event to Google Drive")
    backup_parser.set_defaults(func=command_backup)

    restore_parser = subparsers.add_parser("restore", help="Merge the Drive backup into the local store")
    restore_parser.set_defaults(func=command_restore)

    reset_parser = subparsers.add_parser("reset", help="Forget the Drive session and cached ids")
    reset_parser.set_defaults(func=command_reset)

    export_parser = subparsers.add_parser("export", help="Write every event to a JSON file")
    export_parser.add_argument("path", help="Destination file")
    export_parser.set_defaults(func=command_export)

    import_parser = subparsers.add_parser("import", help="Merge events from a JSON export")
    import_parser.add_argument("path", help="Export file to read")
    import_parser.set_defaults(func=command_import)

    list_parser = subparsers.add_parser("list", help="List events, newest first")
    list_parser.add_argument("--min-pain", type=int, default=0, help="Minimum pain score")
    list_parser.add_argument("--days", type=int, default=None, help="Only the last N days")
    list_parser.add_argument("--region", default=None, help="Region key")
    list_parser.add_argument("--joint", default=None, help="Joint key")
    list_parser.set_defaults(func=command_list)

    return parser


def main(argv: list[str] | None = None, backup: Optional[DriveBackup] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging()
    args.backup = backup or DriveBackup()
    try:
        return args.func(args)
    except LogbookError as exc:
        logger.warning("Command '%s' failed: %s", args.command, exc)
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
