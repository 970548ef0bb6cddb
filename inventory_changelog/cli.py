"""CLI for the inventory change log."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from typing import Any

from .app import ENV_VAR, ChangeLogApp
from .models import ChangeLogError
from .prompts import ConsolePrompt, StaticPrompt
from .time_utils import parse_timestamp_ms


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Inventory change log")
    parser.add_argument("--config", help="Path to configuration file", default=None)
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    commands = parser.add_subparsers(dest="command", required=True)

    manifest = commands.add_parser("manifest", help="Print sync manifest entries")
    bound = manifest.add_mutually_exclusive_group()
    bound.add_argument("--since", help="Lower bound (epoch ms or ISO-8601), inclusive")
    bound.add_argument("--pending", action="store_true", help="Only entries after the last sync marker")

    toggle = commands.add_parser("toggle", help="Undo or redo one log entry")
    toggle.add_argument("index", type=int, help="Position of the entry in the log")

    clear = commands.add_parser("clear", help="Empty the change log")
    clear.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    mark = commands.add_parser("mark-synced", help="Append a sync marker")
    mark.add_argument("sync_id", help="Sync session identifier")
    mark.add_argument("--timestamp", type=int, help="Epoch ms of the sync (default: now)")
    return parser


def _run(app: ChangeLogApp, args: argparse.Namespace) -> Any:
    prompt = StaticPrompt(True) if getattr(args, "yes", False) else ConsolePrompt()
    service = app.build_service(prompt=prompt)

    if args.command == "manifest":
        if args.pending:
            return service.get_pending_manifest()
        return service.get_manifest(parse_timestamp_ms(args.since))
    if args.command == "toggle":
        if service.get_entry(args.index) is None:
            raise IndexError(f"No existe la entrada {args.index} en el registro")
        toggled = service.toggle_entry(args.index)
        entry = service.get_entry(args.index)
        return {"index": args.index, "toggled": toggled, "undone": getattr(entry, "undone", None)}
    if args.command == "clear":
        return {"cleared": asyncio.run(service.clear_log())}
    marker = service.record_sync_checkpoint(args.sync_id, args.timestamp)
    return marker.to_dict()


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.debug:
        os.environ[ENV_VAR] = 'development'

    app = ChangeLogApp()
    try:
        app.initialize(args.config)
        result = _run(app, args)
    except (ChangeLogError, ValueError, IndexError) as exc:
        print(f"ERROR: {exc}")
        return 1
    finally:
        app.shutdown()

    print(json.dumps(result, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
