#!/usr/bin/env python3
"""
Entry point for the snapsync command line.

  main.py login             authorize with Google Drive
  main.py import FILE...    add images to the local library
  main.py list              show local records and their sync state
  main.py edit ID k=v ...   change filter parameters (or --random)
  main.py export ID PATH    write the edited image (or --variant)
  main.py delete ID         remove a record from this device (Drive keeps its copy)
  main.py sync [--force]    one reconciliation pass, then drain
  main.py drain             drain queued sync work (for cron / background wake)
  main.py run               keep syncing on a timer until interrupted
"""

import argparse
import math
import sys
import time
from pathlib import Path

from snapsync.config import DATA_DIR
from snapsync.errors import SnapSyncError, StorageUnavailable, log_exception
from snapsync.logging_config import configure_logging, configure_ops_log
from snapsync.pubsub import SYNC
from snapsync.syncer import SnapSync


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Offline-first photo library synced with Google Drive")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging to stderr")
    parser.add_argument("--data-dir", type=Path, default=DATA_DIR)
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("login")
    sub.add_parser("logout")

    p = sub.add_parser("import")
    p.add_argument("files", nargs="+", type=Path)

    sub.add_parser("list")

    p = sub.add_parser("edit")
    p.add_argument("id", type=int)
    p.add_argument("params", nargs="*", metavar="NAME=VALUE")
    p.add_argument("--random", action="store_true", help="pick random filter values")

    p = sub.add_parser("export")
    p.add_argument("id", type=int)
    p.add_argument("path", type=Path)
    p.add_argument("--variant", choices=["original", "edited", "thumbnail"], default="edited")

    p = sub.add_parser("delete", help="remove a record from this device only; "
                       "a copy already on Drive comes back on the next sync")
    p.add_argument("id", type=int)

    p = sub.add_parser("sync")
    p.add_argument("--force", action="store_true", help="ignore the minimum interval")

    sub.add_parser("drain")

    p = sub.add_parser("run")
    p.add_argument("--background", action="store_true", help="drain on a separate worker")

    return parser.parse_args(argv)


def parse_params(pairs):
    params = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep:
            raise ValueError(f"Expected NAME=VALUE, got '{pair}'")
        number = float(value)
        if not math.isfinite(number):
            raise ValueError(f"{name.strip()} must be a finite number, got '{value}'")
        params[name.strip()] = number
    return params


def print_change(message):
    print(f"  {message['type']}: record {message['id']}")


def run_command(args, syncer: SnapSync):
    if args.command == "login":
        syncer.authenticate()
        print("Logged in.")

    elif args.command == "logout":
        syncer.logout()
        print("Logged out.")

    elif args.command == "import":
        for path in args.files:
            record_id = syncer.import_file(path)
            print(f"Imported {path} as record {record_id}")

    elif args.command == "list":
        records = syncer.records()
        if not records:
            print("No records.")
        for image in records:
            rec = image.record
            flags = "".join([
                "I" if rec.local_image_changes else "-",
                "F" if rec.local_filter_changes else "-",
                "-" if rec.transform.is_default else "E",
            ])
            print(f"{rec.id:5d}  {flags}  v{rec.last_sync_version:<4d} {rec.guid or '(not uploaded)'}")
        intents = syncer.store.list_intents()
        if intents:
            print(f"\n{len(intents)} queued sync intents:")
            for intent in intents:
                error = f"  ({intent.attempts} failed: {intent.last_error})" if intent.attempts else ""
                print(f"  {intent.direction:8s} {intent.key}{error}")

    elif args.command == "edit":
        if not args.random and not args.params:
            raise ValueError("Give NAME=VALUE pairs or --random")
        params = parse_params(args.params)
        if args.random:
            syncer.randomize(args.id)
        if params:
            syncer.edit(args.id, **params)
        print(f"Updated record {args.id}")

    elif args.command == "export":
        path = syncer.export(args.id, args.path, args.variant)
        print(f"Wrote {path}")

    elif args.command == "delete":
        guid = syncer.store.get_record(args.id).guid
        syncer.delete(args.id)
        print(f"Deleted record {args.id}")
        if guid:
            print(f"  Note: Drive still has {guid}; the next sync downloads it again.")

    elif args.command == "sync":
        result = syncer.sync_once(force=args.force)
        if result.skipped:
            print("Sync skipped (not logged in, offline, or synced too recently).")
        else:
            print(f"Sync pass: {len(result.uploads)} uploads, {len(result.downloads)} downloads, "
                  f"{len(result.removed)} removed")

    elif args.command == "drain":
        result = syncer.drain()
        print(f"Drained: {len(result.done)} done, {len(result.dropped)} dropped, "
              f"{len(result.failed)} left for retry")

    elif args.command == "run":
        syncer.start(background=args.background or None)
        print("Syncing. Ctrl+C to stop.")
        try:
            while True:
                syncer.deliver_changes()
                time.sleep(1)
        except KeyboardInterrupt:
            print("\nStopping...")


def main(argv=None):
    args = parse_args(argv)
    configure_logging(args.verbose)

    try:
        configure_ops_log(args.data_dir)
        syncer = SnapSync(data_dir=args.data_dir)
    except (OSError, StorageUnavailable) as e:
        print(f"Error: cannot open data directory: {e}", file=sys.stderr)
        return 1

    syncer.bus.subscribe(SYNC, print_change)
    try:
        run_command(args, syncer)
    except (SnapSyncError, ValueError, KeyError, OSError) as e:
        log_path = log_exception(e, args.data_dir / "errors.log", args.command)
        print(f"Error: {e} (details in {log_path})", file=sys.stderr)
        return 1
    finally:
        syncer.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
