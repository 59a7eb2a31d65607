#!/usr/bin/env python
"""
Bill folder tracker command line.

Usage examples:
    bill-tracker init ~/Bills --gst ~/GST --select-all
    bill-tracker sync
    bill-tracker mark-sent ~/Bills/June/report.pdf --month 2025-07
    bill-tracker undo
    bill-tracker watch --interval 30
"""

import argparse
import logging
import os
import sys
import time
from typing import List, Optional

import requests
from dotenv import load_dotenv

from auto_sync import AutoSyncScheduler
from bill_models import ReconcileResult, TreeNode
from bill_tracker import BillTracker
from month_utils import format_bill_month
from notifier import get_webhook_url, post_sync_summary
from report import filter_files
from sync_lock import LockBusyError, SyncLock
from tracker_errors import TrackerError

MUTATING_COMMANDS = {
    "init", "config", "sync", "mark-sent", "mark-pending", "set-month",
    "ignore", "undo", "redo", "tag", "remind", "report",
}


def _abs(paths: List[str]) -> List[str]:
    return [os.path.abspath(p) for p in paths]


def _print_errors(errors):
    for e in errors:
        print(f"  ⚠️ {e}")


def _print_tree(nodes: List[TreeNode], indent: int = 0):
    for node in nodes:
        print(f"{'  ' * indent}📁 {node.name}")
        _print_tree(node.children, indent + 1)


def _print_sync(result: Optional[ReconcileResult]):
    if result is None:
        print("⏳ A sync is already running, request skipped")
        return
    print(f"🔄 Scanned {len(result.files)} bills in {result.duration_ms} ms")
    if result.gst_checked:
        if result.changed:
            print(f"✅ Auto-updated {len(result.updated)} bill(s) from GST folder, {len(result.removed)} reverted to pending")
        else:
            print("✅ Tracking is up to date with the GST folder")
    _print_errors(result.errors)


def _notify(tracker: BillTracker, result: Optional[ReconcileResult]):
    if result is None or not result.changed:
        return
    if not (tracker.config and tracker.config.settings.notifications and get_webhook_url()):
        return
    try:
        post_sync_summary(result)
    except (requests.RequestException, RuntimeError) as e:
        print(f"⚠️ Slack notification failed: {e}")


def _parse_setting(value: str):
    lowered = value.lower()
    if lowered in ("true", "yes", "on", "1"):
        return True
    if lowered in ("false", "no", "off", "0"):
        return False
    if value.isdigit():
        return int(value)
    return value


def cmd_init(tracker: BillTracker, args) -> int:
    structure = tracker.select_root_folder(args.root)
    print(f"✅ Root folder: {tracker.config.root_path}")
    _print_errors(structure.errors)
    if args.select_all:
        tracker.set_selected_subfolders(sf.path for sf in structure.subfolders if sf.depth == 1)
    elif args.select:
        tracker.set_selected_subfolders(args.select)
    if args.gst:
        tracker.set_gst_submitted_root(args.gst)
        print(f"✅ GST submitted folder: {tracker.gst_root}")
    print(f"📂 {len(tracker.config.selected_subfolders)} subfolder(s) selected")
    return 0


def cmd_config(tracker: BillTracker, args) -> int:
    config = tracker.require_config()
    if args.gst is not None:
        tracker.set_gst_submitted_root(args.gst or None)
    if args.select:
        tracker.set_selected_subfolders(args.select)
    if args.ignore_subfolder is not None:
        tracker.set_ignored_subfolders(args.ignore_subfolder)
    if args.set:
        changes = {}
        for item in args.set:
            key, _, value = item.partition("=")
            changes[key.strip()] = _parse_setting(value.strip())
        tracker.update_settings(**changes)
    print(f"📁 Root: {config.root_path}")
    print(f"📤 GST submitted folder: {config.gst_submitted_root_path or '-'}")
    print(f"✅ Selected: {', '.join(sorted(config.selected_subfolders)) or '-'}")
    print(f"🚫 Ignored subfolders: {', '.join(sorted(config.ignored_subfolders)) or '-'}")
    print(f"🚫 Ignored files: {len(config.ignored_files)}")
    for key, value in vars(config.settings).items():
        print(f"   {key} = {value}")
    return 0


def cmd_scan(tracker: BillTracker, args) -> int:
    structure = tracker.folder_structure()
    _print_tree(structure.tree)
    _print_errors(structure.errors)
    return 0


def cmd_sync(tracker: BillTracker, args) -> int:
    result = tracker.refresh()
    _print_sync(result)
    _notify(tracker, result)
    return 0


class LockedAutoSync(AutoSyncScheduler):
    """Reloads state written by other commands and reconciles under the sync lock."""

    def __init__(self, tracker: BillTracker, interval_minutes: float, lock: SyncLock, **kwargs):
        super().__init__(tracker.engine, interval_minutes, **kwargs)
        self.tracker = tracker
        self.lock = lock
        self.owner = f"watch:{os.getpid()}"

    def tick(self):
        try:
            with self.lock.held(self.owner, wait_seconds=5):
                self.tracker.config = self.tracker.config_store.load()
                self.tracker.store.load()
                return super().tick()
        except LockBusyError as e:
            print(f"⏳ {e}")
            self.skipped += 1
            return None


def cmd_watch(tracker: BillTracker, args) -> int:
    settings = tracker.require_config().settings
    interval = args.interval or settings.sync_interval
    if not settings.auto_sync_gst and not args.interval:
        print("⚠️ Auto-sync is disabled in settings (auto_sync_gst=false)")
        return 1

    def on_result(result):
        _print_sync(result)
        _notify(tracker, result)

    def on_error(error):
        print(f"❌ Auto-sync failed: {error}")

    lock = SyncLock(tracker.data_dir, tracker.defaults["lock"]["timeout_seconds"])
    scheduler = LockedAutoSync(tracker, interval, lock, on_result=on_result, on_error=on_error)
    scheduler.tick()
    scheduler.start()
    print(f"👀 Watching every {interval} minute(s). Ctrl+C to stop")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        print("\n🛑 Stopping")
    finally:
        scheduler.stop(timeout=5)
    return 0


def cmd_status(tracker: BillTracker, args) -> int:
    result = tracker.refresh()
    if result is None:
        print("⏳ A sync is already running")
        return 1
    records = tracker.store.all()
    files = filter_files(
        result.files, records,
        search=args.search or "",
        file_type=args.type or "all",
        status=args.status or "all",
        sort_by=args.sort,
        descending=args.desc,
    )
    for f in files:
        record = records.get(f.path)
        icon = "✅" if record and record.is_sent else "⏳"
        bill = format_bill_month(record.bill_month if record else None)
        sent = format_bill_month(record.sent_month if record else None)
        print(f"{icon} {f.folder_name}/{f.name}  bill: {bill}  sent: {sent}")
    summary = tracker.summary()
    print(f"\n📊 {summary['sent']}/{summary['total']} sent ({summary['percentage']}%), {summary['pending']} pending, {summary['overdue']} overdue")
    return 0


def cmd_mark_sent(tracker: BillTracker, args) -> int:
    paths = _abs(args.paths)
    if len(paths) == 1:
        record, errors = tracker.mark_sent(paths[0], args.month)
        print(f"✅ {os.path.basename(paths[0])}: bill {record.bill_month}, sent {record.sent_month}")
    else:
        result = tracker.bulk_mark_sent(paths, args.month)
        errors = result.errors
        print(f"✅ {len(result.updated)} bills updated successfully! ({len(result.mirrored)} copied to GST folder)")
    _print_errors(errors)
    return 0


def cmd_mark_pending(tracker: BillTracker, args) -> int:
    paths = _abs(args.paths)
    if len(paths) == 1:
        previous, errors = tracker.mark_pending(paths[0])
        print("↩️ Marked pending" if previous else "ℹ️ Bill was not tracked")
    else:
        result = tracker.bulk.bulk_mark_pending(paths)
        errors = result.errors
        print(f"↩️ {len(result.updated)} bills marked pending")
    _print_errors(errors)
    return 0


def cmd_set_month(tracker: BillTracker, args) -> int:
    paths = _abs(args.paths)
    errors = []
    if args.bill:
        if len(paths) == 1:
            _, errors = tracker.update_bill_month(paths[0], args.bill)
        else:
            errors = tracker.bulk.bulk_set_bill_month(paths, args.bill).errors
    if args.sent:
        for path in paths:
            _, errs = tracker.update_sent_month(path, args.sent)
            errors.extend(errs)
    print(f"✅ Updated {len(paths)} bill(s)")
    _print_errors(errors)
    return 0


def cmd_ignore(tracker: BillTracker, args) -> int:
    paths = _abs(args.paths) if not args.name else args.paths
    if len(paths) == 1:
        ignored = tracker.toggle_ignored_file(paths[0])
        print(f"🚫 Ignored {paths[0]}" if ignored else f"👁️ No longer ignoring {paths[0]}")
    else:
        result = tracker.bulk.bulk_ignore(paths)
        print(f"🚫 Ignored {len(result.updated)} files")
    return 0


def cmd_undo(tracker: BillTracker, args) -> int:
    action = tracker.undo()
    print(f"↩️ Action undone: {type(action).__name__} {action.path}" if action else "ℹ️ Nothing to undo")
    return 0


def cmd_redo(tracker: BillTracker, args) -> int:
    action = tracker.redo()
    print(f"↪️ Action redone: {type(action).__name__} {action.path}" if action else "ℹ️ Nothing to redo")
    return 0


def cmd_tag(tracker: BillTracker, args) -> int:
    path = os.path.abspath(args.path)
    tags = tracker.require_config().tags.get(path, [])
    for tag in args.add or []:
        tags = tracker.add_tag(path, tag)
    for tag in args.remove or []:
        tags = tracker.remove_tag(path, tag)
    print(f"🏷️ {os.path.basename(path)}: {', '.join(tags) or '-'}")
    return 0


def cmd_remind(tracker: BillTracker, args) -> int:
    if args.action == "add":
        if not args.path or not args.due:
            print("❌ remind add needs PATH and --due YYYY-MM-DD")
            return 2
        reminder = tracker.add_reminder(os.path.abspath(args.path), args.due, args.note or "")
        print(f"⏰ Reminder {reminder.id} set for {reminder.due_date}")
    elif args.action == "remove":
        print("🗑️ Removed" if tracker.remove_reminder(args.path or "") else "ℹ️ No such reminder")
    elif args.action == "due":
        for r in tracker.due_reminders(mark_notified=True):
            print(f"⏰ {os.path.basename(r.file_path)} is due on {r.due_date} {r.note}")
    else:
        for r in tracker.require_config().reminders:
            print(f"{'✅' if r.notified else '⏰'} [{r.id}] {r.due_date} {r.file_path} {r.note}")
    return 0


def cmd_report(tracker: BillTracker, args) -> int:
    tracker.refresh()
    written = tracker.export_report(args.destination)
    print(f"✅ Data exported successfully! {written}")
    return 0


def cmd_orphans(tracker: BillTracker, args) -> int:
    tracker.refresh()
    orphans = tracker.find_orphans()
    if not orphans:
        print("✅ Every file in the GST folder belongs to a tracked bill")
    for o in orphans:
        hint = f" (renamed from {o['suggestion']}?)" if o["suggestion"] else ""
        print(f"❓ {o['path']}{hint}")
    return 0


COMMANDS = {
    "init": cmd_init,
    "config": cmd_config,
    "scan": cmd_scan,
    "sync": cmd_sync,
    "watch": cmd_watch,
    "status": cmd_status,
    "mark-sent": cmd_mark_sent,
    "mark-pending": cmd_mark_pending,
    "set-month": cmd_set_month,
    "ignore": cmd_ignore,
    "undo": cmd_undo,
    "redo": cmd_redo,
    "tag": cmd_tag,
    "remind": cmd_remind,
    "report": cmd_report,
    "orphans": cmd_orphans,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bill-tracker",
        description="Track which bills have been submitted to the GST folder",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--data-dir", help="where configuration and tracking JSON live (default: $BILL_TRACKER_DATA_DIR)")
    parser.add_argument("--env-file", default=".env", help="dotenv file to load")
    parser.add_argument("--verbose", "-v", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init", help="select the root bill folder")
    p.add_argument("root")
    p.add_argument("--gst", help="GST submitted folder")
    p.add_argument("--select", nargs="+", help="subfolders to track (names or paths)")
    p.add_argument("--select-all", action="store_true", help="track every top-level subfolder")

    p = sub.add_parser("config", help="show or change configuration")
    p.add_argument("--gst", help="GST submitted folder ('' to clear)")
    p.add_argument("--select", nargs="+")
    p.add_argument("--ignore-subfolder", nargs="*")
    p.add_argument("--set", nargs="+", metavar="KEY=VALUE", help="e.g. sync_interval=15 auto_sync_gst=false")

    sub.add_parser("scan", help="print the folder tree")
    sub.add_parser("sync", help="reconcile with the GST folder once")

    p = sub.add_parser("watch", help="reconcile periodically")
    p.add_argument("--interval", type=float, help="minutes between syncs (default: settings)")

    p = sub.add_parser("status", help="list bills with their status")
    p.add_argument("--status", choices=["sent", "pending"])
    p.add_argument("--search")
    p.add_argument("--type", help="extension filter, e.g. .pdf")
    p.add_argument("--sort", default="name", choices=["name", "size", "modified", "bill_month", "sent_month", "status"])
    p.add_argument("--desc", action="store_true")

    p = sub.add_parser("mark-sent", help="mark bills as sent")
    p.add_argument("paths", nargs="+")
    p.add_argument("--month", help="sent month YYYY-MM (default: settings)")

    p = sub.add_parser("mark-pending", help="mark bills as pending")
    p.add_argument("paths", nargs="+")

    p = sub.add_parser("set-month", help="change bill or sent month")
    p.add_argument("paths", nargs="+")
    p.add_argument("--bill")
    p.add_argument("--sent")

    p = sub.add_parser("ignore", help="toggle ignoring of files")
    p.add_argument("paths", nargs="+")
    p.add_argument("--name", action="store_true", help="ignore by file name instead of path")

    sub.add_parser("undo", help="undo the last edit")
    sub.add_parser("redo", help="redo the last undone edit")

    p = sub.add_parser("tag", help="add or remove tags")
    p.add_argument("path")
    p.add_argument("--add", nargs="+")
    p.add_argument("--remove", nargs="+")

    p = sub.add_parser("remind", help="bill reminders")
    p.add_argument("action", choices=["add", "list", "due", "remove"])
    p.add_argument("path", nargs="?", help="bill path (add) or reminder id (remove)")
    p.add_argument("--due", help="due date YYYY-MM-DD")
    p.add_argument("--note")

    p = sub.add_parser("report", help="export a report (.json or .csv)")
    p.add_argument("destination")

    sub.add_parser("orphans", help="files in the GST folder with no tracked bill")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    load_dotenv(args.env_file)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    tracker = BillTracker(args.data_dir)
    handler = COMMANDS[args.command]
    if args.command != "init" and tracker.config is None:
        print("❌ No bill folder configured. Run `bill-tracker init <folder>` first")
        return 2

    try:
        if args.command in MUTATING_COMMANDS:
            lock = SyncLock(tracker.data_dir, tracker.defaults["lock"]["timeout_seconds"])
            with lock.held(f"{args.command}:{os.getpid()}", wait_seconds=10):
                tracker.load_history()
                code = handler(tracker, args)
                tracker.save_history()
            return code
        return handler(tracker, args)
    except LockBusyError as e:
        print(f"⏳ {e}")
        return 3
    except (TrackerError, ValueError, RuntimeError) as e:
        print(f"❌ {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
