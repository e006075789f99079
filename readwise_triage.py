#!/usr/bin/env python3
"""
Readwise Triage
Pulls Reader inbox items, records triage decisions (by hand or by an LLM)
in a local store, and pushes the decisions back to Readwise.
"""

import sys
import logging
from typing import List, Optional

from config import Config, load_config, save_example_config
from data_fetcher import ReaderAPIError, SyncProgress, create_reader_client
from http_retry import HTTPRequestError
from llm_client import LLMError, create_llm_client
from models import ACTIONS, PRIORITIES, Item
from storage import TriageStore, TriageStoreError
from tasks import BackgroundTasks
from triage_parser import TriageParseError
from triage_workflow import (
    TriageImportError,
    auto_triage,
    build_updates,
    export_items_for_triage,
    export_items_to_file,
    import_triage_results,
    save_items_snapshot,
    set_manual_decision,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def _fail(message: str) -> None:
    logger.error(f"❌ {message}")
    sys.exit(1)


def open_store(cfg: Config) -> TriageStore:
    try:
        return TriageStore.load(cfg.triage_store_path)
    except TriageStoreError as e:
        _fail(str(e))


def fetch_items(cfg: Config, days: int, location: str) -> List[Item]:
    try:
        client = create_reader_client(cfg)
        logger.info(f"🚀 Fetching Reader items (last {days} days, location: {location})...")
        return client.fetch_inbox_items(days_ago=days, location=location)
    except HTTPRequestError as e:
        _fail(f"Fetch failed: {e}")


def cmd_verify(cfg: Config, args) -> None:
    try:
        client = create_reader_client(cfg)
        valid = client.verify_token()
    except ReaderAPIError as e:
        _fail(str(e))
    if not valid:
        _fail("Readwise token is invalid")
    logger.info("✅ Readwise token is valid")


def cmd_list(cfg: Config, args) -> None:
    store = open_store(cfg)
    items = fetch_items(cfg, args.days, args.location)
    if args.save:
        save_items_snapshot(items, args.save)
        logger.info(f"💾 Saved {len(items)} items to {args.save}")

    untriaged = set(store.get_untriaged_ids([item.id for item in items]))
    print("\n" + "=" * 60)
    print(f"📥 {len(items)} items, {len(untriaged)} untriaged")
    print("=" * 60)
    for item in items:
        entry = store.get_item(item.id)
        if entry is None:
            status = "·"
        else:
            status = entry.action + (f" ({entry.priority})" if entry.priority else "")
        print(f"{item.id:<28} {status:<22} {item.title[:60]}")


def cmd_export(cfg: Config, args) -> None:
    store = open_store(cfg)
    items = fetch_items(cfg, args.days, args.location)
    try:
        if args.output:
            path = export_items_to_file(items, store, args.output, selected_ids=args.ids)
            logger.info(f"✅ Export written to {path}. Paste it to your LLM.")
        else:
            print(
                export_items_for_triage(
                    items, store, selected_ids=args.ids, with_prompt=not args.json_only
                )
            )
    except ValueError as e:
        _fail(str(e))


def cmd_import(cfg: Config, args) -> None:
    store = open_store(cfg)
    if args.file == "-":
        text = sys.stdin.read()
    else:
        try:
            with open(args.file, "r", encoding="utf-8") as f:
                text = f.read()
        except OSError as e:
            _fail(f"failed to read file: {e}")
    if not text.strip():
        _fail("input is empty")

    items = fetch_items(cfg, args.days, args.location)
    try:
        outcome = import_triage_results(text, items, store)
    except TriageImportError as e:
        _fail(str(e))

    if outcome.warnings:
        logger.warning(f"⚠️  {outcome.message}")
    else:
        logger.info(f"✅ {outcome.message}")
    summary = outcome.summary
    for title, entries in (
        ("Today's Top 3", summary.today_top3),
        ("Quick Wins", summary.quick_wins),
        ("Batch Delete", summary.batch_delete),
    ):
        if entries:
            print(f"\n{title}:")
            for entry in entries:
                print(f"  - {entry}")


def cmd_auto(cfg: Config, args) -> None:
    store = open_store(cfg)
    try:
        llm = create_llm_client(cfg)
    except LLMError as e:
        _fail(f"failed to create LLM client: {e}")
    items = fetch_items(cfg, args.days, args.location)

    with BackgroundTasks() as tasks:
        future = tasks.submit(auto_triage, llm, items, store, args.batch_size)
        try:
            applied = future.result()
        except (LLMError, HTTPRequestError, TriageParseError) as e:
            _fail(f"LLM triage failed: {e}")
    logger.info(f"✅ Applied LLM triage to {applied} items")


def cmd_set(cfg: Config, args) -> None:
    store = open_store(cfg)
    try:
        set_manual_decision(store, args.id, args.action, args.priority or "", args.tag)
    except ValueError as e:
        _fail(str(e))
    logger.info(f"✅ {args.id}: {args.action}")


def cmd_sync(cfg: Config, args) -> None:
    store = open_store(cfg)
    items = fetch_items(cfg, args.days, args.location)
    updates = build_updates(items, store, fetch_location=args.location, selected_ids=args.ids)
    if not updates:
        logger.info("Nothing to sync")
        return

    client = create_reader_client(cfg)
    progress = SyncProgress(total_updates=len(updates))
    logger.info(f"📤 Pushing {len(updates)} decisions to Readwise...")

    with BackgroundTasks() as tasks:
        future, channel = tasks.start_batch_update(client, updates)
        for event in channel:
            progress.update(event)
        result = future.result()
    progress.finish()

    if result.failed:
        logger.warning(f"⚠️  Updated {result.success}/{result.total} documents")
        for error in result.errors:
            logger.warning(f"   {error}")
    else:
        logger.info(f"✅ Updated {result.success} documents")


def build_parser(cfg: Optional[Config] = None):
    import argparse

    days_default = cfg.default_days_ago if cfg else 7
    location_default = cfg.location if cfg else "new"

    parser = argparse.ArgumentParser(description="Readwise Reader inbox triage")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument("--store", help="Path to the triage store file")
    parser.add_argument("--config", help="Path to the config file")

    fetch_opts = argparse.ArgumentParser(add_help=False)
    fetch_opts.add_argument("--days", type=int, default=days_default,
                            help=f"Look back this many days (default: {days_default})")
    fetch_opts.add_argument("--location", choices=["new", "feed"], default=location_default,
                            help=f"Reader location to triage (default: {location_default})")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("verify", help="Check the Readwise token")
    sub.add_parser("init", help="Write an example config file")

    p = sub.add_parser("list", parents=[fetch_opts], help="Show items and saved decisions")
    p.add_argument("--save", help="Also write the fetched items to this JSON file")

    p = sub.add_parser("export", parents=[fetch_opts], help="Export items for manual LLM triage")
    p.add_argument("--output", "-o", help="Write to this file instead of stdout")
    p.add_argument("--json-only", action="store_true", help="Omit the prompt text")
    p.add_argument("--id", dest="ids", action="append", help="Export only this item id")

    p = sub.add_parser("import", parents=[fetch_opts], help="Apply pasted LLM results")
    p.add_argument("file", help="File with the LLM output, or - for stdin")

    p = sub.add_parser("auto", parents=[fetch_opts], help="Triage untriaged items with the LLM")
    p.add_argument("--batch-size", type=int, default=10, help="Items per LLM call")

    p = sub.add_parser("set", help="Record a manual decision")
    p.add_argument("id")
    p.add_argument("action", choices=ACTIONS)
    p.add_argument("--priority", choices=PRIORITIES)
    p.add_argument("--tag", action="append", default=[])

    p = sub.add_parser("sync", parents=[fetch_opts], help="Push decisions back to Readwise")
    p.add_argument("--id", dest="ids", action="append", help="Sync only this item id")

    return parser


COMMANDS = {
    "verify": cmd_verify,
    "list": cmd_list,
    "export": cmd_export,
    "import": cmd_import,
    "auto": cmd_auto,
    "set": cmd_set,
    "sync": cmd_sync,
}


def main(argv: Optional[List[str]] = None):
    config_path = None
    if argv is None:
        argv = sys.argv[1:]
    if "--config" in argv:
        idx = argv.index("--config")
        if idx + 1 < len(argv):
            config_path = argv[idx + 1]

    cfg = load_config(config_path)
    args = build_parser(cfg).parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    if args.store:
        cfg.triage_store_path = args.store

    if args.command == "init":
        path = save_example_config(args.config)
        if path:
            logger.info(f"✅ Example config written to {path}")
        else:
            logger.info("Config file already exists; left untouched")
        return

    try:
        COMMANDS[args.command](cfg, args)
    except KeyboardInterrupt:
        logger.info("⏹️  Interrupted by user")
        sys.exit(0)


if __name__ == "__main__":
    main()
