"""One-shot backfill of configured mailboxes without entering IDLE."""

from __future__ import annotations

import argparse

from loguru import logger

from onebox.application.errors import MailConnectionError
from onebox.application.sync import ConnectionManager
from onebox.cli.bootstrap import build_dispatcher, build_store, close_quietly, configure_logging
from onebox.infrastructure.accounts import load_accounts_from_env
from onebox.infrastructure.email import imap_session_factory
from onebox.infrastructure.settings import get_settings


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Backfill recent emails from configured mailboxes")
    parser.add_argument("--account", action="append", default=None,
                        help="Account id or email to backfill (repeatable; default: all)")
    parser.add_argument("--days", type=int, default=None,
                        help="Days to look back (default: SYNC_BACKFILL_DAYS)")
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings.log_level)

    accounts = load_accounts_from_env()
    if args.account:
        wanted = {a.lower() for a in args.account}
        accounts = [cfg for cfg in accounts if cfg.id in wanted or cfg.email.lower() in wanted]
    if not accounts:
        logger.error("No matching mailboxes configured")
        return 1

    store = build_store(settings)
    dispatcher = build_dispatcher(settings, store)
    factory = imap_session_factory(mark_seen=settings.sync_mark_seen)
    timings = settings.sync_timings()
    days = args.days if args.days is not None else timings.backfill_days

    failures = 0
    total = 0
    try:
        for cfg in accounts:
            manager = ConnectionManager(cfg, factory, store, dispatcher, timings)
            try:
                count = manager.run_once(days)
            except MailConnectionError as e:
                failures += 1
                logger.error(f"Backfill failed for {cfg.email}: {e}")
                continue
            total += count
            print(f"{cfg.email}: stored {count} new emails from the last {days} days")
    finally:
        # Let categorization and indexing finish before exiting
        dispatcher.close(wait=True)
        close_quietly(dispatcher.indexer, "indexer")
        close_quietly(store, "message store")

    print(f"Backfilled {total} emails from {len(accounts) - failures}/{len(accounts)} mailbox(es)")
    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
