"""Real-time mail sync worker - keeps one IDLE connection open per mailbox."""

from __future__ import annotations

import signal
import threading

from loguru import logger

from onebox.application.ports.message_store import MessageStore
from onebox.application.sync import Dispatcher, SyncSupervisor
from onebox.cli.bootstrap import build_dispatcher, build_store, close_quietly, configure_logging
from onebox.domain.entities.account import AccountConfig
from onebox.infrastructure.accounts import load_accounts_from_env
from onebox.infrastructure.email import imap_session_factory
from onebox.infrastructure.settings import Settings, get_settings


class SyncWorker:
    """
    Multi-mailbox sync worker.

    Starts the supervisor, then sleeps until SIGTERM or SIGINT and
    shuts every connection down before returning.
    """

    def __init__(
        self,
        settings: Settings,
        accounts: list[AccountConfig],
        store: MessageStore,
        dispatcher: Dispatcher,
        stats_interval: float = 60.0,
    ):
        self.settings = settings
        self.accounts = accounts
        self.store = store
        self.dispatcher = dispatcher
        self.stats_interval = stats_interval
        self.supervisor = SyncSupervisor(
            account_loader=lambda: self.accounts,
            session_factory=imap_session_factory(mark_seen=settings.sync_mark_seen),
            store=store,
            dispatcher=dispatcher,
            timings=settings.sync_timings(),
        )
        self._shutdown = threading.Event()

    def _handle_shutdown(self, signum, frame) -> None:
        """Handle graceful shutdown."""
        logger.info(f"Received signal {signum}, shutting down...")
        self._shutdown.set()

    def request_shutdown(self) -> None:
        self._shutdown.set()

    def _log_stats(self) -> None:
        for account_id, state in self.supervisor.states().items():
            error = f", last_error={state.last_error}" if state.last_error else ""
            logger.info(f"  - {account_id}: {state.status.value} (retries={state.retry_count}{error})")

    def run(self) -> int:
        """Run until a shutdown signal arrives."""
        signal.signal(signal.SIGTERM, self._handle_shutdown)
        signal.signal(signal.SIGINT, self._handle_shutdown)

        logger.info(f"Sync worker starting with {len(self.accounts)} mailbox(es)")
        for cfg in self.accounts:
            logger.info(f"  - {cfg.id}: {cfg.email} ({cfg.host}:{cfg.port}/{cfg.folder})")

        self.supervisor.start()
        if not self.supervisor.is_running():
            logger.error("Sync supervisor failed to start")
            return 1

        try:
            # Wake periodically so signals are handled and state is reported
            while not self._shutdown.wait(self.stats_interval):
                logger.info("Worker stats:")
                self._log_stats()
        finally:
            self.supervisor.stop()
            self.dispatcher.close(wait=True)

        logger.info("Worker shutdown complete")
        return 0


def main() -> int:
    """Entry point for the sync worker."""
    settings = get_settings()
    configure_logging(settings.log_level)

    logger.info("=" * 60)
    logger.info(f"{settings.app_name} Worker v{settings.app_version}")
    logger.info("=" * 60)

    accounts = load_accounts_from_env()
    if not accounts:
        logger.error("No mailboxes configured! Set MAIL_ACCOUNTS or EMAIL_1_ADDRESS/EMAIL_1_PASSWORD")
        return 1

    try:
        store = build_store(settings)
        dispatcher = build_dispatcher(settings, store)
    except Exception as e:
        logger.error(f"Failed to initialize infrastructure: {e}")
        return 1

    try:
        return SyncWorker(settings, accounts, store, dispatcher).run()
    finally:
        close_quietly(dispatcher.indexer, "indexer")
        close_quietly(store, "message store")


if __name__ == "__main__":
    raise SystemExit(main())
