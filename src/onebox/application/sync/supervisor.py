"""Engine-level control: one ConnectionManager per configured account."""

from __future__ import annotations

import asyncio
import threading
from contextlib import asynccontextmanager
from typing import Callable, Optional

from loguru import logger

from onebox.application.ports.mail_session import MailSessionFactory
from onebox.application.ports.message_store import MessageStore
from onebox.application.sync.connection_manager import ConnectionManager
from onebox.application.sync.dispatcher import Dispatcher
from onebox.domain.entities.account import AccountConfig
from onebox.domain.models import ConnectionState
from onebox.infrastructure.settings import SyncTimings

AccountLoader = Callable[[], list[AccountConfig]]


class SyncSupervisor:
    """Start and stop the per-account sync workers as one unit.

    Workers run concurrently and independently; a failure while starting
    one account never blocks the others.
    """

    def __init__(
        self,
        account_loader: AccountLoader,
        session_factory: MailSessionFactory,
        store: MessageStore,
        dispatcher: Dispatcher,
        timings: Optional[SyncTimings] = None,
    ) -> None:
        self.account_loader = account_loader
        self.session_factory = session_factory
        self.store = store
        self.dispatcher = dispatcher
        self.timings = timings or SyncTimings()
        self._managers: dict[str, ConnectionManager] = {}
        self._running = False
        self._lock = threading.Lock()

    @property
    def managers(self) -> dict[str, ConnectionManager]:
        with self._lock:
            return dict(self._managers)

    def is_running(self) -> bool:
        return self._running

    def states(self) -> dict[str, ConnectionState]:
        return {account_id: m.state.model_copy() for account_id, m in self.managers.items()}

    def start(self) -> None:
        with self._lock:
            if self._running:
                logger.warning("IMAP sync is already running")
                return

            try:
                accounts = self.account_loader()
            except Exception as e:
                logger.warning(f"Could not load mail accounts, sync not started: {e}")
                return

            self._running = True
            logger.info(f"Starting IMAP sync for {len(accounts)} account(s)...")

            for cfg in accounts:
                if cfg.id in self._managers:
                    logger.warning(f"Duplicate account id {cfg.id} ({cfg.email}), skipping")
                    continue
                manager = ConnectionManager(
                    cfg,
                    session_factory=self.session_factory,
                    store=self.store,
                    dispatcher=self.dispatcher,
                    timings=self.timings,
                )
                self._managers[cfg.id] = manager
                try:
                    manager.start()
                except Exception as e:
                    logger.error(f"Failed to start sync for {cfg.email}: {e}")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop every worker. Never raises; close failures are logged."""
        with self._lock:
            if not self._running and not self._managers:
                return
            logger.info("Stopping IMAP sync...")
            managers = list(self._managers.items())

            # Signal everyone first so workers wind down in parallel
            for _, manager in managers:
                manager.request_stop()

            for account_id, manager in managers:
                try:
                    if not manager.wait_stopped(timeout):
                        logger.warning(f"Worker for {account_id} did not exit in time")
                except Exception as e:
                    logger.error(f"Failed to close connection for {account_id}: {e}")

            self._managers.clear()
            self._running = False
            logger.info("IMAP sync stopped")


@asynccontextmanager
async def sync_lifespan(supervisor: SyncSupervisor):
    """Async context manager running the sync engine for a host's lifetime.

    The engine is optional from the host's point of view: startup failures
    are logged as warnings and the host keeps running. On exit the workers
    are stopped and in-flight index and categorize calls are drained.
    """
    try:
        await asyncio.to_thread(supervisor.start)
        logger.info("IMAP sync service started")
    except Exception as e:
        logger.warning(f"IMAP sync service not started, email sync will be unavailable: {e}")
    try:
        yield supervisor
    finally:
        await asyncio.to_thread(supervisor.stop)
        await asyncio.to_thread(supervisor.dispatcher.close, True)
        logger.info("IMAP sync service stopped")
