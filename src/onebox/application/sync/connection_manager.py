"""Per-account connection lifecycle: connect, backfill, IDLE, fetch, reconnect."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Sequence

from loguru import logger

from onebox.application.errors import FetchBatchError, MailConnectionError
from onebox.application.ports.mail_session import MailSession, MailSessionFactory
from onebox.application.ports.message_store import MessageStore
from onebox.application.sync.batch_fetcher import BatchFetcher
from onebox.application.sync.deduplicator import Deduplicator
from onebox.application.sync.dispatcher import Dispatcher
from onebox.application.sync.timers import IntervalTimer
from onebox.domain.entities.account import AccountConfig
from onebox.domain.entities.email_message import ParsedMessage
from onebox.domain.models import ConnectionState, ConnectionStatus
from onebox.infrastructure.settings import SyncTimings


class _Wake(Enum):
    PUSH = "push"
    REFRESH = "refresh"
    STOP = "stop"


class ConnectionManager:
    """Owns the single mail session of one account.

    All work for the account runs sequentially on one dedicated thread:

        DISCONNECTED -> CONNECTING -> READY -> (backfill) -> IDLING <-> FETCHING

    Any session failure moves the worker to RECONNECT_WAIT, and after a
    fixed delay it connects again, indefinitely, until stop() is called.
    A fetch cycle always completes before the next IDLE begins, so the
    worker is never idling and fetching at once. STOPPED is terminal.
    """

    def __init__(
        self,
        config: AccountConfig,
        session_factory: MailSessionFactory,
        store: MessageStore,
        dispatcher: Dispatcher,
        timings: Optional[SyncTimings] = None,
    ) -> None:
        self.config = config
        self.session_factory = session_factory
        self.store = store
        self.dispatcher = dispatcher
        self.timings = timings or SyncTimings()
        self.state = ConnectionState(account_id=config.id)
        self.dedup = Deduplicator(store, config.email)
        self.fetch_cycles = 0

        self._stop_event = threading.Event()
        self._state_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._session: Optional[MailSession] = None
        self._account_registered = False
        self._keepalive = IntervalTimer(self.timings.keepalive_interval)
        self._idle_refresh = IntervalTimer(self.timings.idle_refresh_interval)

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    @property
    def status(self) -> ConnectionStatus:
        return self.state.status

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        """Spawn the worker thread. Returns False if already started or stopped."""
        with self._state_lock:
            if self._stop_event.is_set():
                logger.warning(f"Sync for {self.config.email} was stopped; not restarting")
                return False
            if self._thread is not None:
                logger.debug(f"Sync for {self.config.email} already started")
                return False
            self._thread = threading.Thread(
                target=self._run,
                name=f"onebox-sync-{self.config.id}",
                daemon=True,
            )
            self._thread.start()
        return True

    def request_stop(self) -> None:
        """Signal the worker to stop at its next suspension point."""
        self._stop_event.set()
        self._keepalive.cancel()
        self._idle_refresh.cancel()

    def wait_stopped(self, timeout: Optional[float] = None) -> bool:
        """Wait for the worker to exit; abort the socket if it stays blocked."""
        timeout = self.timings.stop_timeout if timeout is None else timeout
        thread = self._thread
        alive = False
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            if thread.is_alive():
                logger.warning(f"Worker for {self.config.email} still busy after {timeout}s, aborting session")
                session = self._session
                if session is not None:
                    try:
                        session.abort()
                    except Exception as e:
                        logger.error(f"Failed to abort session for {self.config.email}: {e}")
                thread.join(timeout)
            alive = thread.is_alive()
        self._transition(ConnectionStatus.STOPPED)
        return not alive

    def stop(self, timeout: Optional[float] = None) -> bool:
        self.request_stop()
        return self.wait_stopped(timeout)

    def run_once(self, days: Optional[int] = None) -> int:
        """Connect, backfill and disconnect on the calling thread, without idling."""
        try:
            session = self._open_session()
            return self.backfill(session, days)
        finally:
            self._teardown_session()
            self._transition(ConnectionStatus.DISCONNECTED)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _run(self) -> None:
        logger.info(f"Sync worker started for {self.config.email}")
        while not self.stopping:
            try:
                session = self._open_session()
                self.backfill(session)
                self._idle_loop(session)
            except MailConnectionError as e:
                self._on_failure(e)
            except Exception as e:
                if not self.stopping:
                    logger.exception(f"Unexpected error in sync worker for {self.config.email}")
                self._on_failure(e)
            finally:
                self._teardown_session()
        self._transition(ConnectionStatus.STOPPED)
        logger.info(f"Sync worker stopped for {self.config.email}")

    def _open_session(self) -> MailSession:
        self._transition(ConnectionStatus.CONNECTING)
        if not self._account_registered:
            self.store.upsert_account(self.config)
            self._account_registered = True

        session = self.session_factory(self.config)
        self._session = session
        session.connect()
        logger.info(f"Connected to {self.config.email}")

        total = session.open_inbox()
        with self._state_lock:
            self.state.retry_count = 0
            self.state.last_error = None
        self._transition(ConnectionStatus.READY)
        logger.info(f"Opened {self.config.folder} for {self.config.email} ({total} messages)")
        return session

    def _teardown_session(self) -> None:
        self._keepalive.cancel()
        self._idle_refresh.cancel()
        session, self._session = self._session, None
        if session is None:
            return
        try:
            session.close()
        except Exception as e:
            logger.warning(f"Failed to close connection for {self.config.email}: {e}")

    def _on_failure(self, error: Exception) -> None:
        if self.stopping:
            return
        with self._state_lock:
            self.state.retry_count += 1
            self.state.last_error = str(error)
            attempt = self.state.retry_count
        self._transition(ConnectionStatus.RECONNECT_WAIT)
        delay = self.timings.reconnect_delay
        logger.error(
            f"IMAP error for {self.config.email}: {error}; "
            f"reconnecting in {delay}s (attempt {attempt})"
        )
        # Interrupted early by stop
        if not self._stop_event.wait(delay):
            logger.info(f"Reconnecting {self.config.email}...")

    def _transition(self, status: ConnectionStatus) -> None:
        with self._state_lock:
            previous = self.state.status
            if previous is ConnectionStatus.STOPPED or previous is status:
                return
            self.state.status = status
            self.state.last_transition_at = datetime.now(timezone.utc)
        logger.debug(f"{self.config.email}: {previous.value} -> {status.value}")

    # ------------------------------------------------------------------
    # Backfill and fetch
    # ------------------------------------------------------------------

    def backfill(self, session: MailSession, days: Optional[int] = None) -> int:
        """Search and ingest every message since the backfill cutoff."""
        days = self.timings.backfill_days if days is None else days
        since = (datetime.now(timezone.utc) - timedelta(days=days)).date()
        logger.info(f"Fetching emails from last {days} days for {self.config.email}...")

        try:
            locators = session.search_since(since)
        except FetchBatchError as e:
            logger.error(f"Backfill search failed for {self.config.email}: {e}")
            return 0

        if not locators:
            logger.info(f"No emails found in last {days} days for {self.config.email}")
            return 0

        logger.info(f"Found {len(locators)} emails to sync for {self.config.email}")
        count = self._ingest(session, locators)
        logger.info(f"Backfill for {self.config.email} stored {count} new emails")
        return count

    def _ingest(self, session: MailSession, locators: Sequence[str]) -> int:
        fetcher = BatchFetcher(
            session,
            account_id=self.config.id,
            folder=self.config.folder,
            batch_size=self.timings.batch_size,
        )
        count = 0
        try:
            for parsed in fetcher.fetch(locators):
                if self.stopping:
                    break
                if self._handle(parsed):
                    count += 1
        except FetchBatchError as e:
            logger.error(f"Fetch error for {self.config.email}: {e}")
        return count

    def _handle(self, parsed: ParsedMessage) -> bool:
        try:
            stored = self.dedup.persist(parsed)
        except Exception as e:
            logger.error(f"Failed to process email {parsed.message_id} for {self.config.email}: {e}")
            return False
        if stored is None:
            return False
        self.dispatcher.dispatch(stored)
        return True

    def _fetch_new(self, session: MailSession) -> None:
        # Pushes seen during a fetch are coalesced into one more unseen search
        while not self.stopping:
            self._transition(ConnectionStatus.FETCHING)
            try:
                locators = session.search_unseen()
            except FetchBatchError as e:
                logger.error(f"Unseen search failed for {self.config.email}: {e}")
                return

            if locators:
                count = self._ingest(session, locators)
                logger.info(f"Fetched {len(locators)} unseen, stored {count} new for {self.config.email}")
            self.fetch_cycles += 1

            if not session.has_pending_mail():
                return
            logger.info(f"More mail arrived during fetch for {self.config.email}, searching again")

    # ------------------------------------------------------------------
    # IDLE
    # ------------------------------------------------------------------

    def _idle_loop(self, session: MailSession) -> None:
        logger.info(f"Starting IDLE mode for {self.config.email} (push notifications enabled)")
        while not self.stopping:
            wake = self._idle_once(session)
            if wake is _Wake.STOP:
                return
            if wake is _Wake.PUSH:
                self._fetch_new(session)

    def _idle_once(self, session: MailSession) -> _Wake:
        self._transition(ConnectionStatus.IDLING)
        session.idle_start()
        self._keepalive.arm()
        self._idle_refresh.arm()
        try:
            wake = self._wait_for_wake(session)
        finally:
            self._keepalive.cancel()
            self._idle_refresh.cancel()
        if wake is not _Wake.STOP:
            session.idle_done()
        return wake

    def _wait_for_wake(self, session: MailSession) -> _Wake:
        while not self.stopping:
            timeout = min(
                self._keepalive.remaining(),
                self._idle_refresh.remaining(),
                self.timings.idle_poll_interval,
            )
            if session.idle_wait(timeout):
                logger.info(f"New mail for {self.config.email}")
                return _Wake.PUSH
            if self.stopping:
                break
            if self._idle_refresh.expired():
                logger.debug(f"Re-issuing IDLE for {self.config.email}")
                return _Wake.REFRESH
            if self._keepalive.expired():
                session.idle_done()
                session.noop()
                if session.has_pending_mail():
                    logger.info(f"New mail for {self.config.email} (seen on keepalive)")
                    return _Wake.PUSH
                session.idle_start()
                self._keepalive.arm()
        return _Wake.STOP
