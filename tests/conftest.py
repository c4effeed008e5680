"""Shared fixtures: an in-memory mail server and recording consumers."""

from __future__ import annotations

import threading
import time
from datetime import date, datetime, timezone
from email.message import EmailMessage
from email.utils import format_datetime
from typing import Callable, Iterator, Optional, Sequence

import pytest

from onebox.application.errors import FetchBatchError, MailConnectionError
from onebox.application.sync.dispatcher import Dispatcher
from onebox.domain.entities.account import AccountConfig
from onebox.domain.entities.email_message import StoredMessage
from onebox.infrastructure.categorization import KeywordCategorizer
from onebox.infrastructure.settings import SyncTimings
from onebox.infrastructure.sqlite import SQLiteMessageStore


def make_raw(
    message_id: Optional[str] = None,
    subject: str = "Hello",
    body: str = "Just checking in.",
    sender: str = "Alice <alice@example.com>",
    to: str = "Me <me@example.com>",
    when: Optional[datetime] = None,
) -> bytes:
    msg = EmailMessage()
    if message_id is not None:
        msg["Message-ID"] = message_id
    msg["From"] = sender
    msg["To"] = to
    msg["Subject"] = subject
    msg["Date"] = format_datetime(when or datetime.now(timezone.utc))
    msg.set_content(body)
    return msg.as_bytes()


def wait_until(predicate: Callable[[], bool], timeout: float = 3.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class FakeMailbox:
    """Server-side state shared by every session opened against it."""

    def __init__(self, mark_seen: bool = False) -> None:
        self.mark_seen = mark_seen
        self.lock = threading.Lock()
        self.messages: dict[str, dict] = {}
        self.sessions: list[FakeMailSession] = []
        self.connect_attempts = 0
        self.connect_failures = 0
        self.fetch_failures = 0
        self.fetch_calls: list[list[str]] = []
        self.noops = 0
        self.idle_starts = 0
        self.on_fetch: Optional[Callable[[Sequence[str]], None]] = None
        self._next_uid = 1

    def add(self, raw: Optional[bytes], when: Optional[datetime] = None, seen: bool = False) -> str:
        with self.lock:
            uid = str(self._next_uid)
            self._next_uid += 1
            self.messages[uid] = {
                "raw": raw,
                "date": (when or datetime.now(timezone.utc)).date(),
                "seen": seen,
            }
        return uid

    def push(self, raw: Optional[bytes], when: Optional[datetime] = None) -> str:
        """Deliver a new message and announce it to connected sessions."""
        uid = self.add(raw, when)
        with self.lock:
            sessions = list(self.sessions)
        for session in sessions:
            session.announce()
        return uid

    def drop_connections(self) -> None:
        with self.lock:
            sessions = list(self.sessions)
        for session in sessions:
            session.dropped = True
            session.announce()

    def live_sessions(self) -> int:
        with self.lock:
            return len(self.sessions)

    def session_factory(self, cfg: AccountConfig) -> "FakeMailSession":
        return FakeMailSession(self, cfg)


class FakeMailSession:
    """MailSession implementation over a FakeMailbox."""

    def __init__(self, mailbox: FakeMailbox, cfg: AccountConfig) -> None:
        self.mailbox = mailbox
        self.cfg = cfg
        self.mark_seen = mailbox.mark_seen
        self.connected = False
        self.idling = False
        self.closed = False
        self.aborted = False
        self.dropped = False
        self._new_mail = threading.Event()
        self._pending = False
        self._pending_lock = threading.Lock()

    def announce(self) -> None:
        with self._pending_lock:
            self._pending = True
        self._new_mail.set()

    def _take_pending(self) -> bool:
        with self._pending_lock:
            pending, self._pending = self._pending, False
        self._new_mail.clear()
        return pending

    def _check(self) -> None:
        if self.dropped or self.aborted:
            raise MailConnectionError("connection reset by peer")

    def connect(self) -> None:
        with self.mailbox.lock:
            self.mailbox.connect_attempts += 1
            if self.mailbox.connect_failures > 0:
                self.mailbox.connect_failures -= 1
                raise MailConnectionError("Connection refused")
            self.mailbox.sessions.append(self)
        self.connected = True

    def open_inbox(self) -> int:
        self._check()
        with self.mailbox.lock:
            return len(self.mailbox.messages)

    def search_since(self, since: date) -> list[str]:
        self._check()
        with self.mailbox.lock:
            return [uid for uid, m in self.mailbox.messages.items() if m["date"] >= since]

    def search_unseen(self) -> list[str]:
        self._check()
        with self.mailbox.lock:
            return [uid for uid, m in self.mailbox.messages.items() if not m["seen"]]

    def fetch(self, locators: Sequence[str]) -> Iterator[tuple[str, bytes | None]]:
        self._check()
        with self.mailbox.lock:
            self.mailbox.fetch_calls.append(list(locators))
            if self.mailbox.fetch_failures > 0:
                self.mailbox.fetch_failures -= 1
                raise FetchBatchError("UID FETCH returned NO")
            result = []
            for uid in locators:
                m = self.mailbox.messages.get(uid)
                if m is None:
                    result.append((uid, None))
                    continue
                if self.mark_seen:
                    m["seen"] = True
                result.append((uid, m["raw"]))
        if self.mailbox.on_fetch is not None:
            self.mailbox.on_fetch(locators)
        return iter(result)

    def idle_start(self) -> None:
        self._check()
        with self.mailbox.lock:
            self.mailbox.idle_starts += 1
        self.idling = True

    def idle_wait(self, timeout: float) -> bool:
        self._check()
        if self._take_pending():
            return True
        self._new_mail.wait(timeout)
        self._check()
        return self._take_pending()

    def idle_done(self) -> None:
        self._check()
        self.idling = False

    def noop(self) -> None:
        self._check()
        with self.mailbox.lock:
            self.mailbox.noops += 1

    def has_pending_mail(self) -> bool:
        return self._take_pending()

    def close(self) -> None:
        self.closed = True
        self.idling = False
        with self.mailbox.lock:
            if self in self.mailbox.sessions:
                self.mailbox.sessions.remove(self)

    def abort(self) -> None:
        self.aborted = True
        self._new_mail.set()


class RecordingIndexer:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.indexed: list[StoredMessage] = []
        self._lock = threading.Lock()

    def index_message(self, message: StoredMessage) -> None:
        if self.fail:
            raise RuntimeError("search cluster unavailable")
        with self._lock:
            self.indexed.append(message)


class RecordingNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.notified: list[StoredMessage] = []
        self._lock = threading.Lock()

    def notify_interested(self, message: StoredMessage) -> None:
        with self._lock:
            self.notified.append(message)
        if self.fail:
            raise RuntimeError("webhook returned 500")


class CountingCategorizer(KeywordCategorizer):
    def __init__(self, store, notifier=None) -> None:
        super().__init__(store, notifier)
        self.seen: list[StoredMessage] = []
        self._lock = threading.Lock()

    def categorize(self, message: StoredMessage):
        with self._lock:
            self.seen.append(message)
        return super().categorize(message)


FAST_TIMINGS = SyncTimings(
    backfill_days=30,
    batch_size=50,
    reconnect_delay=0.05,
    keepalive_interval=10.0,
    idle_refresh_interval=10.0,
    idle_poll_interval=0.01,
    stop_timeout=2.0,
)


@pytest.fixture
def timings() -> SyncTimings:
    return FAST_TIMINGS


@pytest.fixture
def account() -> AccountConfig:
    return AccountConfig(
        id="work",
        email="me@example.com",
        credential="secret",
        host="imap.example.com",
    )


@pytest.fixture
def mailbox() -> FakeMailbox:
    return FakeMailbox()


@pytest.fixture
def store(tmp_path) -> SQLiteMessageStore:
    return SQLiteMessageStore(tmp_path / "onebox.db")


@pytest.fixture
def indexer() -> RecordingIndexer:
    return RecordingIndexer()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def categorizer(store, notifier) -> CountingCategorizer:
    return CountingCategorizer(store, notifier)


@pytest.fixture
def dispatcher(indexer, categorizer) -> Iterator[Dispatcher]:
    d = Dispatcher(indexer, categorizer, max_workers=4)
    yield d
    d.close(wait=True)
