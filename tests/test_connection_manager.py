import dataclasses
import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from onebox.application.sync.connection_manager import ConnectionManager
from onebox.domain.models import ConnectionStatus
from tests.conftest import make_raw, wait_until


@pytest.fixture
def manager_factory(account, mailbox, store, dispatcher, timings):
    managers = []

    def build(**overrides):
        manager = ConnectionManager(
            account,
            session_factory=mailbox.session_factory,
            store=store,
            dispatcher=dispatcher,
            timings=dataclasses.replace(timings, **overrides),
        )
        managers.append(manager)
        return manager

    yield build
    for manager in managers:
        manager.stop(timeout=2.0)


def _idling(manager):
    return manager.status is ConnectionStatus.IDLING


def test_backfills_then_fetches_pushed_mail(manager_factory, mailbox, store, indexer):
    for i in range(3):
        mailbox.add(make_raw(f"<backfill-{i}@example.com>"))
    manager = manager_factory()

    assert manager.start()
    assert wait_until(lambda: _idling(manager) and store.count_messages() == 3)

    mailbox.push(make_raw("<pushed@example.com>"))
    assert wait_until(lambda: store.count_messages() == 4)
    assert wait_until(lambda: len(indexer.indexed) == 4)
    assert manager.fetch_cycles >= 1


def test_backfill_ignores_mail_older_than_window(manager_factory, mailbox, store):
    old = datetime.now(timezone.utc) - timedelta(days=45)
    mailbox.add(make_raw("<old@example.com>", when=old), when=old, seen=True)
    mailbox.add(make_raw("<recent@example.com>"))
    manager = manager_factory()

    manager.start()
    assert wait_until(lambda: _idling(manager))
    assert store.count_messages() == 1
    assert store.exists_by_message_id("<recent@example.com>")


def test_unparsable_message_does_not_block_others(manager_factory, mailbox, store, indexer, categorizer):
    for i in range(3):
        mailbox.add(make_raw(f"<good-{i}@example.com>"))
    mailbox.add(b"")
    manager = manager_factory()

    manager.start()
    assert wait_until(lambda: _idling(manager) and store.count_messages() == 3)
    assert wait_until(lambda: len(indexer.indexed) == 3 and len(categorizer.seen) == 3)


def test_reprocessing_same_messages_creates_no_duplicates(manager_factory, mailbox, store, indexer):
    for i in range(2):
        mailbox.add(make_raw(f"<m{i}@example.com>"))
    manager = manager_factory()
    manager.start()
    assert wait_until(lambda: _idling(manager) and store.count_messages() == 2)

    # A reconnect runs the backfill again over the same messages
    mailbox.drop_connections()
    assert wait_until(lambda: mailbox.connect_attempts == 2 and _idling(manager))

    assert store.count_messages() == 2
    time.sleep(0.05)
    assert len(indexer.indexed) == 2


def test_retries_connection_until_it_succeeds(manager_factory, mailbox):
    mailbox.connect_failures = 2
    manager = manager_factory()

    manager.start()
    assert wait_until(lambda: _idling(manager))
    assert mailbox.connect_attempts == 3
    assert manager.state.retry_count == 0
    assert manager.state.last_error is None


def test_keeps_retrying_until_stopped(manager_factory, mailbox):
    mailbox.connect_failures = 10**6
    manager = manager_factory()

    manager.start()
    assert wait_until(lambda: mailbox.connect_attempts >= 3)
    assert manager.state.retry_count >= 2
    assert "Connection refused" in manager.state.last_error

    assert manager.stop(timeout=2.0)
    attempts = mailbox.connect_attempts
    time.sleep(0.2)
    assert mailbox.connect_attempts == attempts
    assert manager.status is ConnectionStatus.STOPPED


def test_reconnects_after_connection_drop(manager_factory, mailbox, store):
    manager = manager_factory()
    manager.start()
    assert wait_until(lambda: _idling(manager))

    mailbox.drop_connections()
    assert wait_until(lambda: mailbox.connect_attempts == 2 and _idling(manager))

    mailbox.push(make_raw("<after-reconnect@example.com>"))
    assert wait_until(lambda: store.count_messages() == 1)


def test_stop_while_idling_is_prompt(manager_factory, mailbox):
    manager = manager_factory()
    manager.start()
    assert wait_until(lambda: _idling(manager))

    started = time.monotonic()
    assert manager.stop(timeout=2.0)
    assert time.monotonic() - started < 1.0
    assert manager.status is ConnectionStatus.STOPPED
    assert mailbox.live_sessions() == 0
    assert not manager.is_alive()


def test_stop_while_fetching_abandons_the_cycle(manager_factory, mailbox, store):
    manager = manager_factory()
    manager.start()
    assert wait_until(lambda: _idling(manager))

    fetching = threading.Event()

    def slow_fetch(locators):
        fetching.set()
        time.sleep(0.3)

    mailbox.on_fetch = slow_fetch
    mailbox.push(make_raw("<slow@example.com>"))
    assert fetching.wait(2.0)
    assert manager.status is ConnectionStatus.FETCHING

    assert manager.stop(timeout=2.0)
    assert manager.status is ConnectionStatus.STOPPED
    assert store.count_messages() == 0
    assert mailbox.connect_attempts == 1


def test_mail_arriving_during_fetch_is_picked_up(manager_factory, mailbox, store):
    manager = manager_factory()
    manager.start()
    assert wait_until(lambda: _idling(manager))

    delivered = []

    def deliver_once(locators):
        if not delivered:
            delivered.append(mailbox.push(make_raw("<during-fetch@example.com>")))

    mailbox.on_fetch = deliver_once
    mailbox.push(make_raw("<first@example.com>"))

    assert wait_until(lambda: store.count_messages() == 2)
    assert store.exists_by_message_id("<during-fetch@example.com>")
    assert manager.fetch_cycles >= 2


def test_fetch_failure_is_retried_on_next_cycle(manager_factory, mailbox, store):
    for i in range(3):
        mailbox.add(make_raw(f"<m{i}@example.com>"))
    mailbox.fetch_failures = 1
    manager = manager_factory()

    manager.start()
    assert wait_until(lambda: _idling(manager))
    assert store.count_messages() == 0
    assert mailbox.connect_attempts == 1

    mailbox.push(make_raw("<trigger@example.com>"))
    assert wait_until(lambda: store.count_messages() == 4)


def test_keepalive_pings_while_idle(manager_factory, mailbox, store):
    manager = manager_factory(keepalive_interval=0.05)
    manager.start()

    assert wait_until(lambda: mailbox.noops >= 2)
    assert mailbox.idle_starts >= 3
    assert mailbox.connect_attempts == 1

    mailbox.push(make_raw("<still-alive@example.com>"))
    assert wait_until(lambda: store.count_messages() == 1)


def test_idle_is_refreshed_periodically(manager_factory, mailbox):
    manager = manager_factory(idle_refresh_interval=0.05)
    manager.start()

    assert wait_until(lambda: mailbox.idle_starts >= 3)
    assert mailbox.noops == 0
    assert mailbox.connect_attempts == 1


def test_start_is_idempotent_and_not_restartable(manager_factory, mailbox):
    manager = manager_factory()
    assert manager.start()
    assert not manager.start()
    assert wait_until(lambda: _idling(manager))
    assert mailbox.connect_attempts == 1

    manager.stop(timeout=2.0)
    assert not manager.start()
    assert manager.status is ConnectionStatus.STOPPED


def test_run_once_backfills_without_idling(manager_factory, mailbox, store):
    for i in range(2):
        mailbox.add(make_raw(f"<once-{i}@example.com>"))
    manager = manager_factory()

    assert manager.run_once() == 2
    assert manager.status is ConnectionStatus.DISCONNECTED
    assert mailbox.idle_starts == 0
    assert mailbox.live_sessions() == 0


def test_failed_save_is_retried_on_next_push(manager_factory, mailbox, store, monkeypatch):
    create = store.create_message
    calls = []

    def locked_once(parsed, account_id):
        calls.append(parsed.message_id)
        if len(calls) == 1:
            raise RuntimeError("database is locked")
        return create(parsed, account_id)

    monkeypatch.setattr(store, "create_message", locked_once)
    manager = manager_factory()
    manager.start()
    assert wait_until(lambda: _idling(manager))

    mailbox.push(make_raw("<first@example.com>"))
    assert wait_until(lambda: len(calls) == 1)
    assert store.count_messages() == 0

    mailbox.push(make_raw("<second@example.com>"))
    assert wait_until(lambda: store.count_messages() == 2)
    assert store.exists_by_message_id("<first@example.com>")
    assert store.exists_by_message_id("<second@example.com>")


def test_overlapping_unseen_sets_are_not_reprocessed(
    manager_factory, mailbox, store, indexer, categorizer
):
    manager = manager_factory()
    manager.start()
    assert wait_until(lambda: _idling(manager))

    mailbox.push(make_raw("<a@example.com>"))
    assert wait_until(lambda: store.count_messages() == 1)
    assert wait_until(lambda: _idling(manager))

    # Peeked mail stays unseen, so the second cycle returns both messages
    mailbox.push(make_raw("<b@example.com>"))
    assert wait_until(lambda: store.count_messages() == 2)
    assert wait_until(lambda: len(indexer.indexed) == 2 and len(categorizer.seen) == 2)

    assert any(len(call) == 2 for call in mailbox.fetch_calls)
    time.sleep(0.05)
    assert sorted(m.message_id for m in indexer.indexed) == ["<a@example.com>", "<b@example.com>"]
    assert len(categorizer.seen) == 2


def test_marking_mode_fetches_only_new_mail(manager_factory, mailbox, store):
    mailbox.mark_seen = True
    manager = manager_factory()
    manager.start()
    assert wait_until(lambda: _idling(manager))

    first = mailbox.push(make_raw("<a@example.com>"))
    assert wait_until(lambda: store.count_messages() == 1)
    second = mailbox.push(make_raw("<b@example.com>"))
    assert wait_until(lambda: store.count_messages() == 2)

    assert mailbox.fetch_calls == [[first], [second]]
