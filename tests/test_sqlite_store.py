from datetime import datetime, timezone

from onebox.domain.entities.account import AccountConfig
from onebox.domain.entities.email_message import EmailCategory, ParsedMessage


def _parsed(message_id="<a@example.com>"):
    return ParsedMessage(
        message_id=message_id,
        account_id="work",
        from_address="alice@example.com",
        to_address="me@example.com",
        subject="Subject",
        body="Body",
        html_body="<p>Body</p>",
        date=datetime(2024, 3, 4, 5, 6, tzinfo=timezone.utc),
        folder="INBOX",
    )


def test_upsert_account_is_keyed_by_email(store, account):
    first = store.upsert_account(account)
    moved = AccountConfig(id="renamed", email=account.email, credential="x", host="imap2.example.com", port=1993)

    second = store.upsert_account(moved)

    assert second.id == first.id == "work"
    assert (second.host, second.port) == ("imap2.example.com", 1993)
    assert second.is_active
    assert store.find_account_by_email(account.email) == second


def test_find_unknown_account(store):
    assert store.find_account_by_email("nobody@example.com") is None


def test_create_and_read_back(store, account):
    store.upsert_account(account)
    created = store.create_message(_parsed(), account.id)

    loaded = store.get_message(created.id)

    assert loaded == created
    assert loaded.category is EmailCategory.UNCATEGORIZED
    assert store.exists_by_message_id("<a@example.com>")
    assert not store.exists_by_message_id("<b@example.com>")


def test_update_category(store, account):
    store.upsert_account(account)
    created = store.create_message(_parsed(), account.id)

    store.update_category(created.id, EmailCategory.MEETING_BOOKED, 0.8)

    loaded = store.get_message(created.id)
    assert loaded.category is EmailCategory.MEETING_BOOKED
    assert loaded.category_confidence == 0.8


def test_count_messages_per_account(store, account):
    other = AccountConfig(id="other", email="o@example.com", credential="x", host="imap.example.com")
    store.upsert_account(account)
    store.upsert_account(other)
    store.create_message(_parsed("<1@example.com>"), account.id)
    store.create_message(_parsed("<2@example.com>"), account.id)
    store.create_message(_parsed("<3@example.com>"), other.id)

    assert store.count_messages() == 3
    assert store.count_messages(account.id) == 2
    assert store.count_messages(other.id) == 1
