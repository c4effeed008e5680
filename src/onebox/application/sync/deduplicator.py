"""Deduplicate parsed messages against durable storage and persist new ones."""

from __future__ import annotations

from typing import Optional

from loguru import logger

from onebox.application.errors import DuplicateMessageError
from onebox.application.ports.message_store import MessageStore
from onebox.domain.entities.email_message import ParsedMessage, StoredMessage


class Deduplicator:
    """Skip messages already stored; create the rest.

    The existence check only avoids needless writes. The store's
    create_message is the authoritative boundary: a uniqueness violation
    from a concurrent worker is reported as DuplicateMessageError and
    handled as a skip.
    """

    def __init__(self, store: MessageStore, account_email: str) -> None:
        self.store = store
        self.account_email = account_email
        self.created = 0
        self.skipped = 0

    def persist(self, parsed: ParsedMessage) -> Optional[StoredMessage]:
        if self.store.exists_by_message_id(parsed.message_id):
            self.skipped += 1
            return None

        account = self.store.find_account_by_email(self.account_email)
        if account is None:
            logger.error(f"Account not found: {self.account_email}")
            return None

        try:
            stored = self.store.create_message(parsed, account.id)
        except DuplicateMessageError:
            logger.debug(f"Lost create race for {parsed.message_id}, skipping")
            self.skipped += 1
            return None

        self.created += 1
        logger.info(f"Saved email: {stored.subject[:50]}")
        return stored
