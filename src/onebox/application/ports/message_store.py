"""Durable storage port for accounts and messages."""

from __future__ import annotations
from typing import Optional, Protocol

from onebox.domain.entities.account import Account, AccountConfig
from onebox.domain.entities.email_message import EmailCategory, ParsedMessage, StoredMessage


class MessageStore(Protocol):
    """Durable storage for accounts and messages.

    create_message must raise DuplicateMessageError when a record with the
    same message_id already exists; this is the authoritative dedup check.
    """

    def upsert_account(self, config: AccountConfig) -> Account: ...
    def find_account_by_email(self, email: str) -> Optional[Account]: ...
    def exists_by_message_id(self, message_id: str) -> bool: ...
    def create_message(self, parsed: ParsedMessage, account_id: str) -> StoredMessage: ...
    def update_category(self, id: str, category: EmailCategory, confidence: float) -> None: ...
