"""Downstream consumer ports fed by the dispatcher."""

from __future__ import annotations
from typing import Protocol

from onebox.domain.entities.email_message import StoredMessage


class Indexer(Protocol):
    def index_message(self, message: StoredMessage) -> None: ...


class Notifier(Protocol):
    def notify_interested(self, message: StoredMessage) -> None: ...


class Categorizer(Protocol):
    # Implementations decide whether to call a Notifier
    def categorize(self, message: StoredMessage) -> None: ...
