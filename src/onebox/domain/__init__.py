"""Domain models and entities."""

from onebox.domain.entities.account import Account, AccountConfig
from onebox.domain.entities.email_message import EmailCategory, ParsedMessage, StoredMessage
from onebox.domain.models import ConnectionState, ConnectionStatus

__all__ = [
    "Account",
    "AccountConfig",
    "EmailCategory",
    "ParsedMessage",
    "StoredMessage",
    "ConnectionState",
    "ConnectionStatus",
]
