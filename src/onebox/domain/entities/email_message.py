from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class EmailCategory(str, Enum):
    """Categories assigned to stored messages by the categorizer."""

    INTERESTED = "INTERESTED"
    MEETING_BOOKED = "MEETING_BOOKED"
    NOT_INTERESTED = "NOT_INTERESTED"
    SPAM = "SPAM"
    OUT_OF_OFFICE = "OUT_OF_OFFICE"
    UNCATEGORIZED = "UNCATEGORIZED"


@dataclass(frozen=True)
class ParsedMessage:
    message_id: str
    account_id: str
    from_address: str
    to_address: str
    subject: str
    body: str
    date: datetime
    html_body: Optional[str] = None
    folder: Optional[str] = None
    # True when message_id was synthesized (no Message-ID header)
    message_id_generated: bool = False


@dataclass(frozen=True)
class StoredMessage:
    id: str
    message_id: str
    account_id: str
    from_address: str
    to_address: str
    subject: str
    body: str
    date: datetime
    created_at: datetime
    html_body: Optional[str] = None
    folder: Optional[str] = None
    category: EmailCategory = EmailCategory.UNCATEGORIZED
    category_confidence: Optional[float] = None
