"""Application layer - ports, errors and the sync engine."""

from onebox.application.errors import (
    DuplicateMessageError,
    FetchBatchError,
    MailConnectionError,
    MessageParseError,
    OneboxError,
)

__all__ = [
    "DuplicateMessageError",
    "FetchBatchError",
    "MailConnectionError",
    "MessageParseError",
    "OneboxError",
]
