"""SQLite infrastructure for message storage."""

from onebox.infrastructure.sqlite.client import SQLiteMessageStore

__all__ = [
    "SQLiteMessageStore",
]
