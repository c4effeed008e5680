"""SQLite message store for local and single-host deployments."""

from __future__ import annotations

import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator, Optional

from loguru import logger

from onebox.application.errors import DuplicateMessageError
from onebox.domain.entities.account import Account, AccountConfig
from onebox.domain.entities.email_message import EmailCategory, ParsedMessage, StoredMessage


class SQLiteMessageStore:
    """SQLite implementation of the MessageStore port.

    UNIQUE(message_id) makes create_message the authoritative dedup check
    across every account writing to the same database.
    """

    def __init__(self, db_path: str | Path = "./data/onebox.db"):
        self.db_path = Path(db_path)
        self._ensure_db()

    def _ensure_db(self) -> None:
        """Create database and tables if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._connection() as conn:
            conn.executescript("""
                PRAGMA journal_mode=WAL;

                CREATE TABLE IF NOT EXISTS email_accounts (
                    id TEXT PRIMARY KEY,
                    email TEXT NOT NULL UNIQUE,
                    imap_host TEXT NOT NULL,
                    imap_port INTEGER NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS emails (
                    id TEXT PRIMARY KEY,
                    message_id TEXT NOT NULL UNIQUE,
                    email_account_id TEXT NOT NULL,
                    from_address TEXT NOT NULL,
                    to_address TEXT NOT NULL,
                    subject TEXT NOT NULL,
                    body TEXT NOT NULL,
                    html_body TEXT,
                    date TEXT NOT NULL,
                    folder TEXT,
                    category TEXT NOT NULL DEFAULT 'UNCATEGORIZED',
                    category_confidence REAL,
                    created_at TEXT NOT NULL,

                    FOREIGN KEY(email_account_id) REFERENCES email_accounts(id)
                );

                CREATE INDEX IF NOT EXISTS idx_emails_account_date
                    ON emails(email_account_id, date);
            """)
            logger.info(f"SQLite database initialized at {self.db_path}")

    @contextmanager
    def _connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Context manager for database connections."""
        conn = sqlite3.connect(self.db_path, timeout=30.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def upsert_account(self, config: AccountConfig) -> Account:
        """Create the account row or refresh its connection settings."""
        now = datetime.now(timezone.utc).isoformat()

        with self._connection() as conn:
            conn.execute(
                """INSERT INTO email_accounts (id, email, imap_host, imap_port, is_active, created_at, updated_at)
                   VALUES (?, ?, ?, ?, 1, ?, ?)
                   ON CONFLICT(email) DO UPDATE SET
                       imap_host = excluded.imap_host,
                       imap_port = excluded.imap_port,
                       is_active = 1,
                       updated_at = excluded.updated_at""",
                (config.id, config.email, config.host, config.port, now, now),
            )
            row = conn.execute(
                "SELECT * FROM email_accounts WHERE email = ?", (config.email,)
            ).fetchone()

        logger.debug(f"Upserted account {config.email}")
        return _row_to_account(row)

    def find_account_by_email(self, email: str) -> Optional[Account]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM email_accounts WHERE email = ?", (email,)
            ).fetchone()
        return _row_to_account(row) if row else None

    def exists_by_message_id(self, message_id: str) -> bool:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM emails WHERE message_id = ?", (message_id,)
            ).fetchone()
        return row is not None

    def create_message(self, parsed: ParsedMessage, account_id: str) -> StoredMessage:
        stored = StoredMessage(
            id=str(uuid.uuid4()),
            message_id=parsed.message_id,
            account_id=account_id,
            from_address=parsed.from_address,
            to_address=parsed.to_address,
            subject=parsed.subject,
            body=parsed.body,
            html_body=parsed.html_body,
            date=parsed.date,
            folder=parsed.folder,
            created_at=datetime.now(timezone.utc),
        )

        try:
            with self._connection() as conn:
                conn.execute(
                    """INSERT INTO emails
                       (id, message_id, email_account_id, from_address, to_address, subject,
                        body, html_body, date, folder, category, created_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        stored.id, stored.message_id, stored.account_id, stored.from_address,
                        stored.to_address, stored.subject, stored.body, stored.html_body,
                        stored.date.isoformat(), stored.folder, stored.category.value,
                        stored.created_at.isoformat(),
                    ),
                )
        except sqlite3.IntegrityError as e:
            if "message_id" in str(e):
                raise DuplicateMessageError(parsed.message_id) from e
            raise

        return stored

    def update_category(self, id: str, category: EmailCategory, confidence: float) -> None:
        with self._connection() as conn:
            conn.execute(
                "UPDATE emails SET category = ?, category_confidence = ? WHERE id = ?",
                (category.value, confidence, id),
            )

    def get_message(self, id: str) -> Optional[StoredMessage]:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM emails WHERE id = ?", (id,)).fetchone()
        return _row_to_message(row) if row else None

    def count_messages(self, account_id: Optional[str] = None) -> int:
        with self._connection() as conn:
            if account_id is None:
                row = conn.execute("SELECT COUNT(*) FROM emails").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) FROM emails WHERE email_account_id = ?", (account_id,)
                ).fetchone()
        return row[0]


def _row_to_account(row: sqlite3.Row) -> Account:
    return Account(
        id=row["id"],
        email=row["email"],
        host=row["imap_host"],
        port=row["imap_port"],
        is_active=bool(row["is_active"]),
    )


def _row_to_message(row: sqlite3.Row) -> StoredMessage:
    return StoredMessage(
        id=row["id"],
        message_id=row["message_id"],
        account_id=row["email_account_id"],
        from_address=row["from_address"],
        to_address=row["to_address"],
        subject=row["subject"],
        body=row["body"],
        html_body=row["html_body"],
        date=datetime.fromisoformat(row["date"]),
        folder=row["folder"],
        category=EmailCategory(row["category"]),
        category_confidence=row["category_confidence"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )
