"""PostgreSQL message store."""

from __future__ import annotations

import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Generator, Optional

import psycopg
from loguru import logger
from psycopg import errors
from psycopg.rows import dict_row

from onebox.application.errors import DuplicateMessageError
from onebox.domain.entities.account import Account, AccountConfig
from onebox.domain.entities.email_message import EmailCategory, ParsedMessage, StoredMessage
from onebox.infrastructure.settings import Settings, get_settings

SCHEMA = """
    CREATE TABLE IF NOT EXISTS email_accounts (
        id VARCHAR(255) PRIMARY KEY,
        email VARCHAR(320) NOT NULL UNIQUE,
        imap_host VARCHAR(255) NOT NULL,
        imap_port INTEGER NOT NULL,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS emails (
        id UUID PRIMARY KEY,
        message_id VARCHAR(998) NOT NULL UNIQUE,
        email_account_id VARCHAR(255) NOT NULL REFERENCES email_accounts(id),
        from_address TEXT NOT NULL,
        to_address TEXT NOT NULL,
        subject TEXT NOT NULL,
        body TEXT NOT NULL,
        html_body TEXT,
        date TIMESTAMP WITH TIME ZONE NOT NULL,
        folder VARCHAR(255),
        category VARCHAR(32) NOT NULL DEFAULT 'UNCATEGORIZED',
        category_confidence DOUBLE PRECISION,
        created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
    );

    CREATE INDEX IF NOT EXISTS idx_emails_account_date ON emails(email_account_id, date);
"""


class PostgresMessageStore:
    """PostgreSQL implementation of the MessageStore port.

    One connection is shared by all sync workers and serialized with a
    lock; the UNIQUE(message_id) constraint resolves cross-account races.
    """

    def __init__(self, settings: Settings | None = None):
        """Initialize PostgreSQL message store."""
        self.settings = settings or get_settings()
        self._connection: psycopg.Connection | None = None
        self._lock = threading.Lock()

    def connect(self) -> psycopg.Connection:
        """Establish connection to PostgreSQL."""
        if self._connection is None or self._connection.closed:
            logger.info(f"Connecting to PostgreSQL at {self.settings.postgres_host}:{self.settings.postgres_port}")
            self._connection = psycopg.connect(self.settings.postgres_dsn, row_factory=dict_row)
            logger.info("PostgreSQL connection established")
        return self._connection

    def disconnect(self) -> None:
        """Close PostgreSQL connection."""
        if self._connection is not None and not self._connection.closed:
            self._connection.close()
            self._connection = None
            logger.info("PostgreSQL connection closed")

    def setup_schema(self) -> None:
        """Create the accounts and emails tables."""
        with self._transaction() as cur:
            cur.execute(SCHEMA)
        logger.info("Database schema setup complete")

    @contextmanager
    def _transaction(self) -> Generator[psycopg.Cursor, None, None]:
        with self._lock:
            conn = self.connect()
            try:
                with conn.cursor() as cur:
                    yield cur
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def health_check(self) -> dict[str, Any]:
        """Check PostgreSQL connection health."""
        try:
            with self._transaction() as cur:
                cur.execute("SELECT version() AS version")
                version = cur.fetchone()["version"]
            return {
                "status": "healthy",
                "host": self.settings.postgres_host,
                "database": self.settings.postgres_db,
                "version": version,
            }
        except Exception as e:
            logger.error(f"PostgreSQL health check failed: {e}")
            return {
                "status": "unhealthy",
                "host": self.settings.postgres_host,
                "database": self.settings.postgres_db,
                "error": str(e),
            }

    def upsert_account(self, config: AccountConfig) -> Account:
        with self._transaction() as cur:
            cur.execute(
                """
                INSERT INTO email_accounts (id, email, imap_host, imap_port, is_active)
                VALUES (%s, %s, %s, %s, TRUE)
                ON CONFLICT (email) DO UPDATE SET
                    imap_host = EXCLUDED.imap_host,
                    imap_port = EXCLUDED.imap_port,
                    is_active = TRUE,
                    updated_at = CURRENT_TIMESTAMP
                RETURNING id, email, imap_host, imap_port, is_active
                """,
                (config.id, config.email, config.host, config.port),
            )
            row = cur.fetchone()
        return _row_to_account(row)

    def find_account_by_email(self, email: str) -> Optional[Account]:
        with self._transaction() as cur:
            cur.execute(
                "SELECT id, email, imap_host, imap_port, is_active FROM email_accounts WHERE email = %s",
                (email,),
            )
            row = cur.fetchone()
        return _row_to_account(row) if row else None

    def exists_by_message_id(self, message_id: str) -> bool:
        with self._transaction() as cur:
            cur.execute("SELECT 1 FROM emails WHERE message_id = %s", (message_id,))
            return cur.fetchone() is not None

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
            with self._transaction() as cur:
                cur.execute(
                    """
                    INSERT INTO emails
                        (id, message_id, email_account_id, from_address, to_address, subject,
                         body, html_body, date, folder, category, created_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        stored.id, stored.message_id, stored.account_id, stored.from_address,
                        stored.to_address, stored.subject, stored.body, stored.html_body,
                        stored.date, stored.folder, stored.category.value, stored.created_at,
                    ),
                )
        except errors.UniqueViolation as e:
            raise DuplicateMessageError(parsed.message_id) from e
        return stored

    def update_category(self, id: str, category: EmailCategory, confidence: float) -> None:
        with self._transaction() as cur:
            cur.execute(
                "UPDATE emails SET category = %s, category_confidence = %s WHERE id = %s",
                (category.value, confidence, id),
            )


def _row_to_account(row: dict[str, Any]) -> Account:
    return Account(
        id=row["id"],
        email=row["email"],
        host=row["imap_host"],
        port=row["imap_port"],
        is_active=row["is_active"],
    )
