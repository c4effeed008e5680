"""Default wiring shared by the command line entry points."""

from __future__ import annotations

import sys

from loguru import logger

from onebox.application.ports.message_store import MessageStore
from onebox.application.sync.dispatcher import Dispatcher
from onebox.infrastructure.categorization import KeywordCategorizer
from onebox.infrastructure.notifications import WebhookNotifier
from onebox.infrastructure.settings import Settings

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{thread.name}</cyan> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def configure_logging(level: str = "INFO") -> None:
    logger.remove()
    logger.add(sys.stderr, format=LOG_FORMAT, level=level.upper())


def build_store(settings: Settings) -> MessageStore:
    """Create the message store selected by STORE_BACKEND."""
    if settings.store_backend == "postgres":
        from onebox.infrastructure.postgres_client import PostgresMessageStore

        store = PostgresMessageStore(settings)
        store.setup_schema()
        return store

    from onebox.infrastructure.sqlite import SQLiteMessageStore

    return SQLiteMessageStore(settings.sqlite_db_path)


def build_indexer(settings: Settings):
    from onebox.infrastructure.indexing.milvus_indexer import MilvusEmailIndexer, NullIndexer

    if not settings.milvus_enabled:
        logger.info("Search indexing disabled (MILVUS_ENABLED=false)")
        return NullIndexer()

    from onebox.infrastructure.indexing.embeddings import SentenceTransformerEmbedder

    embedder = SentenceTransformerEmbedder(settings.embedding_model)
    indexer = MilvusEmailIndexer(embedder, settings)
    indexer.ensure_collection()
    return indexer


def build_dispatcher(settings: Settings, store: MessageStore) -> Dispatcher:
    """Wire indexing, categorization and notifications behind one dispatcher."""
    notifier = WebhookNotifier(settings.notify_webhook_url, timeout=settings.notify_timeout_seconds)
    if not notifier.enabled:
        logger.info("No NOTIFY_WEBHOOK_URL set, interested notifications disabled")
    categorizer = KeywordCategorizer(store, notifier)
    return Dispatcher(
        indexer=build_indexer(settings),
        categorizer=categorizer,
        max_workers=settings.dispatch_max_workers,
    )


def close_quietly(resource: object, name: str) -> None:
    """Call close()/disconnect() on a resource, logging any failure."""
    for method in ("close", "disconnect"):
        closer = getattr(resource, method, None)
        if closer is None:
            continue
        try:
            closer()
        except Exception as e:
            logger.warning(f"Failed to close {name}: {e}")
        return
