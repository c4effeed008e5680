"""Milvus-backed search indexing of stored messages."""

from __future__ import annotations

from typing import Any

from loguru import logger
from pymilvus import DataType, MilvusClient

from onebox.domain.entities.email_message import StoredMessage
from onebox.infrastructure.indexing.embeddings import Embedder
from onebox.infrastructure.settings import Settings, get_settings


class MilvusEmailIndexer:
    """Embed subject and body of each stored message and upsert it into Milvus.

    Documents are keyed by the stored message id, so re-indexing the
    same message overwrites its previous entry.
    """

    def __init__(
        self,
        embedder: Embedder,
        settings: Settings | None = None,
        client: MilvusClient | None = None,
    ):
        self.settings = settings or get_settings()
        self.embedder = embedder
        self.collection_name = self.settings.milvus_collection_name
        self._client = client
        self._collection_ready = False

    @property
    def client(self) -> MilvusClient:
        if self._client is None:
            logger.info(f"Connecting to Milvus at {self.settings.milvus_uri}")
            self._client = MilvusClient(uri=self.settings.milvus_uri)
            logger.info("Milvus connection established")
        return self._client

    def ensure_collection(self) -> None:
        """Create the collection if it doesn't exist."""
        if self._collection_ready:
            return
        if self.client.has_collection(self.collection_name):
            logger.info(f"Collection {self.collection_name} already exists")
        else:
            logger.info(f"Creating collection {self.collection_name} with dimension {self.embedder.dimension}")
            self.client.create_collection(
                collection_name=self.collection_name,
                dimension=self.embedder.dimension,
                primary_field_name="id",
                id_type=DataType.VARCHAR,
                max_length=64,
                vector_field_name="embedding",
                metric_type="COSINE",
                auto_id=False,
            )
        self._collection_ready = True

    def index_message(self, message: StoredMessage) -> None:
        self.ensure_collection()
        embedding = self.embedder.embed(f"{message.subject}\n\n{message.body}")
        self.client.upsert(collection_name=self.collection_name, data=[_document(message, embedding)])
        logger.debug(f"Indexed email {message.id} ({message.message_id})")

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            logger.info("Milvus connection closed")


class NullIndexer:
    """Indexer used when search indexing is disabled."""

    def index_message(self, message: StoredMessage) -> None:
        logger.debug(f"Indexing disabled, skipping {message.message_id}")

    def close(self) -> None:
        pass


def _document(message: StoredMessage, embedding: list[float]) -> dict[str, Any]:
    return {
        "id": message.id,
        "embedding": embedding,
        "message_id": message.message_id[:998],
        "account_id": message.account_id,
        "folder": message.folder or "",
        "subject": message.subject[:500],
        "from_address": message.from_address[:200],
        "to_address": message.to_address[:500],
        "date": message.date.isoformat(),
        "category": message.category.value,
        "text": message.body[:5000],
    }
