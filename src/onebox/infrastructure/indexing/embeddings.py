"""Text embedders used by the search indexer."""

from __future__ import annotations

import threading
from typing import Protocol

from loguru import logger


class Embedder(Protocol):
    """Protocol for embedding providers."""

    def embed(self, text: str) -> list[float]:
        ...

    @property
    def dimension(self) -> int:
        ...


class SentenceTransformerEmbedder:
    """Local sentence-transformers embedder.

    The model is loaded on construction; encode calls are serialized
    since dispatch workers share one instance.
    """

    def __init__(self, model_name: str = "sentence-transformers/all-MiniLM-L6-v2"):
        from sentence_transformers import SentenceTransformer

        logger.info(f"Loading embedding model: {model_name}")
        self.model = SentenceTransformer(model_name)
        self._dimension = self.model.get_sentence_embedding_dimension()
        self._lock = threading.Lock()
        logger.info(f"Embedding model loaded, dimension: {self._dimension}")

    def embed(self, text: str) -> list[float]:
        with self._lock:
            return self.model.encode(text, convert_to_numpy=True).tolist()

    @property
    def dimension(self) -> int:
        return self._dimension
