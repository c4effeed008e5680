"""Fire-and-forget fan-out of stored messages to downstream consumers."""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable

from loguru import logger

from onebox.application.ports.consumers import Categorizer, Indexer
from onebox.domain.entities.email_message import StoredMessage


class Dispatcher:
    """Hand each stored message to the indexer and the categorizer.

    Calls run on a thread pool and are never awaited by the ingestion
    worker. A failure in one consumer is logged and does not affect the
    other or subsequent messages. Delivery is best-effort and unordered.
    """

    def __init__(self, indexer: Indexer, categorizer: Categorizer, max_workers: int = 16) -> None:
        self.indexer = indexer
        self.categorizer = categorizer
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="onebox-dispatch")
        self._closed = False
        self._lock = threading.Lock()

    def dispatch(self, message: StoredMessage) -> list[Future]:
        futures = []
        for name, call in (
            ("index", self.indexer.index_message),
            ("categorize", self.categorizer.categorize),
        ):
            future = self._submit(name, call, message)
            if future is not None:
                futures.append(future)
        return futures

    def _submit(self, name: str, call: Callable[[StoredMessage], None], message: StoredMessage) -> Future | None:
        with self._lock:
            if self._closed:
                logger.warning(f"Dispatcher closed, dropping {name} for {message.message_id}")
                return None
            future = self._executor.submit(call, message)

        def _log_outcome(f: Future) -> None:
            exc = f.exception()
            if exc is not None:
                logger.error(f"Failed to {name} message {message.message_id}: {exc}")

        future.add_done_callback(_log_outcome)
        return future

    def close(self, wait: bool = True) -> None:
        """Stop accepting work; optionally wait for in-flight calls."""
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait)
