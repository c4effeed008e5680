"""Bounded batch fetch and parse of raw messages."""

from __future__ import annotations

from typing import Callable, Iterator, Optional, Sequence

from loguru import logger

from onebox.application.errors import MessageParseError
from onebox.application.ports.mail_session import MailSession
from onebox.domain.entities.email_message import ParsedMessage
from onebox.infrastructure.email.mapper import rfc822_to_parsed_message

DEFAULT_BATCH_SIZE = 50

Parser = Callable[[str, Optional[bytes], str, Optional[str]], ParsedMessage]


class BatchFetcher:
    """Fetch and parse messages in fixed-size batches.

    Batching bounds peak memory and per-command server load. A message that
    fails to parse is logged and skipped; the rest of its batch continues.
    Search/fetch command failures surface as FetchBatchError to the caller.
    """

    def __init__(
        self,
        session: MailSession,
        account_id: str,
        folder: Optional[str] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        parser: Parser = rfc822_to_parsed_message,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.session = session
        self.account_id = account_id
        self.folder = folder
        self.batch_size = batch_size
        self.parser = parser
        self.skipped = 0

    def batches(self, locators: Sequence[str]) -> Iterator[Sequence[str]]:
        for start in range(0, len(locators), self.batch_size):
            yield locators[start:start + self.batch_size]

    def iter_batch(self, batch: Sequence[str]) -> Iterator[ParsedMessage]:
        """Lazily yield parsed messages of one batch, in locator order."""
        for locator, raw in self.session.fetch(batch):
            try:
                yield self.parser(locator, raw, self.account_id, self.folder)
            except MessageParseError as e:
                self.skipped += 1
                logger.warning(f"Skipping unparsable message for {self.account_id}: {e}")

    def fetch(self, locators: Sequence[str]) -> Iterator[ParsedMessage]:
        """Yield parsed messages across all batches. Not restartable."""
        locators = list(locators)
        for batch in self.batches(locators):
            yield from self.iter_batch(batch)
            logger.debug(f"Processed batch of {len(batch)} messages for {self.account_id}")
