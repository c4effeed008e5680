"""Error taxonomy for the ingestion engine."""


class OneboxError(Exception):
    """Base class for engine errors."""


class MailConnectionError(OneboxError):
    """Network, authentication or session failure. Triggers a reconnect."""


class FetchBatchError(OneboxError):
    """A search or fetch command failed. Aborts the current fetch attempt only."""


class MessageParseError(OneboxError):
    """A single raw message could not be parsed."""

    def __init__(self, locator: str, reason: str) -> None:
        super().__init__(f"message {locator}: {reason}")
        self.locator = locator
        self.reason = reason


class DuplicateMessageError(OneboxError):
    """Storage refused a second record for an existing message id."""

    def __init__(self, message_id: str) -> None:
        super().__init__(f"message already stored: {message_id}")
        self.message_id = message_id
