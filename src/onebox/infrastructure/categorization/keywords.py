"""Rule-based message categorization."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional

from loguru import logger

from onebox.application.ports.consumers import Notifier
from onebox.application.ports.message_store import MessageStore
from onebox.domain.entities.email_message import EmailCategory, StoredMessage


@dataclass(frozen=True)
class CategorizationResult:
    category: EmailCategory
    confidence: float


# Checked in order; first match wins. Negative phrases come before
# INTERESTED since "not interested" contains "interested".
RULES: list[tuple[EmailCategory, float, tuple[str, ...]]] = [
    (EmailCategory.OUT_OF_OFFICE, 0.9, ("out of office", "automatic reply", "away from", "on vacation")),
    (EmailCategory.NOT_INTERESTED, 0.8, ("not interested", "unsubscribe", "stop contacting", "no thank")),
    (EmailCategory.MEETING_BOOKED, 0.8, ("meeting scheduled", "calendar invite", "accepted the invitation", "see you on")),
    (EmailCategory.INTERESTED, 0.7, ("interested", "tell me more", "sounds good", "yes", "looks interesting")),
    (EmailCategory.SPAM, 0.6, ("click here", "buy now", "limited offer", "act now")),
]


def classify(subject: str, body: str) -> CategorizationResult:
    text = f"{subject} {body}".lower()
    for category, confidence, phrases in RULES:
        if any(phrase in text for phrase in phrases):
            return CategorizationResult(category, confidence)
    return CategorizationResult(EmailCategory.UNCATEGORIZED, 0.5)


class KeywordCategorizer:
    """Categorize stored messages by keyword and notify on interested replies.

    Notification failures are logged and never fail categorization.
    """

    def __init__(self, store: MessageStore, notifier: Optional[Notifier] = None) -> None:
        self.store = store
        self.notifier = notifier

    def categorize(self, message: StoredMessage) -> CategorizationResult:
        logger.info(f"Categorizing email: {message.subject[:50]}")
        result = classify(message.subject, message.body)
        self.store.update_category(message.id, result.category, result.confidence)
        logger.info(f"Categorized as: {result.category.value} ({result.confidence:.0%} confidence)")

        if result.category is EmailCategory.INTERESTED and self.notifier is not None:
            try:
                self.notifier.notify_interested(
                    replace(message, category=result.category, category_confidence=result.confidence)
                )
            except Exception as e:
                logger.error(f"Failed to send notifications for {message.message_id}: {e}")
        return result
