"""Outbound webhook notifications for interested replies."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import httpx
from loguru import logger

from onebox.domain.entities.email_message import StoredMessage

USER_AGENT = "Onebox-Sync/0.1"


class WebhookNotifier:
    """POST an ``email.interested`` event to an external webhook.

    Does nothing when no URL is configured. HTTP and transport errors
    propagate to the caller.
    """

    def __init__(
        self,
        url: str | None,
        timeout: float = 5.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.url = url
        self.timeout = timeout
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def notify_interested(self, message: StoredMessage) -> None:
        if not self.url:
            logger.debug(f"No webhook configured, skipping notification for {message.message_id}")
            return

        with httpx.Client(transport=self._transport, timeout=self.timeout) as client:
            response = client.post(
                self.url,
                headers={
                    "Content-Type": "application/json",
                    "User-Agent": USER_AGENT,
                },
                json=build_payload(message),
            )
            response.raise_for_status()

        logger.info(f"Webhook triggered for {message.message_id} (status: {response.status_code})")


def build_payload(message: StoredMessage) -> dict[str, Any]:
    return {
        "event": "email.interested",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "data": {
            "emailId": message.id,
            "messageId": message.message_id,
            "from": message.from_address,
            "to": message.to_address,
            "subject": message.subject,
            "body": message.body,
            "date": message.date.isoformat(),
            "category": message.category.value,
            "categoryConfidence": message.category_confidence,
        },
    }
