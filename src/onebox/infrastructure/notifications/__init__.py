"""Notification adapters."""

from onebox.infrastructure.notifications.webhook import WebhookNotifier, build_payload

__all__ = [
    "WebhookNotifier",
    "build_payload",
]
