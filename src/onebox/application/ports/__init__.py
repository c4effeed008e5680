"""Ports implemented by infrastructure adapters."""

from onebox.application.ports.consumers import Categorizer, Indexer, Notifier
from onebox.application.ports.mail_session import MailSession, MailSessionFactory
from onebox.application.ports.message_store import MessageStore

__all__ = [
    "Categorizer",
    "Indexer",
    "Notifier",
    "MailSession",
    "MailSessionFactory",
    "MessageStore",
]
