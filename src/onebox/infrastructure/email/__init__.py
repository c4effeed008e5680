"""IMAP session adapter and RFC822 mapping."""

from onebox.infrastructure.email.imap_session import ImapMailSession, imap_session_factory
from onebox.infrastructure.email.mapper import normalize_address, rfc822_to_parsed_message

__all__ = [
    "ImapMailSession",
    "imap_session_factory",
    "normalize_address",
    "rfc822_to_parsed_message",
]
