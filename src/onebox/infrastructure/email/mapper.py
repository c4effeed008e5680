"""Map raw RFC822 bytes to ParsedMessage."""

from __future__ import annotations
import time
import uuid
from collections.abc import Mapping
from datetime import datetime, timezone
from email import policy
from email.message import EmailMessage as MimeMessage
from email.parser import BytesParser
from typing import Any, Optional

from onebox.application.errors import MessageParseError
from onebox.domain.entities.email_message import ParsedMessage


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def _entry_address(entry: Any) -> str:
    if entry is None:
        return ""
    if isinstance(entry, str):
        return entry.strip()
    # email.headerregistry.Address
    addr_spec = getattr(entry, "addr_spec", None)
    if addr_spec:
        return addr_spec
    return _field(entry, "address") or _field(entry, "text") or ""


def normalize_address(value: Any) -> str:
    """Collapse an address-like header value into one string.

    Accepts a plain string, an object carrying preformatted ``text``, a
    list of address entries, or an object wrapping such a list
    (``addresses`` / ``value``). Returns the first available address, or
    "" when there is none. Lossy: only the first recipient is kept.
    """
    if value is None:
        return ""

    # Parsed headers are str subclasses that also expose .addresses
    wrapped = _field(value, "addresses")
    if wrapped is None and not isinstance(value, str):
        wrapped = _field(value, "value")
    if isinstance(wrapped, (list, tuple)):
        return _entry_address(wrapped[0]) if wrapped else ""

    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (list, tuple)):
        return _entry_address(value[0]) if value else ""

    text = _field(value, "text")
    if text:
        return str(text)
    return _field(value, "address") or ""


def generate_message_id() -> str:
    """Fallback id: current time plus a random component.

    Weaker than a server-provided Message-ID: a message without one gets a
    new id every time it is fetched.
    """
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:12]}@onebox.local"


def _first_part(em: MimeMessage, content_type: str) -> Optional[str]:
    for part in em.walk():
        if part.is_multipart() or part.get_content_type() != content_type:
            continue
        if part.get_content_disposition() == "attachment":
            continue
        return part.get_content()
    return None


def _message_date(em: MimeMessage) -> datetime:
    # Date parsing can be messy; default to now if absent/unparseable
    header = em.get("Date")
    try:
        dt = header.datetime if header else None
    except (AttributeError, TypeError, ValueError):
        dt = None
    if dt is None:
        return datetime.now(timezone.utc)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def rfc822_to_parsed_message(
    locator: str,
    raw: Optional[bytes],
    account_id: str,
    folder: Optional[str] = None,
) -> ParsedMessage:
    """Parse one raw RFC822 message. Raises MessageParseError when unusable."""
    if not raw or not isinstance(raw, (bytes, bytearray)):
        raise MessageParseError(locator, "empty or missing message body")

    try:
        em = BytesParser(policy=policy.default).parsebytes(bytes(raw))
        if not em.keys():
            raise MessageParseError(locator, "no headers found")

        message_id = str(em.get("Message-ID") or "").strip()
        generated = not message_id
        if generated:
            message_id = generate_message_id()

        body = _first_part(em, "text/plain")
        html = _first_part(em, "text/html")

        return ParsedMessage(
            message_id=message_id,
            account_id=account_id,
            from_address=normalize_address(em.get("From")),
            to_address=normalize_address(em.get("To")),
            subject=str(em.get("Subject") or "").strip(),
            body=(body or "").strip(),
            html_body=html,
            date=_message_date(em),
            folder=folder,
            message_id_generated=generated,
        )
    except MessageParseError:
        raise
    except Exception as e:
        raise MessageParseError(locator, str(e)) from e
