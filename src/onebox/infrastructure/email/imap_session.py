"""IMAP MailSession adapter built on imap-tools."""

from __future__ import annotations
import imaplib
import socket
from datetime import date
from typing import Iterator, Optional, Sequence

from imap_tools import AND, MailBox
from imap_tools.errors import MailboxLoginError, UnexpectedCommandStatusError
from loguru import logger

from onebox.application.errors import FetchBatchError, MailConnectionError
from onebox.domain.entities.account import AccountConfig

# imaplib raises abort for broken connections; abort subclasses IMAP4.error
_TRANSPORT_ERRORS = (imaplib.IMAP4.abort, OSError, EOFError)


class ImapMailSession:
    """MailSession backed by imap-tools (IMAPS, UID addressing, IDLE)."""

    def __init__(self, cfg: AccountConfig, mark_seen: bool = False, timeout: float = 60.0) -> None:
        self.cfg = cfg
        self.mark_seen = mark_seen
        self.timeout = timeout
        self._mailbox: Optional[MailBox] = None
        self._idling = False
        self._pending_mail = False

    @property
    def mailbox(self) -> MailBox:
        if self._mailbox is None:
            raise MailConnectionError(f"Session for {self.cfg.email} is not connected")
        return self._mailbox

    def connect(self) -> None:
        logger.info(f"Connecting to {self.cfg.host}:{self.cfg.port} as {self.cfg.email}")
        try:
            mailbox = MailBox(self.cfg.host, self.cfg.port, timeout=self.timeout)
            mailbox.login(self.cfg.email, self.cfg.credential, initial_folder=None)
        except MailboxLoginError as e:
            raise MailConnectionError(f"Login failed for {self.cfg.email}: {e}") from e
        except _TRANSPORT_ERRORS as e:
            raise MailConnectionError(f"Cannot reach {self.cfg.host}:{self.cfg.port}: {e}") from e
        self._mailbox = mailbox
        self._idling = False
        self._pending_mail = False

    def open_inbox(self) -> int:
        try:
            self.mailbox.folder.set(self.cfg.folder)
            status = self.mailbox.folder.status(self.cfg.folder, ["MESSAGES"])
        except _TRANSPORT_ERRORS as e:
            raise MailConnectionError(f"Connection lost opening {self.cfg.folder}: {e}") from e
        except (UnexpectedCommandStatusError, imaplib.IMAP4.error) as e:
            # Without a selected folder nothing else works; treat as session failure
            raise MailConnectionError(f"Failed to open {self.cfg.folder}: {e}") from e
        # SELECT reports the current count as EXISTS; that is not new mail
        self.mailbox.client.untagged_responses.pop("EXISTS", None)
        return int(status.get("MESSAGES", 0))

    def _uids(self, criteria) -> list[str]:
        try:
            return list(self.mailbox.uids(criteria))
        except _TRANSPORT_ERRORS as e:
            raise MailConnectionError(f"Connection lost during search: {e}") from e
        except (UnexpectedCommandStatusError, imaplib.IMAP4.error) as e:
            raise FetchBatchError(f"UID SEARCH {criteria} failed: {e}") from e

    def search_since(self, since: date) -> list[str]:
        return self._uids(AND(date_gte=since))

    def search_unseen(self) -> list[str]:
        return self._uids(AND(seen=False))

    def fetch(self, locators: Sequence[str]) -> Iterator[tuple[str, bytes | None]]:
        """Fetch raw RFC822 bodies for a batch of UIDs, in request order."""
        if not locators:
            return iter(())
        query = "(RFC822)" if self.mark_seen else "(BODY.PEEK[])"
        try:
            typ, data = self.mailbox.client.uid("FETCH", ",".join(locators), query)
        except _TRANSPORT_ERRORS as e:
            raise MailConnectionError(f"Connection lost during fetch: {e}") from e
        except imaplib.IMAP4.error as e:
            raise FetchBatchError(f"UID FETCH failed: {e}") from e
        if typ != "OK":
            raise FetchBatchError(f"UID FETCH returned {typ}")

        by_uid: dict[str, bytes] = {}
        orphan: Optional[bytes] = None
        for item in data or []:
            # Literal responses come back as (b'12 (UID 345 RFC822 {n}', raw);
            # some servers send the UID after the literal instead (b' UID 345)')
            if isinstance(item, tuple) and len(item) >= 2:
                uid = _extract_uid(item[0])
                if uid is not None:
                    by_uid[uid] = item[1]
                else:
                    orphan = item[1]
            elif isinstance(item, bytes) and orphan is not None:
                uid = _extract_uid(item)
                if uid is not None:
                    by_uid[uid] = orphan
                orphan = None
        self._collect_pending()
        return ((uid, by_uid.get(uid)) for uid in locators)

    def idle_start(self) -> None:
        try:
            self.mailbox.idle.start()
        except _TRANSPORT_ERRORS as e:
            raise MailConnectionError(f"Failed to start IDLE: {e}") from e
        except (UnexpectedCommandStatusError, imaplib.IMAP4.error) as e:
            raise MailConnectionError(f"Server refused IDLE: {e}") from e
        self._idling = True

    def idle_wait(self, timeout: float) -> bool:
        if self._pending_mail:
            self._pending_mail = False
            return True
        try:
            responses = self.mailbox.idle.poll(timeout=timeout)
        except _TRANSPORT_ERRORS as e:
            raise MailConnectionError(f"Connection lost while idling: {e}") from e
        new_mail = False
        for line in responses or []:
            if line.startswith(b"* BYE"):
                raise MailConnectionError(f"Server closed the connection: {line.decode(errors='replace').strip()}")
            if b"EXISTS" in line:
                new_mail = True
        return new_mail

    def idle_done(self) -> None:
        if not self._idling:
            return
        self._idling = False
        try:
            self.mailbox.idle.stop()
        except _TRANSPORT_ERRORS as e:
            raise MailConnectionError(f"Failed to leave IDLE: {e}") from e
        except (UnexpectedCommandStatusError, imaplib.IMAP4.error) as e:
            raise MailConnectionError(f"IDLE termination rejected: {e}") from e

    def noop(self) -> None:
        try:
            self.mailbox.client.noop()
        except _TRANSPORT_ERRORS as e:
            raise MailConnectionError(f"NOOP failed: {e}") from e
        except imaplib.IMAP4.error as e:
            raise MailConnectionError(f"NOOP rejected: {e}") from e
        self._collect_pending()

    def has_pending_mail(self) -> bool:
        pending, self._pending_mail = self._pending_mail, False
        return pending

    def _collect_pending(self) -> None:
        # EXISTS announced outside IDLE lands in imaplib's untagged responses
        client = self._mailbox.client if self._mailbox else None
        if client is not None and client.untagged_responses.pop("EXISTS", None):
            self._pending_mail = True

    def close(self) -> None:
        if self._mailbox is None:
            return
        mailbox, self._mailbox = self._mailbox, None
        try:
            if self._idling:
                self._idling = False
                mailbox.idle.stop()
            mailbox.logout()
            logger.info(f"Disconnected from {self.cfg.email}")
        except Exception as e:
            logger.warning(f"Error closing session for {self.cfg.email}: {e}")

    def abort(self) -> None:
        """Shut the socket down so a blocked read returns immediately."""
        mailbox = self._mailbox
        if mailbox is None:
            return
        try:
            mailbox.client.sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logger.debug(f"Socket shutdown for {self.cfg.email}: {e}")


def _extract_uid(header: bytes) -> Optional[str]:
    parts = header.decode(errors="replace").replace("(", " ").replace(")", " ").split()
    for i, token in enumerate(parts[:-1]):
        if token.upper() == "UID":
            return parts[i + 1]
    return None


def imap_session_factory(mark_seen: bool = False):
    """Build a MailSessionFactory producing ImapMailSession instances."""

    def factory(cfg: AccountConfig) -> ImapMailSession:
        return ImapMailSession(cfg, mark_seen=mark_seen)

    return factory
