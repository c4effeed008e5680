"""Mail session port: one stateful connection to a remote mailbox."""

from __future__ import annotations
from datetime import date
from typing import Callable, Iterator, Protocol, Sequence

from onebox.domain.entities.account import AccountConfig


class MailSession(Protocol):
    """One stateful connection to a remote mailbox.

    Locators returned by the search methods are only valid for the
    session that produced them. Transport failures raise
    MailConnectionError; failed search/fetch commands raise FetchBatchError.
    """

    def connect(self) -> None: ...
    def open_inbox(self) -> int: ...
    def search_since(self, since: date) -> list[str]: ...
    def search_unseen(self) -> list[str]: ...
    def fetch(self, locators: Sequence[str]) -> Iterator[tuple[str, bytes | None]]: ...
    def idle_start(self) -> None: ...
    def idle_wait(self, timeout: float) -> bool: ...
    def idle_done(self) -> None: ...
    def noop(self) -> None: ...
    def has_pending_mail(self) -> bool: ...
    def close(self) -> None: ...
    def abort(self) -> None: ...


MailSessionFactory = Callable[[AccountConfig], MailSession]
