from __future__ import annotations
from dataclasses import dataclass, field

DEFAULT_FOLDER = "INBOX"


@dataclass(frozen=True)
class AccountConfig:
    """Connection settings for a single remote mailbox.

    Loaded once at startup; changing an account requires a restart.
    """
    id: str
    email: str
    credential: str = field(repr=False)
    host: str
    port: int = 993
    folder: str = DEFAULT_FOLDER


@dataclass(frozen=True)
class Account:
    # Storage-side account row
    id: str
    email: str
    host: str
    port: int
    is_active: bool = True
