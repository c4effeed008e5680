"""Infrastructure layer - mail sessions, stores, configuration and outbound adapters."""

from onebox.infrastructure.accounts import load_accounts_from_env
from onebox.infrastructure.settings import Settings, SyncTimings, get_settings

__all__ = [
    "Settings",
    "SyncTimings",
    "get_settings",
    "load_accounts_from_env",
]
