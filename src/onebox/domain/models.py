"""Domain models for the sync engine's runtime state."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class ConnectionStatus(str, Enum):
    """Lifecycle states of a per-account connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"
    IDLING = "idling"
    FETCHING = "fetching"
    RECONNECT_WAIT = "reconnect_wait"
    STOPPED = "stopped"


class ConnectionState(BaseModel):
    """Mutable per-account connection record."""

    account_id: str
    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    last_error: str | None = None
    retry_count: int = 0
    last_transition_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
