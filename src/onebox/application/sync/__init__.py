"""Real-time ingestion engine components."""

from onebox.application.sync.batch_fetcher import BatchFetcher
from onebox.application.sync.connection_manager import ConnectionManager
from onebox.application.sync.deduplicator import Deduplicator
from onebox.application.sync.dispatcher import Dispatcher
from onebox.application.sync.supervisor import SyncSupervisor, sync_lifespan
from onebox.application.sync.timers import IntervalTimer

__all__ = [
    "BatchFetcher",
    "ConnectionManager",
    "Deduplicator",
    "Dispatcher",
    "IntervalTimer",
    "SyncSupervisor",
    "sync_lifespan",
]
