"""
Client-side offline support.

A device writes locally first (LocalStore), queues the mutation (Outbox),
and later replays the queue through SyncDriver against POST /api/sync.
Both the queue and the cache live in a DeviceDatabase (SQLite) so they
survive restarts.
The operation id generated at enqueue time doubles as the idempotency key
and is reused on every retry, so a replay can never apply twice.
"""

from .database import DeviceDatabase
from .local_store import LocalRecord, LocalStore, InvalidTransitionError
from .outbox import Outbox, OutboxEntry
from .sync_driver import HttpSyncTransport, SyncDriver, SyncReport, SyncTransportError

__all__ = [
    "DeviceDatabase",
    "LocalRecord", "LocalStore", "InvalidTransitionError",
    "Outbox", "OutboxEntry",
    "HttpSyncTransport", "SyncDriver", "SyncReport", "SyncTransportError",
]
