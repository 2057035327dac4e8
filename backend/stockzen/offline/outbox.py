# Overview: Queue of local mutations waiting to be replayed against the sync endpoint.

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta

from ..time_utils import to_utc_z, utcnow
from .database import DeviceDatabase

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

DEFAULT_MAX_RETRIES = 5
DEFAULT_BASE_DELAY_SECONDS = 1.0
DEFAULT_MAX_DELAY_SECONDS = 60.0
MAX_BATCH_SIZE = 100


@dataclass
class OutboxEntry:
    operation_id: str
    operation_type: str
    entity_type: str
    entity_id: str
    payload: dict
    status: str = STATUS_PENDING
    retry_count: int = 0
    created_at: datetime = field(default_factory=utcnow)
    processed_at: datetime | None = None
    error: str | None = None
    terminal: bool = False
    next_attempt_at: datetime | None = None

    @property
    def idempotency_key(self) -> str:
        return self.operation_id

    def to_operation(self, tenant_id: str) -> dict:
        return {
            "operationId": self.operation_id,
            "idempotencyKey": self.idempotency_key,
            "entityId": self.entity_id,
            "entityType": self.entity_type,
            "operationType": self.operation_type,
            "tenantId": tenant_id,
            "payload": self.payload,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.operation_id,
            "operationType": self.operation_type,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "payload": self.payload,
            "status": self.status,
            "retryCount": self.retry_count,
            "createdAt": to_utc_z(self.created_at, precise=True),
            "processedAt": to_utc_z(self.processed_at, precise=True),
            "error": self.error,
        }


class Outbox:
    """
    Persistent outbox for one device.

    Entry lifecycle:
        pending -> processing -> (removed on completion)
                              -> failed (retryable: back to the queue after a backoff)
                              -> failed (terminal: kept for the user to resolve)

    Retryable failures wait base_delay * 2**(retry_count - 1), capped at
    max_delay. After max_retries attempts the entry becomes terminal.

    Every change is written through to the device database, so a restarted
    client finds the same entries (same operation ids) and replays them.
    """

    def __init__(
        self,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay_seconds: float = DEFAULT_BASE_DELAY_SECONDS,
        max_delay_seconds: float = DEFAULT_MAX_DELAY_SECONDS,
        clock=utcnow,
        database: DeviceDatabase | None = None,
    ):
        self.max_retries = max_retries
        self.base_delay_seconds = base_delay_seconds
        self.max_delay_seconds = max_delay_seconds
        self.clock = clock
        self.database = database or DeviceDatabase()
        self._entries: dict[str, OutboxEntry] = {}
        for row in self.database.load_outbox():
            row.pop("seq", None)
            entry = OutboxEntry(**row)
            self._entries[entry.operation_id] = entry

    @staticmethod
    def new_operation_id() -> str:
        return str(uuid.uuid4())

    def enqueue(
        self,
        operation_type: str,
        entity_type: str,
        entity_id: str,
        payload: dict,
        *,
        operation_id: str | None = None,
    ) -> OutboxEntry:
        entry = OutboxEntry(
            operation_id=operation_id or self.new_operation_id(),
            operation_type=operation_type,
            entity_type=entity_type,
            entity_id=entity_id,
            payload=payload,
            created_at=self.clock(),
        )
        if entry.operation_id in self._entries:
            raise ValueError(f"operation {entry.operation_id} is already queued")
        self._entries[entry.operation_id] = entry
        self._save(entry)
        return entry

    def get(self, operation_id: str) -> OutboxEntry | None:
        return self._entries.get(operation_id)

    def entries(self) -> list[OutboxEntry]:
        return list(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def retry_delay(self, retry_count: int) -> timedelta:
        seconds = self.base_delay_seconds * (2 ** max(0, retry_count - 1))
        return timedelta(seconds=min(seconds, self.max_delay_seconds))

    def get_eligible(self, limit: int = MAX_BATCH_SIZE) -> list[OutboxEntry]:
        """Pending entries plus retryable failures whose backoff has elapsed, oldest first."""
        now = self.clock()
        eligible = []
        for entry in self._entries.values():
            if entry.status == STATUS_PENDING:
                eligible.append(entry)
            elif (
                entry.status == STATUS_FAILED
                and not entry.terminal
                and entry.retry_count < self.max_retries
                and (entry.next_attempt_at is None or entry.next_attempt_at <= now)
            ):
                eligible.append(entry)
            if len(eligible) >= limit:
                break
        return eligible

    def mark_processing(self, operation_ids) -> None:
        for operation_id in operation_ids:
            entry = self._require(operation_id)
            entry.status = STATUS_PROCESSING
            self._save(entry)

    def mark_completed(self, operation_id: str) -> OutboxEntry:
        entry = self._entries.pop(operation_id)
        entry.status = STATUS_COMPLETED
        entry.processed_at = self.clock()
        entry.error = None
        self.database.delete_outbox_entry(operation_id)
        return entry

    def mark_failed(self, operation_id: str, error: str, *, terminal: bool = False) -> OutboxEntry:
        entry = self._require(operation_id)
        now = self.clock()
        entry.status = STATUS_FAILED
        entry.error = error
        entry.processed_at = now
        if terminal:
            entry.terminal = True
            entry.next_attempt_at = None
            self._save(entry)
            return entry

        entry.retry_count += 1
        if entry.retry_count >= self.max_retries:
            entry.terminal = True
            entry.next_attempt_at = None
        else:
            entry.next_attempt_at = now + self.retry_delay(entry.retry_count)
        self._save(entry)
        return entry

    def discard(self, operation_id: str) -> OutboxEntry | None:
        """User gave up on a failed entry."""
        entry = self._entries.pop(operation_id, None)
        if entry is not None:
            self.database.delete_outbox_entry(operation_id)
        return entry

    def recover_processing(self) -> int:
        """Entries left in processing by an interrupted sync go back to pending."""
        recovered = 0
        for entry in self._entries.values():
            if entry.status == STATUS_PROCESSING:
                entry.status = STATUS_PENDING
                self._save(entry)
                recovered += 1
        return recovered

    def has_outstanding(self, entity_type: str, entity_id: str) -> bool:
        return any(
            e.entity_type == entity_type and e.entity_id == entity_id for e in self._entries.values()
        )

    def has_outstanding_for_product(self, product_id: str) -> bool:
        """Product operations or stock movements for the product still queued."""
        for entry in self._entries.values():
            if entry.entity_type == "product" and entry.entity_id == product_id:
                return True
            if entry.entity_type == "stockMovement" and entry.payload.get("productId") == product_id:
                return True
        return False

    def failed_entries(self) -> list[OutboxEntry]:
        return [e for e in self._entries.values() if e.status == STATUS_FAILED and e.terminal]

    def _save(self, entry: OutboxEntry) -> None:
        self.database.save_outbox_entry(asdict(entry))

    def _require(self, operation_id: str) -> OutboxEntry:
        entry = self._entries.get(operation_id)
        if entry is None:
            raise KeyError(operation_id)
        return entry
