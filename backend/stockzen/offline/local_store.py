# Overview: Optimistic local cache with an explicit per-entity sync state machine.

from __future__ import annotations

from dataclasses import dataclass, field

from .database import DeviceDatabase

STATE_CLEAN = "clean"
STATE_PENDING_CREATE = "pending_create"
STATE_PENDING_UPDATE = "pending_update"
STATE_PENDING_DELETE = "pending_delete"
STATE_CONFLICT = "conflict"

EVENT_CREATE = "local_create"
EVENT_UPDATE = "local_update"
EVENT_DELETE = "local_delete"
EVENT_SYNCED = "sync_succeeded"
EVENT_FAILED = "sync_failed"
EVENT_SERVER_STATE = "server_state_applied"

# Sentinel target: the record leaves the store
REMOVED = None

_PENDING = (STATE_PENDING_CREATE, STATE_PENDING_UPDATE, STATE_PENDING_DELETE)

TRANSITIONS = {
    (None, EVENT_CREATE): STATE_PENDING_CREATE,

    (STATE_CLEAN, EVENT_UPDATE): STATE_PENDING_UPDATE,
    (STATE_PENDING_CREATE, EVENT_UPDATE): STATE_PENDING_CREATE,
    (STATE_PENDING_UPDATE, EVENT_UPDATE): STATE_PENDING_UPDATE,
    (STATE_CONFLICT, EVENT_UPDATE): STATE_PENDING_UPDATE,

    (STATE_CLEAN, EVENT_DELETE): STATE_PENDING_DELETE,
    (STATE_PENDING_CREATE, EVENT_DELETE): STATE_PENDING_DELETE,
    (STATE_PENDING_UPDATE, EVENT_DELETE): STATE_PENDING_DELETE,
    (STATE_CONFLICT, EVENT_DELETE): STATE_PENDING_DELETE,

    (STATE_CLEAN, EVENT_SYNCED): STATE_CLEAN,
    (STATE_PENDING_CREATE, EVENT_SYNCED): STATE_CLEAN,
    (STATE_PENDING_UPDATE, EVENT_SYNCED): STATE_CLEAN,
    (STATE_PENDING_DELETE, EVENT_SYNCED): REMOVED,

    (STATE_PENDING_CREATE, EVENT_FAILED): STATE_CONFLICT,
    (STATE_PENDING_UPDATE, EVENT_FAILED): STATE_CONFLICT,
    (STATE_PENDING_DELETE, EVENT_FAILED): STATE_CONFLICT,
    (STATE_CONFLICT, EVENT_FAILED): STATE_CONFLICT,
    (STATE_CLEAN, EVENT_FAILED): STATE_CONFLICT,
}
# Server-authoritative state wins from any state
for _state in (None, STATE_CLEAN, STATE_CONFLICT) + _PENDING:
    TRANSITIONS[(_state, EVENT_SERVER_STATE)] = STATE_CLEAN


class InvalidTransitionError(Exception):
    def __init__(self, entity_type: str, entity_id: str, state: str | None, event: str):
        super().__init__(f"{entity_type} {entity_id}: cannot apply {event} in state {state}")
        self.state = state
        self.event = event


@dataclass
class LocalRecord:
    entity_type: str
    entity_id: str
    data: dict
    state: str
    error: str | None = None
    history: list = field(default_factory=list)

    @property
    def is_pending(self) -> bool:
        return self.state in _PENDING


class LocalStore:
    """
    Device-local cache of products and stock movements.

    Every state change goes through transition(); there are no ad hoc
    flags. Local data is never discarded on a sync failure: the record
    moves to conflict with the server's error attached.

    Records are written through to the device database and reloaded on
    construction.
    """

    def __init__(self, database: DeviceDatabase | None = None):
        self.database = database or DeviceDatabase()
        self._records: dict[tuple[str, str], LocalRecord] = {}
        for row in self.database.load_records():
            record = LocalRecord(
                row["entity_type"],
                row["entity_id"],
                dict(row["data"]),
                row["state"],
                error=row["error"],
                history=[tuple(step) for step in row["history"]],
            )
            self._records[(record.entity_type, record.entity_id)] = record

    def get(self, entity_type: str, entity_id: str) -> LocalRecord | None:
        return self._records.get((entity_type, entity_id))

    def records(self, entity_type: str | None = None) -> list[LocalRecord]:
        return [r for r in self._records.values() if entity_type is None or r.entity_type == entity_type]

    def transition(self, entity_type: str, entity_id: str, event: str, *, data: dict | None = None,
                   error: str | None = None) -> LocalRecord | None:
        record = self.get(entity_type, entity_id)
        current = record.state if record is not None else None
        key = (current, event)
        if key not in TRANSITIONS:
            raise InvalidTransitionError(entity_type, entity_id, current, event)
        target = TRANSITIONS[key]

        if target is REMOVED:
            self._remove(entity_type, entity_id)
            return None

        if record is None:
            record = LocalRecord(entity_type, entity_id, dict(data or {}), target)
            self._records[(entity_type, entity_id)] = record
        else:
            if data is not None:
                if event == EVENT_SERVER_STATE:
                    record.data = dict(data)
                else:
                    record.data.update(data)
            record.state = target
        record.error = error if target == STATE_CONFLICT else None
        record.history.append((current, event, target))
        self._save(record)
        return record

    # Convenience wrappers used by offline operations and the sync driver

    def local_create(self, entity_type: str, entity_id: str, data: dict) -> LocalRecord:
        return self.transition(entity_type, entity_id, EVENT_CREATE, data=data)

    def local_update(self, entity_type: str, entity_id: str, changes: dict) -> LocalRecord:
        return self.transition(entity_type, entity_id, EVENT_UPDATE, data=changes)

    def local_delete(self, entity_type: str, entity_id: str) -> LocalRecord:
        return self.transition(entity_type, entity_id, EVENT_DELETE)

    def sync_succeeded(self, entity_type: str, entity_id: str) -> LocalRecord | None:
        return self.transition(entity_type, entity_id, EVENT_SYNCED)

    def sync_failed(self, entity_type: str, entity_id: str, error: str) -> LocalRecord:
        return self.transition(entity_type, entity_id, EVENT_FAILED, error=error)

    def server_state_applied(self, entity_type: str, entity_id: str, server_state: dict) -> LocalRecord | None:
        if server_state.get("deletedAt"):
            self._remove(entity_type, entity_id)
            return None
        return self.transition(entity_type, entity_id, EVENT_SERVER_STATE, data=server_state)

    def adjust_quantity(self, product_id: str, delta: int) -> None:
        """Optimistic stock change; quantity is derived, so no state transition."""
        record = self.get("product", product_id)
        if record is not None:
            record.data["quantity"] = int(record.data.get("quantity") or 0) + delta
            self._save(record)

    def set_quantity(self, product_id: str, quantity: int) -> None:
        record = self.get("product", product_id)
        if record is not None:
            record.data["quantity"] = quantity
            self._save(record)

    def _save(self, record: LocalRecord) -> None:
        self.database.save_record(
            record.entity_type,
            record.entity_id,
            data=record.data,
            state=record.state,
            error=record.error,
            history=record.history,
        )

    def _remove(self, entity_type: str, entity_id: str) -> None:
        if self._records.pop((entity_type, entity_id), None) is not None:
            self.database.delete_record(entity_type, entity_id)
