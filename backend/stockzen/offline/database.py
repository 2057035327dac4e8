# Overview: SQLite persistence for the device outbox and local cache.

"""
Device database.

The outbox and the local cache must survive a restart: mutations queued
while offline are only safe once they are on disk. Both tables live in
one SQLite file per device. Outbox and LocalStore keep an in-memory view
for reads and write every change through to these tables.

Omitting the path gives a private in-memory database (tests, throwaway
devices).
"""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    select,
)
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.pool import StaticPool

metadata = MetaData()

outbox_entries = Table(
    "outbox_entries",
    metadata,
    # seq keeps enqueue order across restarts
    Column("seq", Integer, primary_key=True, autoincrement=True),
    Column("operation_id", String(36), nullable=False, unique=True),
    Column("operation_type", String(16), nullable=False),
    Column("entity_type", String(32), nullable=False),
    Column("entity_id", String(64), nullable=False, index=True),
    Column("payload", JSON, nullable=False),
    Column("status", String(16), nullable=False, index=True),
    Column("retry_count", Integer, nullable=False, default=0),
    Column("created_at", DateTime, nullable=False),
    Column("processed_at", DateTime, nullable=True),
    Column("error", Text, nullable=True),
    Column("terminal", Boolean, nullable=False, default=False),
    Column("next_attempt_at", DateTime, nullable=True),
)

local_records = Table(
    "local_records",
    metadata,
    Column("seq", Integer, primary_key=True, autoincrement=True),
    Column("entity_type", String(32), nullable=False),
    Column("entity_id", String(64), nullable=False),
    Column("data", JSON, nullable=False),
    Column("state", String(16), nullable=False, index=True),
    Column("error", Text, nullable=True),
    Column("history", JSON, nullable=False),
    UniqueConstraint("entity_type", "entity_id", name="uq_local_records_entity"),
)

_OUTBOX_FIELDS = (
    "operation_type", "entity_type", "entity_id", "payload", "status", "retry_count",
    "created_at", "processed_at", "error", "terminal", "next_attempt_at",
)


class DeviceDatabase:
    def __init__(self, path: str | None = None, *, echo: bool = False):
        if path:
            self.engine = create_engine(f"sqlite:///{path}", echo=echo)
        else:
            # one shared connection, otherwise every checkout sees an empty database
            self.engine = create_engine(
                "sqlite://",
                echo=echo,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        metadata.create_all(self.engine)

    def close(self) -> None:
        self.engine.dispose()

    # Outbox

    def load_outbox(self) -> list[dict]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(outbox_entries).order_by(outbox_entries.c.seq)).mappings().all()
        return [dict(row) for row in rows]

    def save_outbox_entry(self, values: dict) -> None:
        row = {"operation_id": values["operation_id"]}
        row.update({name: values[name] for name in _OUTBOX_FIELDS})
        stmt = sqlite_insert(outbox_entries).values(**row)
        stmt = stmt.on_conflict_do_update(
            index_elements=[outbox_entries.c.operation_id],
            set_={name: stmt.excluded[name] for name in _OUTBOX_FIELDS},
        )
        with self.engine.begin() as conn:
            conn.execute(stmt)

    def delete_outbox_entry(self, operation_id: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(delete(outbox_entries).where(outbox_entries.c.operation_id == operation_id))

    # Local cache

    def load_records(self) -> list[dict]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(local_records).order_by(local_records.c.seq)).mappings().all()
        return [dict(row) for row in rows]

    def save_record(self, entity_type: str, entity_id: str, *, data: dict, state: str,
                    error: str | None, history: list) -> None:
        stmt = sqlite_insert(local_records).values(
            entity_type=entity_type,
            entity_id=entity_id,
            data=data,
            state=state,
            error=error,
            history=[list(step) for step in history],
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[local_records.c.entity_type, local_records.c.entity_id],
            set_={
                "data": stmt.excluded.data,
                "state": stmt.excluded.state,
                "error": stmt.excluded.error,
                "history": stmt.excluded.history,
            },
        )
        with self.engine.begin() as conn:
            conn.execute(stmt)

    def delete_record(self, entity_type: str, entity_id: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                delete(local_records).where(
                    local_records.c.entity_type == entity_type,
                    local_records.c.entity_id == entity_id,
                )
            )
