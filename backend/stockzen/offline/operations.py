# Overview: Offline mutations: optimistic local write plus outbox enqueue, in one step.

"""
Each function writes the local store first and queues exactly one outbox
entry. The generated operation id is both the outbox entry id and the
idempotency key the server dedups on.

Quantity is never edited directly: stock changes go through
record_movement_offline, which bumps the local quantity optimistically and
queues a stockMovement create.
"""

from __future__ import annotations

import uuid

from ..time_utils import to_utc_z, utcnow
from .local_store import LocalStore
from .outbox import Outbox

ENTITY_PRODUCT = "product"
ENTITY_STOCK_MOVEMENT = "stockMovement"

MOVEMENT_TYPES = ("entry", "exit")


def _base_payload(tenant_id: str, operation_id: str) -> dict:
    return {"tenantId": tenant_id, "operationId": operation_id}


def create_product_offline(
    store: LocalStore,
    outbox: Outbox,
    tenant_id: str,
    data: dict,
    *,
    product_id: str | None = None,
):
    product_id = product_id or str(uuid.uuid4())
    operation_id = outbox.new_operation_id()

    local = dict(data)
    local.setdefault("quantity", 0)
    local["id"] = product_id
    store.local_create(ENTITY_PRODUCT, product_id, local)

    payload = dict(data)
    payload.update(_base_payload(tenant_id, operation_id))
    return outbox.enqueue("create", ENTITY_PRODUCT, product_id, payload, operation_id=operation_id)


def update_product_offline(store: LocalStore, outbox: Outbox, tenant_id: str, product_id: str, changes: dict):
    if "quantity" in changes:
        raise ValueError("quantity changes must be recorded as stock movements")
    operation_id = outbox.new_operation_id()
    store.local_update(ENTITY_PRODUCT, product_id, changes)

    payload = _base_payload(tenant_id, operation_id)
    payload["updatedFields"] = dict(changes)
    payload["clientUpdatedAt"] = to_utc_z(utcnow(), precise=True)
    return outbox.enqueue("update", ENTITY_PRODUCT, product_id, payload, operation_id=operation_id)


def delete_product_offline(store: LocalStore, outbox: Outbox, tenant_id: str, product_id: str):
    operation_id = outbox.new_operation_id()
    store.local_delete(ENTITY_PRODUCT, product_id)
    return outbox.enqueue(
        "delete", ENTITY_PRODUCT, product_id, _base_payload(tenant_id, operation_id), operation_id=operation_id
    )


def record_movement_offline(
    store: LocalStore,
    outbox: Outbox,
    tenant_id: str,
    product_id: str,
    movement_type: str,
    quantity: int,
    *,
    note: str | None = None,
):
    if movement_type not in MOVEMENT_TYPES:
        raise ValueError("movement type must be 'entry' or 'exit'")
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise ValueError("quantity must be a positive integer")

    movement_id = str(uuid.uuid4())
    operation_id = outbox.new_operation_id()

    payload = _base_payload(tenant_id, operation_id)
    payload.update({
        "productId": product_id,
        "type": movement_type,
        "quantity": quantity,
        "idempotencyKey": operation_id,
    })
    if note:
        payload["note"] = note

    store.local_create(ENTITY_STOCK_MOVEMENT, movement_id, {
        "id": movement_id,
        "productId": product_id,
        "type": movement_type,
        "quantity": quantity,
    })
    store.adjust_quantity(product_id, quantity if movement_type == "entry" else -quantity)
    return outbox.enqueue("create", ENTITY_STOCK_MOVEMENT, movement_id, payload, operation_id=operation_id)
