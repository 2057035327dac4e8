# Overview: Offline sync reconciliation: batch validation, per-operation replay, checkpoints.

"""
Sync Reconciliation Engine

Protocol (POST /api/sync):
    request:  {checkpoint?: str, operations: [Operation, ...]}     1..100 operations
    Operation = {operationId, idempotencyKey, entityId, entityType, operationType, tenantId, payload}
    response: {checkpoint: str, results: [{operationId, status, code?, message?, serverState?}]}

BATCH-LEVEL RULES (checked before anything is written; any violation
rejects the whole request with no side effects):
- schema: body is an object, operations is a list of 1..100 well-formed items
- idempotencyKey == operationId for every operation           -> VALIDATION_ERROR
- operation tenantId == authenticated tenant                   -> TENANT_MISMATCH
- single-operation batch: Idempotency-Key header == operationId -> VALIDATION_ERROR

PER-OPERATION RULES: each operation runs in its own transaction and commits
on its own, so one failing operation never blocks its siblings. Results
keep input order.

    stockMovement create            success | duplicate | not_found | validation_error
    stockMovement update/delete     validation_error (UNSUPPORTED_OPERATION): the ledger is append-only
    product create                  success | duplicate | tenant_mismatch | validation_error
    product update                  success | not_found | conflict_resolved | validation_error
    product delete                  success | not_found

Statuses other than success/duplicate carry code = status.upper().
Unexpected failures are logged with a traceback and reported to the client
as a generic validation_error; details never leave the server.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ..extensions import db
from ..time_utils import next_checkpoint, normalize_checkpoint, to_utc_z
from ..validation import NotFoundError, ValidationError
from . import inventory_service, products_service
from .tenant_service import TenantAccessError, log_cross_tenant_attempt

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 100

ENTITY_PRODUCT = "product"
ENTITY_STOCK_MOVEMENT = "stockMovement"
ENTITY_TYPES = (ENTITY_PRODUCT, ENTITY_STOCK_MOVEMENT)

OP_CREATE = "create"
OP_UPDATE = "update"
OP_DELETE = "delete"
OPERATION_TYPES = (OP_CREATE, OP_UPDATE, OP_DELETE)

STATUS_SUCCESS = "success"
STATUS_DUPLICATE = "duplicate"
STATUS_CONFLICT_RESOLVED = "conflict_resolved"
STATUS_VALIDATION_ERROR = "validation_error"
STATUS_TENANT_MISMATCH = "tenant_mismatch"
STATUS_NOT_FOUND = "not_found"
STATUS_RATE_LIMITED = "rate_limited"

SUCCESS_STATUSES = (STATUS_SUCCESS, STATUS_DUPLICATE)

ERROR_UNAUTHORIZED = "UNAUTHORIZED"
ERROR_RATE_LIMITED = "RATE_LIMITED"
ERROR_FORBIDDEN = "FORBIDDEN"
ERROR_VALIDATION = "VALIDATION_ERROR"
ERROR_TENANT_MISMATCH = "TENANT_MISMATCH"
ERROR_INTERNAL = "INTERNAL_ERROR"
ERROR_UNSUPPORTED_OPERATION = "UNSUPPORTED_OPERATION"

_REQUIRED_STRING_FIELDS = ("operationId", "idempotencyKey", "entityId", "tenantId")
MAX_ID_LENGTH = 36


class SyncProtocolError(Exception):
    """Batch-level rejection. Maps to the {code, message} error envelope."""

    def __init__(self, code: str, message: str, http_status: int = 400):
        super().__init__(message)
        self.code = code
        self.message = message
        self.http_status = http_status

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


@dataclass(frozen=True)
class SyncOperation:
    operation_id: str
    idempotency_key: str
    entity_id: str
    entity_type: str
    operation_type: str
    tenant_id: str
    payload: dict

    @classmethod
    def from_dict(cls, data: dict) -> "SyncOperation":
        return cls(
            operation_id=data["operationId"],
            idempotency_key=data["idempotencyKey"],
            entity_id=data["entityId"],
            entity_type=data["entityType"],
            operation_type=data["operationType"],
            tenant_id=data["tenantId"],
            payload=data["payload"],
        )


@dataclass(frozen=True)
class SyncRequest:
    operations: list
    checkpoint: str | None = None


@dataclass
class SyncResult:
    operation_id: str
    status: str
    message: str | None = None
    code: str | None = None
    server_state: dict | None = None

    def __post_init__(self):
        if self.code is None and self.status not in SUCCESS_STATUSES:
            self.code = self.status.upper()

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"operationId": self.operation_id, "status": self.status}
        if self.code is not None:
            data["code"] = self.code
        if self.message is not None:
            data["message"] = self.message
        if self.server_state is not None:
            data["serverState"] = self.server_state
        return data


@dataclass
class SyncResponse:
    checkpoint: str
    results: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"checkpoint": self.checkpoint, "results": [r.to_dict() for r in self.results]}


def _is_non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def parse_sync_request(body: Any, *, max_batch: int = MAX_BATCH_SIZE) -> SyncRequest:
    """Schema boundary. Raises SyncProtocolError(VALIDATION_ERROR) on any malformed input."""
    invalid = SyncProtocolError(ERROR_VALIDATION, "Invalid request format")
    if not isinstance(body, dict):
        raise invalid

    checkpoint = body.get("checkpoint")
    if checkpoint is not None and not isinstance(checkpoint, str):
        raise invalid
    if checkpoint is not None:
        # Out-of-range or far-future checkpoints are dropped before any write
        usable = normalize_checkpoint(checkpoint)
        if usable is None:
            logger.info("event=sync.checkpoint_ignored checkpoint=%r", checkpoint[:64])
        checkpoint = usable

    raw_operations = body.get("operations")
    if not isinstance(raw_operations, list) or not raw_operations or len(raw_operations) > max_batch:
        raise invalid

    operations = []
    for item in raw_operations:
        if not isinstance(item, dict):
            raise invalid
        if not all(_is_non_empty_string(item.get(key)) for key in _REQUIRED_STRING_FIELDS):
            raise invalid
        if len(item["entityId"]) > MAX_ID_LENGTH:
            raise invalid
        if item.get("entityType") not in ENTITY_TYPES or item.get("operationType") not in OPERATION_TYPES:
            raise invalid
        if not isinstance(item.get("payload"), dict):
            raise invalid
        operations.append(SyncOperation.from_dict(item))

    return SyncRequest(operations=operations, checkpoint=checkpoint)


def validate_sync_batch(
    operations: list,
    tenant_id: str,
    *,
    idempotency_header: str | None = None,
    user_id: str | None = None,
) -> None:
    """Protocol invariants. Raises SyncProtocolError; never touches the database."""
    for operation in operations:
        if operation.idempotency_key != operation.operation_id:
            raise SyncProtocolError(
                ERROR_VALIDATION, "Each operation must use idempotencyKey equal to operationId"
            )

    for operation in operations:
        if operation.tenant_id != tenant_id:
            log_cross_tenant_attempt(
                "sync operation for another tenant",
                tenant_id=tenant_id,
                user_id=user_id,
                operation_id=operation.operation_id,
            )
            raise SyncProtocolError(ERROR_TENANT_MISMATCH, "Operation tenant does not match session tenant", 403)

    if idempotency_header is not None and len(operations) == 1:
        if idempotency_header != operations[0].operation_id:
            raise SyncProtocolError(
                ERROR_VALIDATION, "Idempotency-Key header must match the operationId of a single-operation batch"
            )


def _movement_state(movement, product_quantity: int | None) -> dict:
    return {
        "id": movement.id,
        "productId": movement.product_id,
        "type": movement.type,
        "quantity": movement.quantity,
        "createdAt": to_utc_z(movement.created_at, precise=True),
        "productQuantity": product_quantity,
    }


def _process_stock_movement(tenant_id: str, user_id: str, operation: SyncOperation) -> SyncResult:
    if operation.operation_type != OP_CREATE:
        return SyncResult(
            operation.operation_id,
            STATUS_VALIDATION_ERROR,
            message="Stock movements are immutable; only create is supported",
            code=ERROR_UNSUPPORTED_OPERATION,
        )

    payload = operation.payload
    product_id = payload.get("productId")
    if not _is_non_empty_string(product_id):
        raise ValidationError("productId is required")

    movement, created = inventory_service.record_movement(
        tenant_id,
        user_id,
        product_id,
        payload.get("type"),
        payload.get("quantity"),
        operation.operation_id,
        movement_id=operation.entity_id,
        note=payload.get("note") if isinstance(payload.get("note"), str) else None,
    )
    product = products_service.get_product(tenant_id, movement.product_id, include_deleted=True)
    return SyncResult(
        operation.operation_id,
        STATUS_SUCCESS if created else STATUS_DUPLICATE,
        server_state=_movement_state(movement, product.quantity),
    )


def _process_product(tenant_id: str, user_id: str, operation: SyncOperation) -> SyncResult:
    op_id = operation.operation_id
    if operation.operation_type == OP_CREATE:
        change = products_service.create_product(
            tenant_id, user_id, operation.entity_id, operation.payload, operation_id=op_id
        )
        status = STATUS_DUPLICATE if change.outcome == products_service.OUTCOME_DUPLICATE else STATUS_SUCCESS
        return SyncResult(op_id, status, server_state=products_service.serialize_product_state(change.product))

    if operation.operation_type == OP_UPDATE:
        change = products_service.update_product(tenant_id, operation.entity_id, operation.payload)
        if change.outcome == products_service.OUTCOME_CONFLICT:
            return SyncResult(
                op_id,
                STATUS_CONFLICT_RESOLVED,
                message="Product was deleted on the server. Applied server-authoritative state.",
                server_state=products_service.serialize_product_state(change.product),
            )
        return SyncResult(op_id, STATUS_SUCCESS, server_state=products_service.serialize_product_state(change.product))

    change = products_service.delete_product(tenant_id, operation.entity_id)
    return SyncResult(
        op_id,
        STATUS_SUCCESS,
        server_state={"id": change.product.id, "deletedAt": to_utc_z(change.product.deleted_at)},
    )


def process_operation(tenant_id: str, user_id: str, operation: SyncOperation) -> SyncResult:
    """Replay one operation. Never raises for business failures; they become the result status."""
    payload_tenant = operation.payload.get("tenantId")
    if payload_tenant is not None and payload_tenant != tenant_id:
        log_cross_tenant_attempt(
            "payload tenantId differs from session tenant",
            tenant_id=tenant_id,
            user_id=user_id,
            operation_id=operation.operation_id,
        )
        return SyncResult(operation.operation_id, STATUS_TENANT_MISMATCH, message="Tenant mismatch")

    try:
        if operation.entity_type == ENTITY_STOCK_MOVEMENT:
            return _process_stock_movement(tenant_id, user_id, operation)
        return _process_product(tenant_id, user_id, operation)
    except NotFoundError as e:
        db.session.rollback()
        return SyncResult(operation.operation_id, STATUS_NOT_FOUND, message=str(e))
    except TenantAccessError as e:
        db.session.rollback()
        log_cross_tenant_attempt(
            str(e), tenant_id=tenant_id, user_id=user_id, operation_id=operation.operation_id
        )
        return SyncResult(operation.operation_id, STATUS_TENANT_MISMATCH, message="Tenant mismatch")
    except ValueError as e:
        # ValidationError and value errors from the ledger
        db.session.rollback()
        return SyncResult(operation.operation_id, STATUS_VALIDATION_ERROR, message=str(e))
    except Exception:
        db.session.rollback()
        logger.exception(
            "event=sync.operation_failed tenant_id=%s operation_id=%s entity_type=%s operation_type=%s",
            tenant_id, operation.operation_id, operation.entity_type, operation.operation_type,
        )
        return SyncResult(operation.operation_id, STATUS_VALIDATION_ERROR, message="Failed to process operation")


def process_sync(
    tenant_id: str,
    user_id: str,
    operations: list,
    *,
    checkpoint: str | None = None,
    idempotency_header: str | None = None,
) -> SyncResponse:
    validate_sync_batch(operations, tenant_id, idempotency_header=idempotency_header, user_id=user_id)

    results = [process_operation(tenant_id, user_id, operation) for operation in operations]

    counts: dict[str, int] = {}
    for result in results:
        counts[result.status] = counts.get(result.status, 0) + 1
    logger.info(
        "event=sync.processed tenant_id=%s user_id=%s operations=%d statuses=%s",
        tenant_id, user_id, len(operations), ",".join(f"{k}:{v}" for k, v in sorted(counts.items())),
    )

    return SyncResponse(checkpoint=next_checkpoint(checkpoint), results=results)
