# Overview: Tenant-scoped product create/update/delete used by sync replay.

"""
Product writes from offline clients.

- Descriptive fields (name, price, sku, ...) are last-write-wins by arrival
  order: the later request simply overwrites.
- quantity is never written here after creation. An initial quantity on
  create is booked as an opening entry movement so the ledger invariant
  holds from the first moment.
- Thresholds are validated strictly on write and stored only in "custom"
  mode. "defaults" mode clears them.
- Deletes are soft (deleted_at) and close the product's active alert.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product
from ..models.inventory import MOVEMENT_ENTRY
from ..time_utils import to_utc_z, utcnow
from ..validation import (
    NotFoundError,
    ValidationError,
    coerce_price_cents,
    coerce_text,
    is_strict_int,
    validate_threshold_pair,
)
from .alert_levels import THRESHOLD_MODE_CUSTOM, THRESHOLD_MODE_DEFAULTS, has_valid_custom_thresholds
from .alert_service import close_active_alert, update_alert_lifecycle
from .concurrency import RetryableConflict, run_with_retry
from .inventory_service import apply_movement
from .notification_service import dispatch_pending
from .tenant_service import TenantAccessError

logger = logging.getLogger(__name__)

OUTCOME_CREATED = "created"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_UPDATED = "updated"
OUTCOME_DELETED = "deleted"
OUTCOME_CONFLICT = "conflict"

THRESHOLD_MODES = (THRESHOLD_MODE_DEFAULTS, THRESHOLD_MODE_CUSTOM)

# payload key -> column
_TEXT_FIELDS = {
    "description": "description",
    "sku": "sku",
    "category": "category",
    "unit": "unit",
    "barcode": "barcode",
}
_PRICE_FIELDS = {
    "priceCents": "price_cents",
    "purchasePriceCents": "purchase_price_cents",
}


@dataclass
class ProductChange:
    product: Product
    outcome: str


def serialize_product_state(product: Product) -> dict:
    """Server-authoritative snapshot returned to sync clients."""
    return {
        "id": product.id,
        "name": product.name,
        "description": product.description,
        "sku": product.sku,
        "category": product.category,
        "unit": product.unit,
        "barcode": product.barcode,
        "priceCents": product.price_cents,
        "purchasePriceCents": product.purchase_price_cents,
        "quantity": product.quantity,
        "customCriticalThreshold": product.custom_critical_threshold,
        "customAttentionThreshold": product.custom_attention_threshold,
        "thresholdMode": (
            THRESHOLD_MODE_CUSTOM
            if has_valid_custom_thresholds(product.custom_critical_threshold, product.custom_attention_threshold)
            else THRESHOLD_MODE_DEFAULTS
        ),
        "deletedAt": to_utc_z(product.deleted_at),
        "updatedAt": to_utc_z(product.updated_at, precise=True),
        "versionId": product.version_id,
    }


def _resolve_threshold_fields(fields: dict, *, required_mode: bool) -> dict | None:
    """
    Returns the threshold columns to write, or None when nothing changes.

    Rules:
    - thresholdMode must be 'defaults' or 'custom'
    - custom: both thresholds present, positive integers, critical < attention
    - defaults: custom values must be omitted (or null) and are cleared
    - thresholds without thresholdMode are rejected on update
    """
    has_critical = "customCriticalThreshold" in fields
    has_attention = "customAttentionThreshold" in fields
    mode = fields.get("thresholdMode")

    if mode is None:
        if required_mode:
            mode = THRESHOLD_MODE_DEFAULTS
        elif has_critical or has_attention:
            raise ValidationError("thresholdMode is required when updating custom thresholds")
        else:
            return None

    if mode not in THRESHOLD_MODES:
        raise ValidationError("thresholdMode must be 'defaults' or 'custom'")

    if mode == THRESHOLD_MODE_DEFAULTS:
        if fields.get("customCriticalThreshold") is not None or fields.get("customAttentionThreshold") is not None:
            raise ValidationError("Custom thresholds must be omitted when using tenant defaults")
        return {"custom_critical_threshold": None, "custom_attention_threshold": None}

    critical, attention = validate_threshold_pair(
        fields.get("customCriticalThreshold"), fields.get("customAttentionThreshold")
    )
    return {"custom_critical_threshold": critical, "custom_attention_threshold": attention}


def _apply_descriptive_fields(product: Product, fields: dict) -> None:
    if "name" in fields:
        product.name = coerce_text("name", fields["name"], required=True)
    for key, column in _TEXT_FIELDS.items():
        if key in fields:
            setattr(product, column, coerce_text(column, fields[key]))
    for key, column in _PRICE_FIELDS.items():
        if key in fields:
            setattr(product, column, coerce_price_cents(key, fields[key]))


def create_product(
    tenant_id: str,
    user_id: str | None,
    product_id: str,
    payload: dict,
    *,
    operation_id: str,
) -> ProductChange:
    """
    Create a product with a client-assigned id.

    An id that already exists in this tenant is a duplicate replay. An id
    owned by another tenant raises TenantAccessError.
    """
    name = coerce_text("name", payload.get("name"), required=True)
    thresholds = _resolve_threshold_fields(payload, required_mode=True)
    initial_quantity = payload.get("quantity", 0)
    if initial_quantity is None:
        initial_quantity = 0
    if not is_strict_int(initial_quantity) or initial_quantity < 0:
        raise ValidationError("quantity must be a non-negative integer")

    def _op():
        pending = []
        existing = db.session.get(Product, product_id)
        if existing is not None:
            if existing.tenant_id != tenant_id:
                raise TenantAccessError("Product id belongs to another tenant")
            return ProductChange(existing, OUTCOME_DUPLICATE), pending

        now = utcnow()
        product = Product(id=product_id, tenant_id=tenant_id, name=name, quantity=0, created_at=now, updated_at=now)
        _apply_descriptive_fields(product, payload)
        for column, value in thresholds.items():
            setattr(product, column, value)
        db.session.add(product)
        try:
            db.session.flush()
        except IntegrityError as exc:
            # Same id created by a concurrent replay; the retry sees it as a duplicate
            raise RetryableConflict(f"product {product_id} was created concurrently") from exc

        if initial_quantity > 0:
            apply_movement(
                tenant_id=tenant_id,
                user_id=user_id,
                product_id=product.id,
                movement_type=MOVEMENT_ENTRY,
                quantity=initial_quantity,
                idempotency_key=f"{operation_id}:opening",
                pending_notifications=pending,
                note="Opening stock",
            )
            db.session.refresh(product)
        else:
            update_alert_lifecycle(tenant_id, product.id, 0, product_snapshot=product, pending_notifications=pending)

        db.session.commit()
        return ProductChange(product, OUTCOME_CREATED), pending

    change, pending = _run(_op)
    if change.outcome == OUTCOME_CREATED:
        logger.info("event=product.created tenant_id=%s product_id=%s quantity=%d", tenant_id, product_id, initial_quantity)
    dispatch_pending(pending)
    return change


def _load_tenant_product(tenant_id: str, product_id: str) -> Product:
    product = db.session.query(Product).filter_by(id=product_id, tenant_id=tenant_id).first()
    if product is None:
        raise NotFoundError("Product not found")
    return product


def update_product(tenant_id: str, product_id: str, payload: dict) -> ProductChange:
    """
    Apply a field update. quantity in the payload is ignored.

    Accepts the changed fields either nested under "updatedFields" or at the
    top level of the payload. A product deleted on the server is not
    resurrected: the result is a conflict carrying the server state.
    """
    fields = payload.get("updatedFields")
    if fields is None:
        fields = {k: v for k, v in payload.items() if k not in ("tenantId", "operationId", "clientUpdatedAt")}
    if not isinstance(fields, dict):
        raise ValidationError("updatedFields must be an object")
    thresholds = _resolve_threshold_fields(fields, required_mode=False)

    def _op():
        pending = []
        product = _load_tenant_product(tenant_id, product_id)
        if product.is_deleted:
            return ProductChange(product, OUTCOME_CONFLICT), pending

        _apply_descriptive_fields(product, fields)
        if thresholds is not None:
            for column, value in thresholds.items():
                setattr(product, column, value)
        product.updated_at = utcnow()
        db.session.flush()

        if thresholds is not None:
            update_alert_lifecycle(
                tenant_id, product.id, product.quantity, product_snapshot=product, pending_notifications=pending
            )
        db.session.commit()
        return ProductChange(product, OUTCOME_UPDATED), pending

    change, pending = _run(_op)
    if change.outcome == OUTCOME_CONFLICT:
        logger.info("event=product.update_on_deleted tenant_id=%s product_id=%s", tenant_id, product_id)
    dispatch_pending(pending)
    return change


def delete_product(tenant_id: str, product_id: str) -> ProductChange:
    """Soft delete. Repeating it keeps the first deleted_at."""

    def _op():
        product = _load_tenant_product(tenant_id, product_id)
        if not product.is_deleted:
            now = utcnow()
            product.deleted_at = now
            product.updated_at = now
            close_active_alert(tenant_id, product.id, now=now)
            db.session.commit()
            logger.info("event=product.deleted tenant_id=%s product_id=%s", tenant_id, product_id)
        return ProductChange(product, OUTCOME_DELETED), []

    change, _pending = _run(_op)
    return change


def _run(op):
    def _guarded():
        try:
            return op()
        except (ValueError, TenantAccessError):
            db.session.rollback()
            raise

    return run_with_retry(_guarded)


def get_product(tenant_id: str, product_id: str, *, include_deleted: bool = False) -> Product:
    product = _load_tenant_product(tenant_id, product_id)
    if product.is_deleted and not include_deleted:
        raise NotFoundError("Product not found")
    return product


def list_products(tenant_id: str) -> list[Product]:
    return (
        db.session.query(Product)
        .filter(Product.tenant_id == tenant_id, Product.deleted_at.is_(None))
        .order_by(Product.name.asc(), Product.id.asc())
        .all()
    )

