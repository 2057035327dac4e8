# Overview: Service-layer operations for stock movements; encapsulates business logic and database work.

"""
Inventory Movement Invariants (authoritative)

Ledger:
- StockMovement rows are append-only. entry adds quantity, exit subtracts it.
- Product.quantity equals the signed sum of the product's movements at all
  times. It is maintained incrementally with a SQL-level increment
  (quantity = quantity + :delta), never read-modify-write in Python, so
  concurrent devices cannot lose each other's updates.

Idempotency:
- (tenant_id, idempotency_key) is unique. A replay with a known key returns
  the stored movement unchanged: no new row, no quantity change, no alert
  recompute.
- Two requests racing with the same key: the loser hits the unique
  constraint, rolls back, and returns the winner's row as a duplicate.

Alerts:
- The alert lifecycle runs in the same transaction with the post-update
  quantity. Critical notifications are dispatched only after commit.

Negative stock:
- Allowed by default (ALLOW_NEGATIVE_STOCK). When disabled, exits are
  applied with a conditional increment and rejected if they would take the
  quantity below zero.

Time semantics:
- created_at is UTC-naive with microseconds; pagination orders by
  (created_at desc, id desc) so equal timestamps still page stably.
"""

from __future__ import annotations

import base64
import logging

from flask import current_app
from sqlalchemy import and_, case, func, or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product, StockMovement
from ..models.inventory import MOVEMENT_ENTRY, MOVEMENT_TYPES
from ..models.tenancy import new_id
from ..time_utils import parse_iso_datetime, to_utc_z
from ..validation import NotFoundError, ValidationError, is_strict_int
from .alert_service import update_alert_lifecycle
from .concurrency import run_with_retry
from .notification_service import dispatch_pending

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200
MAX_IDEMPOTENCY_KEY_LENGTH = 255


def _validate_movement_input(movement_type, quantity, idempotency_key) -> None:
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError("type must be 'entry' or 'exit'")
    if not is_strict_int(quantity) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer")
    if idempotency_key is not None:
        if not isinstance(idempotency_key, str) or not idempotency_key.strip():
            raise ValidationError("idempotency key must be a non-empty string")
        if len(idempotency_key) > MAX_IDEMPOTENCY_KEY_LENGTH:
            raise ValidationError("idempotency key is too long")


def find_movement_by_key(tenant_id: str, idempotency_key: str) -> StockMovement | None:
    return (
        db.session.query(StockMovement)
        .filter_by(tenant_id=tenant_id, idempotency_key=idempotency_key)
        .first()
    )


def _allow_negative_stock() -> bool:
    return bool(current_app.config.get("ALLOW_NEGATIVE_STOCK", True))


def apply_movement(
    *,
    tenant_id: str,
    user_id: str | None,
    product_id: str,
    movement_type: str,
    quantity: int,
    idempotency_key: str,
    pending_notifications: list,
    movement_id: str | None = None,
    note: str | None = None,
) -> tuple[StockMovement, bool]:
    """
    Write one movement inside the caller's transaction (no commit).

    Also used by products_service to record a product's opening stock in
    the same transaction that creates it.
    """
    existing = find_movement_by_key(tenant_id, idempotency_key)
    if existing is not None:
        return existing, False

    product = (
        db.session.query(Product)
        .filter(Product.id == product_id, Product.tenant_id == tenant_id, Product.deleted_at.is_(None))
        .first()
    )
    if product is None:
        raise NotFoundError("Product not found")

    movement = StockMovement(
        id=movement_id or new_id(),
        tenant_id=tenant_id,
        product_id=product.id,
        user_id=user_id,
        type=movement_type,
        quantity=quantity,
        idempotency_key=idempotency_key,
        note=note,
    )
    db.session.add(movement)
    db.session.flush()

    delta = quantity if movement_type == MOVEMENT_ENTRY else -quantity
    update_query = db.session.query(Product).filter(
        Product.id == product.id, Product.tenant_id == tenant_id
    )
    if delta < 0 and not _allow_negative_stock():
        update_query = update_query.filter(Product.quantity >= quantity)
    updated = update_query.update(
        {Product.quantity: Product.quantity + delta, Product.updated_at: movement.created_at},
        synchronize_session=False,
    )
    if updated == 0:
        raise ValidationError("Insufficient stock for this exit")

    # The in-session Product still carries the pre-increment value
    db.session.expire(product, ["quantity", "updated_at"])
    new_quantity = db.session.query(Product.quantity).filter(Product.id == product.id).scalar()

    update_alert_lifecycle(
        tenant_id,
        product.id,
        new_quantity,
        product_snapshot=product,
        pending_notifications=pending_notifications,
    )
    return movement, True


def record_movement(
    tenant_id: str,
    user_id: str | None,
    product_id: str,
    movement_type: str,
    quantity: int,
    idempotency_key: str | None = None,
    *,
    movement_id: str | None = None,
    note: str | None = None,
    attempts: int = 5,
) -> tuple[StockMovement, bool]:
    """
    Record a stock movement in one transaction.

    Returns (movement, created). created is False when the idempotency key
    was already used; the stored movement is returned unchanged.
    """
    _validate_movement_input(movement_type, quantity, idempotency_key)
    key = idempotency_key or new_id()

    def _op():
        pending = []
        try:
            movement, created = apply_movement(
                tenant_id=tenant_id,
                user_id=user_id,
                product_id=product_id,
                movement_type=movement_type,
                quantity=quantity,
                idempotency_key=key,
                pending_notifications=pending,
                movement_id=movement_id,
                note=note,
            )
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            winner = find_movement_by_key(tenant_id, key)
            if winner is None:
                raise
            logger.info("event=movement.key_race tenant_id=%s key=%s", tenant_id, key)
            return winner, False, []
        except ValueError:
            db.session.rollback()
            raise
        return movement, created, pending

    movement, created, pending = run_with_retry(_op, attempts=attempts)

    if created:
        logger.info(
            "event=movement.recorded tenant_id=%s product_id=%s type=%s quantity=%d movement_id=%s",
            tenant_id, product_id, movement_type, quantity, movement.id,
        )
    else:
        logger.info("event=movement.duplicate tenant_id=%s key=%s movement_id=%s", tenant_id, key, movement.id)

    dispatch_pending(pending)
    return movement, created


def create_movement(
    tenant_id: str,
    user_id: str | None,
    product_id: str,
    movement_type: str,
    quantity: int,
    idempotency_key: str | None = None,
    **kwargs,
) -> StockMovement:
    movement, _created = record_movement(
        tenant_id, user_id, product_id, movement_type, quantity, idempotency_key, **kwargs
    )
    return movement


def encode_movement_cursor(movement: StockMovement) -> str:
    raw = f"{to_utc_z(movement.created_at, precise=True)}|{movement.id}"
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii")


def decode_movement_cursor(cursor: str):
    try:
        raw = base64.urlsafe_b64decode(cursor.encode("ascii")).decode("utf-8")
        created_at_raw, movement_id = raw.split("|", 1)
        created_at = parse_iso_datetime(created_at_raw)
    except (ValueError, UnicodeError):
        raise ValidationError("Invalid cursor")
    if created_at is None or not movement_id:
        raise ValidationError("Invalid cursor")
    return created_at, movement_id


def get_movements_by_product(
    tenant_id: str,
    product_id: str,
    *,
    limit: int = DEFAULT_PAGE_SIZE,
    cursor: str | None = None,
) -> tuple[list[StockMovement], str | None]:
    """
    Page through a product's movements, newest first.

    The cursor encodes the last row's (created_at, id); the next page is
    everything strictly less than it on that composite key.
    """
    product = db.session.query(Product.id).filter_by(id=product_id, tenant_id=tenant_id).first()
    if product is None:
        raise NotFoundError("Product not found")

    limit = max(1, min(int(limit), MAX_PAGE_SIZE))
    query = db.session.query(StockMovement).filter(
        StockMovement.tenant_id == tenant_id,
        StockMovement.product_id == product_id,
    )
    if cursor:
        created_at, movement_id = decode_movement_cursor(cursor)
        query = query.filter(
            or_(
                StockMovement.created_at < created_at,
                and_(StockMovement.created_at == created_at, StockMovement.id < movement_id),
            )
        )

    rows = (
        query.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .limit(limit + 1)
        .all()
    )
    has_more = len(rows) > limit
    rows = rows[:limit]
    next_cursor = encode_movement_cursor(rows[-1]) if has_more and rows else None
    return rows, next_cursor


def get_ledger_quantity(tenant_id: str, product_id: str) -> int:
    """Signed sum of all movements; always equals Product.quantity."""
    signed = case((StockMovement.type == MOVEMENT_ENTRY, StockMovement.quantity), else_=-StockMovement.quantity)
    total = (
        db.session.query(func.coalesce(func.sum(signed), 0))
        .filter(StockMovement.tenant_id == tenant_id, StockMovement.product_id == product_id)
        .scalar()
    )
    return int(total or 0)
