# Overview: Alert lifecycle transitions, bulk recompute, snooze/handled mutations and listing.

"""
Alert Lifecycle

Every change to a product's quantity (or thresholds) runs
update_alert_lifecycle inside the caller's transaction:

1. Resolve effective thresholds and classify the stock.
2. green  -> close the active alert, if any. Nothing is stored for healthy products.
3. red/orange -> insert the active alert, or update level/current_stock in place.
4. Snooze: cancelled only when a snoozed alert worsens orange -> red.
   Same-level updates and red -> orange keep the operator's snooze.
5. A fresh entry into red queues exactly one CriticalAlertNotification.

CONCURRENCY: The partial unique index uq_alerts_one_active_per_product
rejects a second active row. The losing insert raises ConcurrentAlertError,
which run_with_retry treats as a replayable conflict. On replay the winner's
row is found and updated. Updates race through Alert.version_id
(StaleDataError, also replayed), so two transactions cannot both observe the
orange -> red transition and notify twice.

update_alert_lifecycle and recompute_alerts_for_products never commit;
callers own the transaction. The operator mutations (snooze, handled)
commit their own.
"""

from __future__ import annotations

import base64
import logging
from datetime import datetime

from sqlalchemy import and_, case, or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Alert, Product, Tenant
from ..models.alerts import (
    ALERT_LEVEL_ORANGE,
    ALERT_LEVEL_RED,
    ALERT_STATUS_ACTIVE,
    ALERT_STATUS_CLOSED,
)
from ..time_utils import utcnow
from ..validation import BadRequestError, NotFoundError, ValidationError
from .alert_levels import (
    ALERT_LEVEL_GREEN,
    TenantThresholds,
    calculate_snooze_expiry,
    classify_alert_level,
    is_alert_snoozed,
    level_rank,
    resolve_effective_thresholds,
    should_cancel_snooze_on_worsening,
    should_trigger_critical_notification,
)
from .concurrency import ConcurrentAlertError, run_with_retry
from .notification_service import CriticalAlertNotification, dispatch_pending

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 20
MAX_LIST_LIMIT = 100


def get_active_alert(tenant_id: str, product_id: str) -> Alert | None:
    return (
        db.session.query(Alert)
        .filter_by(tenant_id=tenant_id, product_id=product_id, status=ALERT_STATUS_ACTIVE)
        .first()
    )


def _queue_notification(notification: CriticalAlertNotification, pending_notifications: list | None) -> None:
    if pending_notifications is not None:
        pending_notifications.append(notification)
    else:
        dispatch_pending([notification])


def update_alert_lifecycle(
    tenant_id: str,
    product_id: str,
    current_stock: int,
    *,
    product_snapshot: Product | None = None,
    tenant_thresholds: TenantThresholds | None = None,
    pending_notifications: list | None = None,
    now: datetime | None = None,
) -> Alert | None:
    """
    Transition the product's alert for a new stock figure.

    Returns the active (or just-closed) alert, or None when the product is
    healthy and had no alert. Pass pending_notifications to collect
    notification tasks for dispatch after commit; without it tasks are
    dispatched immediately, which is only safe outside a transaction.
    """
    now = now or utcnow()

    product = product_snapshot
    if product is None:
        product = db.session.query(Product).filter_by(id=product_id, tenant_id=tenant_id).first()
        if product is None:
            logger.warning("event=alert.product_missing tenant_id=%s product_id=%s", tenant_id, product_id)
            return None

    if tenant_thresholds is None:
        tenant = db.session.get(Tenant, tenant_id)
        if tenant is None:
            logger.warning("event=alert.tenant_missing tenant_id=%s", tenant_id)
            return None
        tenant_thresholds = TenantThresholds.from_tenant(tenant)

    effective = resolve_effective_thresholds(product, tenant_thresholds)
    new_level = classify_alert_level(
        current_stock, effective.critical_threshold, effective.attention_threshold
    )

    active = get_active_alert(tenant_id, product_id)

    if new_level == ALERT_LEVEL_GREEN:
        if active is not None:
            _close_alert(active, current_stock, now)
            db.session.flush()
            logger.info(
                "event=alert.closed tenant_id=%s product_id=%s alert_id=%s stock=%d",
                tenant_id, product_id, active.id, current_stock,
            )
        return active

    previous_level = active.level if active is not None else None

    if active is None:
        active = Alert(
            tenant_id=tenant_id,
            product_id=product_id,
            level=new_level,
            status=ALERT_STATUS_ACTIVE,
            stock_at_creation=current_stock,
            current_stock=current_stock,
            created_at=now,
            updated_at=now,
        )
        db.session.add(active)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise ConcurrentAlertError(
                f"active alert for product {product_id} was created concurrently"
            ) from exc
        logger.info(
            "event=alert.opened tenant_id=%s product_id=%s level=%s stock=%d",
            tenant_id, product_id, new_level, current_stock,
        )
    else:
        if is_alert_snoozed(active.snoozed_until, now) and should_cancel_snooze_on_worsening(
            previous_level, new_level
        ):
            active.snoozed_until = None
            logger.info(
                "event=alert.snooze_cancelled tenant_id=%s product_id=%s alert_id=%s",
                tenant_id, product_id, active.id,
            )
        active.level = new_level
        active.current_stock = current_stock
        active.updated_at = now
        db.session.flush()

    if should_trigger_critical_notification(previous_level, new_level):
        _queue_notification(
            CriticalAlertNotification(
                tenant_id=tenant_id,
                product_id=product_id,
                product_name=product.name,
                current_stock=current_stock,
            ),
            pending_notifications,
        )

    return active


def _close_alert(alert: Alert, current_stock: int | None, now: datetime) -> None:
    alert.status = ALERT_STATUS_CLOSED
    alert.closed_at = now
    alert.updated_at = now
    alert.snoozed_until = None
    if current_stock is not None:
        alert.current_stock = current_stock


def close_active_alert(tenant_id: str, product_id: str, *, now: datetime | None = None) -> Alert | None:
    """Close without classification (product soft-deleted)."""
    active = get_active_alert(tenant_id, product_id)
    if active is None:
        return None
    _close_alert(active, None, now or utcnow())
    db.session.flush()
    return active


def recompute_alerts_for_products(
    tenant_id: str,
    product_ids,
    *,
    pending_notifications: list | None = None,
    now: datetime | None = None,
) -> int:
    """
    Bulk variant for threshold changes.

    PERFORMANCE: One tenant read and one product read for the whole set;
    each product is then classified from the shared snapshot.

    Returns the number of products recomputed.
    """
    product_ids = list(product_ids)
    if not product_ids:
        return 0

    tenant = db.session.get(Tenant, tenant_id)
    if tenant is None:
        logger.warning("event=alert.recompute_tenant_missing tenant_id=%s", tenant_id)
        return 0
    thresholds = TenantThresholds.from_tenant(tenant)

    products = (
        db.session.query(Product)
        .filter(
            Product.tenant_id == tenant_id,
            Product.id.in_(product_ids),
            Product.deleted_at.is_(None),
        )
        .all()
    )
    for product in products:
        update_alert_lifecycle(
            tenant_id,
            product.id,
            product.quantity,
            product_snapshot=product,
            tenant_thresholds=thresholds,
            pending_notifications=pending_notifications,
            now=now,
        )
    return len(products)


def _require_active_alert(tenant_id: str, alert_id: str) -> Alert:
    alert = db.session.query(Alert).filter_by(id=alert_id, tenant_id=tenant_id).first()
    if alert is None:
        raise NotFoundError("Alert not found")
    if alert.status != ALERT_STATUS_ACTIVE:
        raise BadRequestError("Alert is not active")
    return alert


def snooze_for_eight_hours(tenant_id: str, alert_id: str, *, now: datetime | None = None) -> Alert:
    """
    Hide an active alert from listings for eight hours.

    The alert stays active and keeps tracking stock; only visibility changes.
    """
    now = now or utcnow()

    def _op():
        alert = _require_active_alert(tenant_id, alert_id)
        alert.snoozed_until = calculate_snooze_expiry(now)
        alert.updated_at = now
        db.session.commit()
        return alert

    alert = run_with_retry(_op)
    logger.info("event=alert.snoozed tenant_id=%s alert_id=%s until=%s", tenant_id, alert_id, alert.snoozed_until)
    return alert


def mark_handled(tenant_id: str, alert_id: str, *, now: datetime | None = None) -> Alert:
    """Manual acknowledgment: closes the alert immediately."""
    now = now or utcnow()

    def _op():
        alert = _require_active_alert(tenant_id, alert_id)
        _close_alert(alert, None, now)
        alert.handled_at = now
        db.session.commit()
        return alert

    alert = run_with_retry(_op)
    logger.info("event=alert.handled tenant_id=%s alert_id=%s", tenant_id, alert_id)
    return alert


def _visible_filter(now: datetime):
    return and_(
        Alert.status == ALERT_STATUS_ACTIVE,
        or_(Alert.snoozed_until.is_(None), Alert.snoozed_until <= now),
    )


def _level_rank_expr():
    # SQL mirror of level_rank(), so listings sort red, orange, green
    return case(
        (Alert.level == ALERT_LEVEL_RED, level_rank(ALERT_LEVEL_RED)),
        (Alert.level == ALERT_LEVEL_ORANGE, level_rank(ALERT_LEVEL_ORANGE)),
        else_=level_rank(ALERT_LEVEL_GREEN),
    )


def encode_alert_cursor(alert_id: str) -> str:
    return base64.urlsafe_b64encode(alert_id.encode("utf-8")).decode("ascii")


def decode_alert_cursor(cursor: str) -> str:
    try:
        return base64.urlsafe_b64decode(cursor.encode("ascii")).decode("utf-8")
    except (ValueError, UnicodeError):
        raise ValidationError("Invalid cursor")


def list_active_alerts(
    tenant_id: str,
    *,
    limit: int = DEFAULT_LIST_LIMIT,
    cursor: str | None = None,
    now: datetime | None = None,
) -> tuple[list[dict], str | None]:
    """
    Visible alerts (active, not snoozed at `now`), most urgent first.

    Order: level (red first), current_stock asc, updated_at desc, id desc.
    The cursor names the last alert of the previous page; the next page
    continues strictly after it in that order.
    """
    now = now or utcnow()
    limit = max(1, min(int(limit), MAX_LIST_LIMIT))
    rank = _level_rank_expr()

    query = (
        db.session.query(Alert, Product.name)
        .join(Product, and_(Product.id == Alert.product_id, Product.tenant_id == Alert.tenant_id))
        .filter(Alert.tenant_id == tenant_id, _visible_filter(now))
    )

    if cursor:
        anchor_id = decode_alert_cursor(cursor)
        anchor = db.session.query(Alert).filter_by(id=anchor_id, tenant_id=tenant_id).first()
        if anchor is None:
            raise ValidationError("Invalid cursor")
        anchor_rank = level_rank(anchor.level)
        query = query.filter(
            or_(
                rank > anchor_rank,
                and_(
                    rank == anchor_rank,
                    or_(
                        Alert.current_stock > anchor.current_stock,
                        and_(
                            Alert.current_stock == anchor.current_stock,
                            or_(
                                Alert.updated_at < anchor.updated_at,
                                and_(Alert.updated_at == anchor.updated_at, Alert.id < anchor.id),
                            ),
                        ),
                    ),
                ),
            )
        )

    rows = (
        query.order_by(rank.asc(), Alert.current_stock.asc(), Alert.updated_at.desc(), Alert.id.desc())
        .limit(limit + 1)
        .all()
    )

    has_more = len(rows) > limit
    rows = rows[:limit]
    items = []
    for alert, product_name in rows:
        data = alert.to_dict()
        data["product_name"] = product_name
        items.append(data)

    next_cursor = encode_alert_cursor(rows[-1][0].id) if has_more and rows else None
    return items, next_cursor


def count_visible_alerts_by_level(tenant_id: str, *, now: datetime | None = None) -> dict:
    now = now or utcnow()
    rows = (
        db.session.query(Alert.level, db.func.count(Alert.id))
        .join(Product, Product.id == Alert.product_id)
        .filter(Alert.tenant_id == tenant_id, Product.deleted_at.is_(None), _visible_filter(now))
        .group_by(Alert.level)
        .all()
    )
    counts = {ALERT_LEVEL_RED: 0, ALERT_LEVEL_ORANGE: 0}
    for level, count in rows:
        counts[level] = int(count)
    return counts
