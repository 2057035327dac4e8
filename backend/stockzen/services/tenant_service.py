"""
Multi-Tenant Service: Tenant Validation, Scoping and Default Thresholds

WHY: Centralize tenant validation logic for reuse across services and routes.
Every request is scoped to one tenant and cross-tenant access is denied.

SECURITY INVARIANTS:
1. Every authenticated request has g.tenant_id set
2. Tenant ids from client input (sync operations, payloads) must equal g.tenant_id
3. Queries touching tenant-owned rows filter by tenant_id
4. Cross-tenant attempts are logged at WARNING as security signals

THRESHOLDS:
Tenant defaults are the fallback pair for every product without a valid
custom pair. Changing them is admin-only and recomputes alerts for every
product that currently resolves to the defaults, in the same transaction.
"""

import logging

from flask import g

from ..extensions import db
from ..models import Product, Tenant, TenantMembership, User
from ..models.tenancy import ROLE_ADMIN, TENANT_ROLES
from ..permissions import PermissionDeniedError, can_manage_tenant_members
from ..validation import NotFoundError, ValidationError, validate_threshold_pair
from .alert_levels import THRESHOLD_MODE_DEFAULTS, TenantThresholds, resolve_effective_thresholds
from .alert_service import recompute_alerts_for_products
from .concurrency import run_with_retry
from .notification_service import dispatch_pending

logger = logging.getLogger(__name__)


class TenantAccessError(Exception):
    """Raised when cross-tenant access is attempted."""
    pass


def get_current_tenant_id() -> str:
    """
    Get current tenant id from Flask g context.

    SECURITY: Raises TenantAccessError if tenant_id not set.
    This should never happen after @require_auth, but is a safety check.
    """
    tenant_id = getattr(g, "tenant_id", None)
    if not tenant_id:
        raise TenantAccessError("Tenant context not established")
    return tenant_id


def log_cross_tenant_attempt(reason: str, *, tenant_id: str | None, user_id: str | None = None, **details) -> None:
    extra = " ".join(f"{key}={value}" for key, value in sorted(details.items()))
    logger.warning(
        "event=security.tenant_mismatch tenant_id=%s user_id=%s reason=%r %s",
        tenant_id, user_id, reason, extra,
    )


def require_tenant(tenant_id: str) -> Tenant:
    tenant = db.session.get(Tenant, tenant_id)
    if tenant is None:
        raise NotFoundError("Tenant not found")
    return tenant


def get_tenant_thresholds(tenant_id: str) -> TenantThresholds:
    return TenantThresholds.from_tenant(require_tenant(tenant_id))


def update_tenant_default_thresholds(
    tenant_id: str,
    role: str | None,
    critical_threshold,
    attention_threshold,
) -> tuple[Tenant, int]:
    """
    Change the tenant's default pair and cascade to products using defaults.

    Returns (tenant, recomputed_product_count). Products with a valid custom
    pair are not touched; products with an incomplete or invalid pair are,
    since they resolve to the defaults.

    Raises PermissionDeniedError for non-admins and ValidationError for an
    invalid pair, before anything is written.
    """
    if not can_manage_tenant_members(role):
        raise PermissionDeniedError("Only tenant admins can change default thresholds")
    critical, attention = validate_threshold_pair(critical_threshold, attention_threshold)

    def _op():
        pending = []
        tenant = require_tenant(tenant_id)
        tenant.default_critical_threshold = critical
        tenant.default_attention_threshold = attention
        db.session.flush()

        thresholds = TenantThresholds.from_tenant(tenant)
        products = (
            db.session.query(Product)
            .filter(Product.tenant_id == tenant_id, Product.deleted_at.is_(None))
            .all()
        )
        using_defaults = [
            p.id for p in products
            if resolve_effective_thresholds(p, thresholds).mode == THRESHOLD_MODE_DEFAULTS
        ]
        count = recompute_alerts_for_products(tenant_id, using_defaults, pending_notifications=pending)
        db.session.commit()
        return tenant, count, pending

    tenant, count, pending = run_with_retry(_op)
    logger.info(
        "event=tenant.thresholds_updated tenant_id=%s critical=%d attention=%d recomputed=%d",
        tenant_id, critical, attention, count,
    )
    dispatch_pending(pending)
    return tenant, count


def create_tenant(name: str, *, critical_threshold: int | None = None, attention_threshold: int | None = None) -> Tenant:
    if not name or not name.strip():
        raise ValidationError("Tenant name is required")
    tenant = Tenant(name=name.strip())
    if critical_threshold is not None or attention_threshold is not None:
        tenant.default_critical_threshold, tenant.default_attention_threshold = validate_threshold_pair(
            critical_threshold, attention_threshold
        )
    db.session.add(tenant)
    db.session.commit()
    return tenant


def add_member(tenant_id: str, email: str, *, name: str | None = None, role: str = ROLE_ADMIN) -> User:
    """Create (or reuse) a user and give them a role in the tenant."""
    if role not in TENANT_ROLES:
        raise ValidationError(f"role must be one of {', '.join(TENANT_ROLES)}")
    require_tenant(tenant_id)

    user = db.session.query(User).filter_by(email=email).first()
    if user is None:
        user = User(email=email, name=name, default_tenant_id=tenant_id)
        db.session.add(user)
        db.session.flush()
    elif user.default_tenant_id is None:
        user.default_tenant_id = tenant_id

    membership = db.session.query(TenantMembership).filter_by(tenant_id=tenant_id, user_id=user.id).first()
    if membership is None:
        db.session.add(TenantMembership(tenant_id=tenant_id, user_id=user.id, role=role))
    else:
        membership.role = role
    db.session.commit()
    return user
