from __future__ import annotations

import uuid

from ..extensions import db
from ..time_utils import to_utc_z, utcnow

ROLE_ADMIN = "Admin"
ROLE_MANAGER = "Manager"
ROLE_OPERATOR = "Operator"
TENANT_ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_OPERATOR)

DEFAULT_CRITICAL_THRESHOLD = 50
DEFAULT_ATTENTION_THRESHOLD = 100


def new_id() -> str:
    return str(uuid.uuid4())


class Tenant(db.Model):
    """
    Multi-tenant root: every product, movement and alert belongs to one tenant.

    Default thresholds apply to every product that has no valid custom pair.
    They are only changed through tenant_service.update_tenant_default_thresholds,
    which validates the pair and recomputes dependent alerts.
    """
    __tablename__ = "tenants"
    __table_args__ = (
        db.CheckConstraint("default_critical_threshold > 0", name="ck_tenants_critical_positive"),
        db.CheckConstraint(
            "default_critical_threshold < default_attention_threshold",
            name="ck_tenants_critical_below_attention",
        ),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(255), nullable=False)

    default_critical_threshold = db.Column(db.Integer, nullable=False, default=DEFAULT_CRITICAL_THRESHOLD)
    default_attention_threshold = db.Column(db.Integer, nullable=False, default=DEFAULT_ATTENTION_THRESHOLD)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<Tenant id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "default_critical_threshold": self.default_critical_threshold,
            "default_attention_threshold": self.default_attention_threshold,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class TenantMembership(db.Model):
    """
    User membership in a tenant with a role.

    MULTI-TENANT: The role here is what authorization predicates consume
    (see permissions.py). A user has at most one membership per tenant.
    """
    __tablename__ = "tenant_memberships"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "user_id", name="uq_tenant_memberships_tenant_user"),
        db.CheckConstraint("role IN ('Admin', 'Manager', 'Operator')", name="ck_tenant_memberships_role"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    tenant_id = db.Column(db.String(36), db.ForeignKey("tenants.id"), nullable=False, index=True)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
    role = db.Column(db.String(16), nullable=False, default=ROLE_OPERATOR)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    tenant = db.relationship("Tenant", backref=db.backref("memberships", lazy=True))
    user = db.relationship("User", backref=db.backref("memberships", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "role": self.role,
            "created_at": to_utc_z(self.created_at),
        }
