from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .tenancy import new_id

ALERT_LEVEL_RED = "red"
ALERT_LEVEL_ORANGE = "orange"
ALERT_STATUS_ACTIVE = "active"
ALERT_STATUS_CLOSED = "closed"

_ACTIVE_ONLY = db.text("status = 'active'")


class Alert(db.Model):
    """
    Low-stock alert for one product.

    INVARIANT: At most one row with status='active' per (tenant_id, product_id).
    Enforced by the partial unique index below, not only by application code;
    concurrent inserts for the same product fail with IntegrityError and the
    losing transaction is replayed (see alert_service).

    Green is never persisted: a product returning to green closes its alert.
    Snoozed alerts stay active; visibility is computed from snoozed_until.
    """
    __tablename__ = "alerts"
    __table_args__ = (
        db.Index(
            "uq_alerts_one_active_per_product",
            "tenant_id",
            "product_id",
            unique=True,
            sqlite_where=_ACTIVE_ONLY,
            postgresql_where=_ACTIVE_ONLY,
        ),
        db.Index("ix_alerts_tenant_status_level", "tenant_id", "status", "level"),
        db.CheckConstraint("level IN ('red', 'orange')", name="ck_alerts_level"),
        db.CheckConstraint("status IN ('active', 'closed')", name="ck_alerts_status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    tenant_id = db.Column(db.String(36), db.ForeignKey("tenants.id"), nullable=False, index=True)
    product_id = db.Column(db.String(36), db.ForeignKey("products.id"), nullable=False, index=True)

    level = db.Column(db.String(8), nullable=False)
    status = db.Column(db.String(8), nullable=False, default=ALERT_STATUS_ACTIVE)

    stock_at_creation = db.Column(db.Integer, nullable=False)
    current_stock = db.Column(db.Integer, nullable=False)

    snoozed_until = db.Column(db.DateTime(timezone=True), nullable=True)
    handled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    product = db.relationship("Product", backref=db.backref("alerts", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_active(self) -> bool:
        return self.status == ALERT_STATUS_ACTIVE

    def __repr__(self) -> str:
        return f"<Alert id={self.id} product_id={self.product_id} level={self.level} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "product_id": self.product_id,
            "level": self.level,
            "status": self.status,
            "stock_at_creation": self.stock_at_creation,
            "current_stock": self.current_stock,
            "snoozed_until": to_utc_z(self.snoozed_until),
            "handled_at": to_utc_z(self.handled_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "closed_at": to_utc_z(self.closed_at),
        }
