from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .tenancy import new_id

MOVEMENT_ENTRY = "entry"
MOVEMENT_EXIT = "exit"
MOVEMENT_TYPES = (MOVEMENT_ENTRY, MOVEMENT_EXIT)


class Product(db.Model):
    """
    Product master data plus the authoritative stock figure.

    MULTI-TENANT: Products are scoped by tenant_id. Ids are client-assignable
    UUIDs so offline devices can create products before the server sees them.

    QUANTITY: quantity is maintained only by inventory_service through an
    atomic SQL increment when a StockMovement is recorded. Sync "product
    update" operations never write it. The signed sum of the product's
    movements always equals quantity.

    THRESHOLDS: custom_critical_threshold / custom_attention_threshold are
    stored as given; an incomplete or invalid pair silently falls back to
    the tenant defaults when alerts are classified.

    version_id guards descriptive field updates (last write wins, but a
    write based on a stale row is retried rather than lost half-applied).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_tenant_name", "tenant_id", "name"),
        db.Index("ix_products_tenant_deleted", "tenant_id", "deleted_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    tenant_id = db.Column(db.String(36), db.ForeignKey("tenants.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    sku = db.Column(db.String(64), nullable=True)
    category = db.Column(db.String(120), nullable=True)
    unit = db.Column(db.String(32), nullable=True)
    barcode = db.Column(db.String(64), nullable=True)

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=True)
    purchase_price_cents = db.Column(db.Integer, nullable=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)

    custom_critical_threshold = db.Column(db.Integer, nullable=True)
    custom_attention_threshold = db.Column(db.Integer, nullable=True)

    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    tenant = db.relationship("Tenant", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} tenant_id={self.tenant_id} quantity={self.quantity}>"

    def to_dict(self, include_purchase_price: bool = True) -> dict:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "description": self.description,
            "sku": self.sku,
            "category": self.category,
            "unit": self.unit,
            "barcode": self.barcode,
            "price_cents": self.price_cents,
            "quantity": self.quantity,
            "custom_critical_threshold": self.custom_critical_threshold,
            "custom_attention_threshold": self.custom_attention_threshold,
            "deleted_at": to_utc_z(self.deleted_at),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_purchase_price:
            data["purchase_price_cents"] = self.purchase_price_cents
        return data


class StockMovement(db.Model):
    """
    Append-only stock ledger row.

    IDEMPOTENCY: (tenant_id, idempotency_key) is unique. Sync replays the
    same operation id as the key, so a retried operation finds the row it
    already wrote instead of moving stock twice.

    Rows are never updated or deleted.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "idempotency_key", name="uq_stock_movements_tenant_idempotency_key"),
        db.CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
        db.CheckConstraint("type IN ('entry', 'exit')", name="ck_stock_movements_type"),
        db.Index("ix_stock_movements_product_created", "tenant_id", "product_id", "created_at", "id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    tenant_id = db.Column(db.String(36), db.ForeignKey("tenants.id"), nullable=False, index=True)
    product_id = db.Column(db.String(36), db.ForeignKey("products.id"), nullable=False, index=True)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True, index=True)

    type = db.Column(db.String(8), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    idempotency_key = db.Column(db.String(255), nullable=False)
    note = db.Column(db.String(255), nullable=True)

    # Set in Python so pagination cursors keep microsecond precision
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    product = db.relationship("Product", backref=db.backref("movements", lazy=True))

    def __repr__(self) -> str:
        return f"<StockMovement id={self.id} product_id={self.product_id} {self.type} {self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "product_id": self.product_id,
            "user_id": self.user_id,
            "type": self.type,
            "quantity": self.quantity,
            "idempotency_key": self.idempotency_key,
            "note": self.note,
            "created_at": to_utc_z(self.created_at, precise=True),
        }
