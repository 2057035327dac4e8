# backend/stockzen/routes/products.py
"""
Product catalog routes.

SECURITY: All routes require authentication; every query is scoped to g.tenant_id.
Ids from other tenants answer 404, same as missing or deleted ones.

PURCHASE PRICE: Operators never receive purchase_price_cents, and a
purchasePriceCents they send is dropped (logged as an audit event) rather
than rejected, so offline clients built for Managers keep working.

Write bodies use the same camelCase field names as sync payloads
(name, priceCents, purchasePriceCents, thresholdMode, ...).
"""
from flask import Blueprint, current_app, g, request

from ..decorators import require_auth, require_role
from ..models.tenancy import new_id
from ..permissions import can_view_purchase_price, can_write_inventory, can_write_purchase_price
from ..services import products_service
from ..services.sync_service import MAX_ID_LENGTH
from ..services.tenant_service import TenantAccessError, log_cross_tenant_attempt
from ..validation import NotFoundError, ValidationError

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _serialize(product) -> dict:
    return product.to_dict(include_purchase_price=can_view_purchase_price(g.role))


def _payload_for_role() -> dict:
    payload = dict(request.get_json(silent=True) or {})
    if "purchasePriceCents" in payload and not can_write_purchase_price(g.role):
        payload.pop("purchasePriceCents")
        current_app.logger.warning(
            "event=audit.products.purchase_price.write_blocked tenant_id=%s user_id=%s role=%s",
            g.tenant_id, g.user_id, g.role,
        )
    return payload


@products_bp.get("")
@require_auth
def list_products_route():
    products = products_service.list_products(g.tenant_id)
    return {"items": [_serialize(p) for p in products]}, 200


@products_bp.get("/<product_id>")
@require_auth
def get_product_route(product_id: str):
    try:
        product = products_service.get_product(g.tenant_id, product_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return {"product": _serialize(product)}, 200


@products_bp.post("")
@require_auth
@require_role(can_write_inventory, "create products")
def create_product_route():
    payload = _payload_for_role()
    product_id = payload.pop("id", None) or new_id()
    if not isinstance(product_id, str) or len(product_id) > MAX_ID_LENGTH:
        return {"error": f"id must be a string of at most {MAX_ID_LENGTH} characters"}, 400
    operation_id = request.headers.get("Idempotency-Key") or new_id()

    try:
        change = products_service.create_product(
            g.tenant_id, g.user_id, product_id, payload, operation_id=operation_id
        )
    except TenantAccessError:
        log_cross_tenant_attempt(
            "product id owned by another tenant", tenant_id=g.tenant_id, user_id=g.user_id, product_id=product_id
        )
        return {"error": "Product id is not available"}, 409
    except ValidationError as e:
        return {"error": str(e)}, 400

    created = change.outcome == products_service.OUTCOME_CREATED
    return {"product": _serialize(change.product), "duplicate": not created}, (201 if created else 200)


@products_bp.route("/<product_id>", methods=["PATCH", "PUT"])
@require_auth
@require_role(can_write_inventory, "update products")
def update_product_route(product_id: str):
    payload = _payload_for_role()
    try:
        change = products_service.update_product(g.tenant_id, product_id, payload)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ValidationError as e:
        return {"error": str(e)}, 400

    if change.outcome == products_service.OUTCOME_CONFLICT:
        return {"error": "Product was deleted", "product": _serialize(change.product)}, 409
    return {"product": _serialize(change.product)}, 200


@products_bp.delete("/<product_id>")
@require_auth
@require_role(can_write_inventory, "delete products")
def delete_product_route(product_id: str):
    try:
        change = products_service.delete_product(g.tenant_id, product_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return {"product": _serialize(change.product)}, 200
