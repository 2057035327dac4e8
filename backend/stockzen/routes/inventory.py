# backend/stockzen/routes/inventory.py
"""
Stock movement routes.

SECURITY: All routes require authentication; every query is scoped to g.tenant_id.
Product ids from other tenants answer 404, same as missing ones.

Idempotency: POST /movements accepts the key in the body ("idempotency_key")
or the Idempotency-Key header. A replay answers 200 with the original
movement instead of 201.
"""
from flask import Blueprint, g, request

from ..decorators import require_auth, require_role
from ..permissions import can_write_inventory
from ..services import inventory_service, products_service
from ..validation import NotFoundError, ValidationError

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.post("/movements")
@require_auth
@require_role(can_write_inventory, "record stock movements")
def create_movement_route():
    payload = request.get_json(silent=True) or {}
    idempotency_key = payload.get("idempotency_key") or request.headers.get("Idempotency-Key")

    product_id = payload.get("product_id")
    if not isinstance(product_id, str) or not product_id:
        return {"error": "product_id is required"}, 400

    try:
        movement, created = inventory_service.record_movement(
            g.tenant_id,
            g.user_id,
            product_id,
            payload.get("type"),
            payload.get("quantity"),
            idempotency_key,
            note=payload.get("note"),
        )
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ValidationError as e:
        return {"error": str(e)}, 400

    product = products_service.get_product(g.tenant_id, movement.product_id, include_deleted=True)
    return {
        "movement": movement.to_dict(),
        "product_quantity": product.quantity,
        "duplicate": not created,
    }, (201 if created else 200)


@inventory_bp.get("/products/<product_id>/movements")
@require_auth
def list_movements_route(product_id: str):
    limit = request.args.get("limit", default=inventory_service.DEFAULT_PAGE_SIZE, type=int)
    cursor = request.args.get("cursor")
    try:
        movements, next_cursor = inventory_service.get_movements_by_product(
            g.tenant_id, product_id, limit=limit, cursor=cursor
        )
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ValidationError as e:
        return {"error": str(e)}, 400

    return {"items": [m.to_dict() for m in movements], "next_cursor": next_cursor}, 200
