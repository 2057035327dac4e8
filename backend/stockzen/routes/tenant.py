# backend/stockzen/routes/tenant.py
"""
Tenant settings routes.

PUT /api/tenant/thresholds is admin-only and cascades an alert recompute
to every product using the tenant defaults.
"""
from flask import Blueprint, g, request

from ..decorators import require_auth
from ..permissions import PermissionDeniedError
from ..services import tenant_service
from ..services.alert_levels import TenantThresholds
from ..validation import ValidationError

tenant_bp = Blueprint("tenant", __name__, url_prefix="/api/tenant")


def _thresholds_body(thresholds: TenantThresholds) -> dict:
    return {
        "critical_threshold": thresholds.critical_threshold,
        "attention_threshold": thresholds.attention_threshold,
    }


@tenant_bp.get("/thresholds")
@require_auth
def get_thresholds_route():
    return _thresholds_body(tenant_service.get_tenant_thresholds(g.tenant_id)), 200


@tenant_bp.put("/thresholds")
@require_auth
def update_thresholds_route():
    payload = request.get_json(silent=True) or {}
    try:
        tenant, recomputed = tenant_service.update_tenant_default_thresholds(
            g.tenant_id,
            g.role,
            payload.get("critical_threshold"),
            payload.get("attention_threshold"),
        )
    except PermissionDeniedError as e:
        return {"error": "Permission denied", "message": str(e)}, 403
    except ValidationError as e:
        return {"error": str(e)}, 400

    body = _thresholds_body(TenantThresholds.from_tenant(tenant))
    body["recomputed_products"] = recomputed
    return body, 200
