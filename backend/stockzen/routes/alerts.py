# backend/stockzen/routes/alerts.py
"""
Alert routes.

GET  /api/alerts               visible alerts (active, not snoozed), most urgent first
POST /api/alerts/<id>/snooze   hide for eight hours
POST /api/alerts/<id>/handled  close as acknowledged
"""
from flask import Blueprint, g, request

from ..decorators import require_auth, require_role
from ..permissions import can_acknowledge_alerts
from ..services import alert_service
from ..validation import BadRequestError, NotFoundError, ValidationError

alerts_bp = Blueprint("alerts", __name__, url_prefix="/api/alerts")


@alerts_bp.get("")
@require_auth
def list_alerts_route():
    limit = request.args.get("limit", default=alert_service.DEFAULT_LIST_LIMIT, type=int)
    try:
        items, next_cursor = alert_service.list_active_alerts(
            g.tenant_id, limit=limit, cursor=request.args.get("cursor")
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    return {"items": items, "next_cursor": next_cursor}, 200


def _mutate(action, alert_id: str):
    try:
        alert = action(g.tenant_id, alert_id)
    except NotFoundError as e:
        return {"error": str(e), "code": "NOT_FOUND"}, 404
    except BadRequestError as e:
        return {"error": str(e), "code": "BAD_REQUEST"}, 400
    return {"alert": alert.to_dict()}, 200


@alerts_bp.post("/<alert_id>/snooze")
@require_auth
@require_role(can_acknowledge_alerts, "snooze alerts")
def snooze_alert_route(alert_id: str):
    return _mutate(alert_service.snooze_for_eight_hours, alert_id)


@alerts_bp.post("/<alert_id>/handled")
@require_auth
@require_role(can_acknowledge_alerts, "acknowledge alerts")
def mark_handled_route(alert_id: str):
    return _mutate(alert_service.mark_handled, alert_id)
