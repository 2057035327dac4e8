# backend/stockzen/routes/dashboard.py
from flask import Blueprint, g

from ..decorators import require_auth
from ..services.dashboard_service import get_dashboard_stats

dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api/dashboard")


@dashboard_bp.get("/stats")
@require_auth
def dashboard_stats_route():
    return get_dashboard_stats(g.tenant_id), 200
