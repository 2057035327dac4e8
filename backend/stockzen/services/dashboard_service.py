"""
Dashboard aggregates.

PMI (product management index) summarizes how healthy a tenant's stock is:
100 means no visible alerts. Red alerts weigh 40 points and orange 15,
each scaled by its share of the catalogue.
"""

import math

from ..extensions import db
from ..models import Product
from ..models.alerts import ALERT_LEVEL_ORANGE, ALERT_LEVEL_RED
from .alert_service import count_visible_alerts_by_level

RED_WEIGHT = 40
ORANGE_WEIGHT = 15


def calculate_pmi(total_products: int, red_count: int, orange_count: int) -> int:
    if total_products <= 0:
        return 100
    penalty = (red_count / total_products) * RED_WEIGHT + (orange_count / total_products) * ORANGE_WEIGHT
    # round half up, clamp to 0..100
    score = math.floor(100 - penalty + 0.5)
    return max(0, min(100, score))


def get_dashboard_stats(tenant_id: str) -> dict:
    total = (
        db.session.query(db.func.count(Product.id))
        .filter(Product.tenant_id == tenant_id, Product.deleted_at.is_(None))
        .scalar()
    ) or 0
    counts = count_visible_alerts_by_level(tenant_id)
    red = counts[ALERT_LEVEL_RED]
    orange = counts[ALERT_LEVEL_ORANGE]
    return {
        "total_products": int(total),
        "red_alerts": red,
        "orange_alerts": orange,
        "active_alerts": red + orange,
        "pmi": calculate_pmi(int(total), red, orange),
    }
