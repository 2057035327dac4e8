# Overview: Pure threshold resolution and stock classification rules.

"""
Alert level rules (no I/O).

Effective thresholds:
- A product's custom pair applies only when BOTH values are integers,
  both > 0, and critical < attention.
- Anything else (one side missing, zero, negative, inverted, equal,
  non-integer) silently falls back to the tenant defaults. Stored data
  never makes classification fail.

Classification (boundaries inclusive):
- stock <= critical            -> red
- critical < stock <= attention -> orange
- stock > attention            -> green
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from ..models.alerts import ALERT_LEVEL_ORANGE, ALERT_LEVEL_RED
from ..validation import is_strict_int

ALERT_LEVEL_GREEN = "green"

THRESHOLD_MODE_CUSTOM = "custom"
THRESHOLD_MODE_DEFAULTS = "defaults"

SNOOZE_DURATION_HOURS = 8

_LEVEL_RANK = {ALERT_LEVEL_RED: 0, ALERT_LEVEL_ORANGE: 1, ALERT_LEVEL_GREEN: 2}


@dataclass(frozen=True)
class TenantThresholds:
    critical_threshold: int
    attention_threshold: int

    @classmethod
    def from_tenant(cls, tenant) -> "TenantThresholds":
        return cls(
            critical_threshold=tenant.default_critical_threshold,
            attention_threshold=tenant.default_attention_threshold,
        )


@dataclass(frozen=True)
class EffectiveThresholds:
    critical_threshold: int
    attention_threshold: int
    mode: str


def has_valid_custom_thresholds(critical: Any, attention: Any) -> bool:
    return (
        is_strict_int(critical)
        and is_strict_int(attention)
        and critical > 0
        and attention > 0
        and critical < attention
    )


def resolve_effective_thresholds(product, tenant_thresholds: TenantThresholds) -> EffectiveThresholds:
    critical = getattr(product, "custom_critical_threshold", None)
    attention = getattr(product, "custom_attention_threshold", None)
    if has_valid_custom_thresholds(critical, attention):
        return EffectiveThresholds(critical, attention, THRESHOLD_MODE_CUSTOM)
    return EffectiveThresholds(
        tenant_thresholds.critical_threshold,
        tenant_thresholds.attention_threshold,
        THRESHOLD_MODE_DEFAULTS,
    )


def classify_alert_level(stock: int, critical: int, attention: int) -> str:
    if stock <= critical:
        return ALERT_LEVEL_RED
    if stock <= attention:
        return ALERT_LEVEL_ORANGE
    return ALERT_LEVEL_GREEN


def level_rank(level: str) -> int:
    return _LEVEL_RANK[level]


def is_alert_snoozed(snoozed_until: Optional[datetime], now: datetime) -> bool:
    return snoozed_until is not None and snoozed_until > now


def calculate_snooze_expiry(now: datetime) -> datetime:
    return now + timedelta(hours=SNOOZE_DURATION_HOURS)


def should_cancel_snooze_on_worsening(current_level: Optional[str], new_level: str) -> bool:
    """Only orange -> red cancels a snooze. Same level and red -> orange keep it."""
    return current_level == ALERT_LEVEL_ORANGE and new_level == ALERT_LEVEL_RED


def should_trigger_critical_notification(previous_level: Optional[str], new_level: str) -> bool:
    """A fresh entry into red (from nothing, green, or orange). red -> red never fires."""
    return new_level == ALERT_LEVEL_RED and previous_level != ALERT_LEVEL_RED
