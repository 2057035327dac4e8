# Overview: Pytest coverage for threshold resolution and stock classification rules.

from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from stockzen.services.alert_levels import (
    ALERT_LEVEL_GREEN,
    THRESHOLD_MODE_CUSTOM,
    THRESHOLD_MODE_DEFAULTS,
    TenantThresholds,
    calculate_snooze_expiry,
    classify_alert_level,
    has_valid_custom_thresholds,
    is_alert_snoozed,
    level_rank,
    resolve_effective_thresholds,
    should_cancel_snooze_on_worsening,
    should_trigger_critical_notification,
)

DEFAULTS = TenantThresholds(critical_threshold=50, attention_threshold=100)


@pytest.mark.parametrize(
    "stock,expected",
    [
        (-5, "red"),
        (0, "red"),
        (50, "red"),
        (51, "orange"),
        (100, "orange"),
        (101, ALERT_LEVEL_GREEN),
    ],
)
def test_classification_boundaries_are_inclusive(stock, expected):
    assert classify_alert_level(stock, 50, 100) == expected


@pytest.mark.parametrize(
    "critical,attention,valid",
    [
        (10, 20, True),
        (1, 2, True),
        (None, 20, False),
        (10, None, False),
        (0, 20, False),
        (-1, 20, False),
        (20, 20, False),
        (30, 20, False),
        (True, 20, False),
        (10.0, 20, False),
        ("10", "20", False),
    ],
)
def test_custom_threshold_validity(critical, attention, valid):
    assert has_valid_custom_thresholds(critical, attention) is valid


def test_valid_custom_pair_overrides_tenant_defaults():
    product = SimpleNamespace(custom_critical_threshold=5, custom_attention_threshold=15)
    effective = resolve_effective_thresholds(product, DEFAULTS)
    assert (effective.critical_threshold, effective.attention_threshold) == (5, 15)
    assert effective.mode == THRESHOLD_MODE_CUSTOM


@pytest.mark.parametrize(
    "critical,attention",
    [(5, None), (None, 15), (15, 5), (10, 10), (0, 10)],
)
def test_invalid_custom_pair_falls_back_silently(critical, attention):
    product = SimpleNamespace(custom_critical_threshold=critical, custom_attention_threshold=attention)
    effective = resolve_effective_thresholds(product, DEFAULTS)
    assert (effective.critical_threshold, effective.attention_threshold) == (50, 100)
    assert effective.mode == THRESHOLD_MODE_DEFAULTS


def test_only_orange_to_red_cancels_snooze():
    assert should_cancel_snooze_on_worsening("orange", "red") is True
    assert should_cancel_snooze_on_worsening("orange", "orange") is False
    assert should_cancel_snooze_on_worsening("red", "red") is False
    assert should_cancel_snooze_on_worsening("red", "orange") is False
    assert should_cancel_snooze_on_worsening(None, "red") is False


def test_critical_notification_fires_on_fresh_red_only():
    assert should_trigger_critical_notification(None, "red") is True
    assert should_trigger_critical_notification("orange", "red") is True
    assert should_trigger_critical_notification("red", "red") is False
    assert should_trigger_critical_notification(None, "orange") is False
    assert should_trigger_critical_notification("red", "orange") is False


def test_snooze_lasts_eight_hours():
    now = datetime(2026, 3, 1, 9, 0, 0)
    until = calculate_snooze_expiry(now)
    assert until - now == timedelta(hours=8)
    assert is_alert_snoozed(until, now) is True
    assert is_alert_snoozed(until, until) is False
    assert is_alert_snoozed(None, now) is False


def test_level_rank_orders_red_first():
    assert sorted(["green", "orange", "red"], key=level_rank) == ["red", "orange", "green"]
