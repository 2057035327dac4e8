from __future__ import annotations

from typing import Any


# Maximum price: $9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

MAX_TEXT_LENGTHS = {
    "name": 255,
    "sku": 64,
    "category": 120,
    "unit": 32,
    "barcode": 64,
}


class ValidationError(ValueError):
    """400-level input problem."""


class NotFoundError(ValueError):
    """
    404-level: entity missing OR owned by another tenant.

    SECURITY: Both cases raise the same error so a caller cannot learn
    which ids exist in other tenants.
    """


class BadRequestError(ValueError):
    """400-level: the entity exists but is not in a state that allows the operation."""


def is_strict_int(value: Any) -> bool:
    """True for real integers; bool is rejected even though it subclasses int."""
    return isinstance(value, int) and not isinstance(value, bool)


def require_positive_int(value: Any, message: str) -> int:
    if not is_strict_int(value) or value <= 0:
        raise ValidationError(message)
    return value


def validate_threshold_pair(critical: Any, attention: Any) -> tuple[int, int]:
    """
    Strict check used where thresholds are WRITTEN (tenant defaults, product
    custom thresholds). Reading stored thresholds is permissive instead; see
    alert_levels.resolve_effective_thresholds.
    """
    require_positive_int(critical, "Critical threshold must be a positive integer")
    require_positive_int(attention, "Attention threshold must be a positive integer")
    if critical >= attention:
        raise ValidationError("Critical threshold must be less than attention threshold")
    return critical, attention


def coerce_price_cents(field: str, value: Any) -> int | None:
    if value is None:
        return None
    if not is_strict_int(value):
        raise ValidationError(f"{field} must be an integer number of cents")
    if value < 0:
        raise ValidationError(f"{field} cannot be negative")
    if value > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} exceeds maximum allowed value")
    return value


def coerce_text(field: str, value: Any, *, required: bool = False) -> str | None:
    if value is None:
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    stripped = value.strip()
    if required and not stripped:
        raise ValidationError(f"{field} is required")
    limit = MAX_TEXT_LENGTHS.get(field)
    if limit is not None and len(stripped) > limit:
        raise ValidationError(f"{field} must be at most {limit} characters")
    return stripped or None
