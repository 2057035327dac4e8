# Overview: Role capability predicates consumed by services and routes.

from .models.tenancy import ROLE_ADMIN, ROLE_MANAGER, ROLE_OPERATOR, TENANT_ROLES


class PermissionDeniedError(Exception):
    """Raised when the caller's tenant role lacks a capability."""


def can_manage_tenant_members(role: str | None) -> bool:
    """Admin-only: members, roles, and tenant-wide settings such as default thresholds."""
    return role == ROLE_ADMIN


def can_write_inventory(role: str | None) -> bool:
    return role in TENANT_ROLES


def can_acknowledge_alerts(role: str | None) -> bool:
    return role in (ROLE_ADMIN, ROLE_MANAGER, ROLE_OPERATOR)


def can_view_purchase_price(role: str | None) -> bool:
    """Purchase cost is Manager and above; Operators see sale prices only."""
    return role in (ROLE_ADMIN, ROLE_MANAGER)


def can_write_purchase_price(role: str | None) -> bool:
    return role in (ROLE_ADMIN, ROLE_MANAGER)
