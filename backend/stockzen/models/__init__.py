from .tenancy import Tenant, TenantMembership
from .auth import User, SessionToken
from .inventory import Product, StockMovement
from .alerts import Alert

__all__ = [
    'Tenant', 'TenantMembership',
    'User', 'SessionToken',
    'Product', 'StockMovement',
    'Alert',
]
