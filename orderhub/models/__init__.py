# orderhub/models/__init__.py
from .tenant import Tenant, User, UserRole
from .menu import MenuItem
from .order import Order, OrderItem, OrderStatus
from .history import HistoryAction, OrderHistory

# Export all models
__all__ = [
    "HistoryAction",
    "MenuItem",
    "Order",
    "OrderHistory",
    "OrderItem",
    "OrderStatus",
    "Tenant",
    "User",
    "UserRole",
]
