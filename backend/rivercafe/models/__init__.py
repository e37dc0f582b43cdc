"""SQLAlchemy models."""

from rivercafe.models.user import User, UserRole
from rivercafe.models.catalog import Product, OrderingWindow
from rivercafe.models.order import (
    Order,
    OrderItem,
    OrderKind,
    OrderStatus,
    ExternalCode,
    TERMINAL_STATUSES,
    COLLECTABLE_STATUSES,
)
from rivercafe.models.ledger import Transaction, TransactionType
from rivercafe.models.operations import AppSetting, AuditLogEntry

__all__ = [
    "User",
    "UserRole",
    "Product",
    "OrderingWindow",
    "Order",
    "OrderItem",
    "OrderKind",
    "OrderStatus",
    "ExternalCode",
    "TERMINAL_STATUSES",
    "COLLECTABLE_STATUSES",
    "Transaction",
    "TransactionType",
    "AppSetting",
    "AuditLogEntry",
]
