"""ORM models for the order engine."""

from shop4me.models.base import Base, TimestampMixin, UTCDateTime, utcnow
from shop4me.models.enums import (
    AttemptStatus,
    OrderStatus,
    PaymentStatus,
    ReconciliationStatus,
    StatusActor,
    StatusChannel,
    UserRole,
)
from shop4me.models.order import Expense, Order, OrderItem, PaymentAttempt, StatusLog
from shop4me.models.user import User

__all__ = [
    "AttemptStatus",
    "Base",
    "Expense",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentAttempt",
    "PaymentStatus",
    "ReconciliationStatus",
    "StatusActor",
    "StatusChannel",
    "StatusLog",
    "TimestampMixin",
    "User",
    "UserRole",
    "UTCDateTime",
    "utcnow",
]
