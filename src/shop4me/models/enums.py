"""Closed status vocabularies shared by the models and the services.

Values double as the stored representation. Human-readable labels are a
presentation concern and live outside the engine.
"""

from __future__ import annotations

from enum import Enum


class OrderStatus(str, Enum):
    """Fulfillment axis."""

    DRAFT = "DRAFT"
    PENDING_PAYMENT = "PENDING_PAYMENT"
    PROCESSING = "PROCESSING"
    SHOPPING = "SHOPPING"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, Enum):
    """Payment axis, independent of fulfillment."""

    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    PARTIAL = "PARTIAL"


class ReconciliationStatus(str, Enum):
    """Outcome of the reconciliation sweep."""

    NOT_REQUIRED = "NOT_REQUIRED"
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    DISCREPANCY = "DISCREPANCY"


class AttemptStatus(str, Enum):
    """Resolution of a single push-payment request."""

    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"


class StatusActor(str, Enum):
    """Who caused a status change."""

    CUSTOMER = "CUSTOMER"
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


class StatusChannel(str, Enum):
    """Where a status change came from."""

    WEB = "WEB"
    WHATSAPP = "WHATSAPP"
    SMS = "SMS"
    ADMIN_PORTAL = "ADMIN_PORTAL"


class UserRole(str, Enum):
    """Principal role."""

    CUSTOMER = "CUSTOMER"
    ADMIN = "ADMIN"
