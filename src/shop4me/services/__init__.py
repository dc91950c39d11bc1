"""Order engine services."""

from shop4me.services.callback_processor import CallbackProcessor, CallbackResult
from shop4me.services.checkout import CheckoutItem, CheckoutRequest, CheckoutService
from shop4me.services.order_admin import OrderAdminService, OrderFinancials, StatusUpdateResult
from shop4me.services.order_store import OrderStore
from shop4me.services.payment_service import PaymentInitiationResult, PaymentService
from shop4me.services.principals import Identity, Principal, PrincipalProvider, require_admin
from shop4me.services.reconciliation import ReconciliationResult, ReconciliationService
from shop4me.services.state_machine import (
    OrderStateMachine,
    OrderStatusMachine,
    TransitionResult,
)

__all__ = [
    "CallbackProcessor",
    "CallbackResult",
    "CheckoutItem",
    "CheckoutRequest",
    "CheckoutService",
    "Identity",
    "OrderAdminService",
    "OrderFinancials",
    "OrderStateMachine",
    "OrderStatusMachine",
    "OrderStore",
    "PaymentInitiationResult",
    "PaymentService",
    "Principal",
    "PrincipalProvider",
    "ReconciliationResult",
    "ReconciliationService",
    "StatusUpdateResult",
    "TransitionResult",
    "require_admin",
]
