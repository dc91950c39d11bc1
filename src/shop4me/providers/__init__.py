"""Push-payment provider adapters."""

from shop4me.config import MpesaConfig
from shop4me.providers.base import (
    ProviderError,
    PushPaymentProvider,
    StkCallback,
    StkPushRequest,
    StkPushResult,
)
from shop4me.providers.mpesa import DarajaClient, parse_stk_callback
from shop4me.providers.stub import MpesaStubProvider


def build_provider(config: MpesaConfig) -> PushPaymentProvider:
    """Select the provider for the configured M-Pesa environment."""
    if config.environment == "stub":
        return MpesaStubProvider()
    return DarajaClient(config)


__all__ = [
    "DarajaClient",
    "MpesaStubProvider",
    "ProviderError",
    "PushPaymentProvider",
    "StkCallback",
    "StkPushRequest",
    "StkPushResult",
    "build_provider",
    "parse_stk_callback",
]
