"""Payment gateway factory.

get_gateway() returns the adapter selected by PAYMENT_GATEWAY; set_gateway()
overrides it (tests use it to install a configured mock).
"""
from .. import config
from .payment_gateway import HttpPaymentGateway, MockPaymentGateway, PaymentGateway

_current_gateway: PaymentGateway = None


def get_gateway() -> PaymentGateway:
    """Return the current payment gateway, creating the configured default on first use."""
    global _current_gateway
    if _current_gateway is None:
        if config.PAYMENT_GATEWAY == "http":
            _current_gateway = HttpPaymentGateway()
        else:
            _current_gateway = MockPaymentGateway()
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    """Override the active payment gateway."""
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    """Reset to the configured default gateway."""
    global _current_gateway
    _current_gateway = None
