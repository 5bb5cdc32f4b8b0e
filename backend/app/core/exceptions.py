"""
Checkout domain errors

Every error carries the HTTP status code the API layer answers with, so
routers can translate them without knowing each case.
"""
from typing import Optional


class CheckoutError(Exception):
    """Base class for pricing/checkout/payment errors"""

    status_code = 400

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidCartError(CheckoutError):
    """Empty cart, bad quantities, unknown or inactive products"""


class InsufficientStockError(CheckoutError):
    status_code = 409


class InvalidDiscountCodeError(CheckoutError):
    """Coupon not found, used, expired or owned by another user"""


class PriceTamperingError(CheckoutError):
    """Client prices or totals do not match the server calculation"""

    status_code = 409


class PaymentGatewayError(CheckoutError):
    """Gateway unreachable or answered with an HTTP error"""

    status_code = 502


class PaymentNotCompletedError(CheckoutError):
    """Checkout exists at the gateway but no transaction was completed"""

    status_code = 402


class PaymentVerificationError(CheckoutError):
    """Gateway rejected the transaction"""

    status_code = 402


class AmountMismatchError(CheckoutError):
    """Amount charged differs from the recomputed order total"""

    status_code = 409


class PaymentNotFoundError(CheckoutError):
    status_code = 404


class OrderNotFoundError(CheckoutError):
    status_code = 404


class WebhookSignatureError(CheckoutError):
    status_code = 401


class InvalidWebhookError(CheckoutError):
    """Webhook payload without a usable payment identifier"""


class InvalidCustomerDataError(CheckoutError):
    """Customer data the card gateway requires is missing or malformed"""

    status_code = 422


class WebhookNotConfiguredError(CheckoutError):
    """Webhook secret missing outside debug mode"""

    status_code = 500


class OrderAlreadyPlacedError(CheckoutError):
    """Another request already created the order for this payment"""

    status_code = 409

    def __init__(self, message: str, order=None, details: Optional[dict] = None):
        super().__init__(message, details)
        self.order = order
