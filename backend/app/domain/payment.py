"""
Payment Domain Models

Pending payments for both gateways plus discount codes. A pending
payment keeps the cart lines and coupon so the order can be priced
again when the gateway confirms the charge.

Author: TM3
Date: 2025-10-17
"""
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ConfigDict

from app.domain.pricing import CartLine


class PaymentStatus(str, Enum):
    """Internal payment states shared by Datafast and DeUna"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    UNKNOWN = "unknown"


class PaymentMethod(str, Enum):
    DATAFAST = "datafast"
    DEUNA = "deuna"


# payment status → order status
ORDER_STATUS_BY_PAYMENT_STATUS = {
    "completed": "paid",
    "failed": "payment_failed",
    "cancelled": "cancelled",
    "refunded": "refunded",
    "pending": "payment_pending",
}

# Only these gateway events change an order that already exists
ORDER_AFFECTING_STATUSES = {"failed", "cancelled", "refunded"}


def order_status_for(payment_status: str) -> str:
    return ORDER_STATUS_BY_PAYMENT_STATUS.get(payment_status, "pending")


def can_transition(current: Optional[str], new: str) -> bool:
    """A completed payment never goes back to pending or unknown"""
    if current == PaymentStatus.COMPLETED.value:
        return new not in (PaymentStatus.PENDING.value, PaymentStatus.UNKNOWN.value)
    return True


class PendingPayment(BaseModel):
    """Fields common to Datafast and DeUna pending payments"""

    user_id: int
    amount: Decimal
    currency: str = "USD"
    status: str = PaymentStatus.PENDING.value
    items: List[CartLine] = Field(default_factory=list)
    coupon_code: Optional[str] = None
    shipping_data: Dict[str, Any] = Field(default_factory=dict)
    order_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_completed(self) -> bool:
        return self.status == PaymentStatus.COMPLETED.value


class DatafastPayment(PendingPayment):
    """
    Datafast checkout waiting for card payment

    Fields:
        checkout_id: ID returned by Datafast when creating the checkout
        transaction_id: merchantTransactionId we sent
        payment_id: Datafast payment ID once verified
        result_code: Last Datafast result code
    """

    checkout_id: str
    transaction_id: str
    payment_id: Optional[str] = None
    result_code: Optional[str] = None


class DeunaPayment(PendingPayment):
    """
    DeUna payment request waiting for the webhook

    Fields:
        payment_id: DeUna transaction ID (idTransaction)
        order_number: Order number reserved when the request was created
        transaction_id: Transfer reference reported by the webhook
    """

    payment_id: str
    order_number: str
    transaction_id: Optional[str] = None
    qr: Optional[str] = None
    deeplink: Optional[str] = None


class DiscountCode(BaseModel):
    """
    Coupon code

    Feedback codes belong to one user (owner_user_id); admin codes have
    no owner and any shopper can redeem them once.
    """

    id: int
    code: str
    discount_percentage: Decimal = Field(..., gt=0, le=100)
    is_used: bool = False
    expires_at: Optional[datetime] = None
    owner_user_id: Optional[int] = None
    source: str = "feedback"

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_expired(self) -> bool:
        if self.expires_at is None:
            return False
        expires = self.expires_at
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return expires < datetime.now(timezone.utc)

    def is_valid_for(self, user_id: int) -> bool:
        if self.is_used or self.is_expired:
            return False
        return self.owner_user_id is None or self.owner_user_id == user_id
