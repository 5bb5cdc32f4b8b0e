"""
Pricing Domain Models

Inputs and outputs of the checkout pricing engine. All money is Decimal,
quantized to cents with ROUND_HALF_UP.

Author: TM3
Date: 2025-10-17
"""
import json
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from pydantic import BaseModel, Field, ConfigDict, field_validator

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')
ZERO = Decimal('0.00')
HUNDRED = Decimal('100')


def money(value) -> Decimal:
    """Round a monetary amount to cents (half away from zero)"""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, percentage: Decimal) -> Decimal:
    """Unrounded `percentage` % of `amount`"""
    return Decimal(amount) * Decimal(percentage) / HUNDRED


class VolumeTier(BaseModel):
    """Quantity-tiered discount: `discount` % once a line reaches `quantity` units"""

    quantity: int = Field(..., ge=1)
    discount: Decimal = Field(..., ge=0, le=100)
    label: Optional[str] = None


FALLBACK_VOLUME_TIERS = [
    VolumeTier(quantity=5, discount=Decimal('5'), label="Descuento 5+"),
    VolumeTier(quantity=6, discount=Decimal('10'), label="Descuento 6+"),
    VolumeTier(quantity=19, discount=Decimal('15'), label="Descuento 19+"),
]


def parse_volume_tiers(raw) -> List[VolumeTier]:
    """
    Parse tiers from a JSON string or a list of dicts.

    Invalid configuration falls back to FALLBACK_VOLUME_TIERS.
    """
    try:
        data = json.loads(raw) if isinstance(raw, str) else raw
        if not isinstance(data, list):
            raise ValueError(f"tiers must be a list, got {type(data).__name__}")
        return [VolumeTier(**tier) if isinstance(tier, dict) else tier for tier in data]
    except (ValueError, TypeError) as e:
        logger.warning(f"Invalid volume discount tiers, using fallback: {e}")
        return list(FALLBACK_VOLUME_TIERS)


class PricingConfig(BaseModel):
    """
    Runtime pricing configuration

    Fields:
        tax_rate: IVA percentage applied on (subtotal + shipping)
        shipping_enabled: When False shipping is always free
        free_shipping_threshold: Subtotal at or above which shipping is free
        default_shipping_cost: Flat shipping cost below the threshold
        volume_discounts_enabled: Toggle for quantity tiers
        volume_tiers: Quantity tiers (evaluated per line)
    """

    tax_rate: Decimal = Field(Decimal('15'), ge=0, le=100)
    shipping_enabled: bool = True
    free_shipping_threshold: Decimal = Field(Decimal('50.00'), ge=0)
    default_shipping_cost: Decimal = Field(Decimal('5.00'), ge=0)
    volume_discounts_enabled: bool = True
    volume_tiers: List[VolumeTier] = Field(default_factory=lambda: list(FALLBACK_VOLUME_TIERS))

    @field_validator('volume_tiers', mode='before')
    @classmethod
    def _parse_tiers(cls, value):
        if isinstance(value, str):
            return parse_volume_tiers(value)
        return value

    @classmethod
    def from_settings(cls, settings) -> 'PricingConfig':
        return cls(
            tax_rate=settings.TAX_RATE,
            shipping_enabled=settings.SHIPPING_ENABLED,
            free_shipping_threshold=settings.FREE_SHIPPING_THRESHOLD,
            default_shipping_cost=settings.DEFAULT_SHIPPING_COST,
            volume_discounts_enabled=settings.VOLUME_DISCOUNTS_ENABLED,
            volume_tiers=parse_volume_tiers(settings.VOLUME_DISCOUNT_TIERS),
        )


class CartLine(BaseModel):
    """
    A cart line as submitted by the shopper

    `price` is the unit price the client displayed; it is never used for
    pricing, only to detect tampering.
    """

    product_id: int
    quantity: int = Field(..., gt=0)
    price: Optional[Decimal] = None


class PricedItem(BaseModel):
    """Per-unit pricing of one cart line (all amounts per unit except subtotal)"""

    product_id: int
    seller_id: int
    product_name: Optional[str] = None
    quantity: int
    original_price: Decimal
    seller_discount_percentage: Decimal
    seller_discounted_price: Decimal
    volume_discount_percentage: Decimal
    volume_discount_label: Optional[str] = None
    final_price: Decimal
    seller_discount_amount: Decimal
    volume_discount_amount: Decimal
    total_discount_amount: Decimal
    subtotal: Decimal

    model_config = ConfigDict(frozen=True)

    @property
    def original_subtotal(self) -> Decimal:
        return self.original_price * self.quantity


class CouponApplication(BaseModel):
    """Coupon applied over the already discounted subtotal"""

    code: str
    discount_percentage: Decimal
    discount_amount: Decimal


class SellerBreakdown(BaseModel):
    """Slice of the cart that belongs to one seller (becomes a seller order)"""

    seller_id: int
    items: List[PricedItem]
    subtotal: Decimal
    original_total: Decimal
    seller_discounts: Decimal
    volume_discounts: Decimal
    shipping_cost: Decimal

    @property
    def volume_discounts_applied(self) -> bool:
        return self.volume_discounts > 0


class PricingResult(BaseModel):
    """
    Complete pricing of a cart

    Amounts:
        subtotal_original: Σ base price × qty
        subtotal_with_discounts: Σ final price × qty (seller + volume)
        subtotal_after_coupon: subtotal_with_discounts − coupon
        taxable_amount: subtotal_after_coupon + shipping
        iva_amount: IVA on taxable_amount
        final_total: subtotal_after_coupon + shipping + IVA
    """

    items: List[PricedItem]
    subtotal_original: Decimal
    subtotal_with_discounts: Decimal
    seller_discounts: Decimal
    volume_discounts: Decimal
    coupon: Optional[CouponApplication] = None
    coupon_discount: Decimal = ZERO
    subtotal_after_coupon: Decimal
    total_discounts: Decimal
    shipping_cost: Decimal
    free_shipping: bool
    free_shipping_threshold: Optional[Decimal] = None
    taxable_amount: Decimal
    tax_rate: Decimal
    iva_amount: Decimal
    final_total: Decimal
    sellers: List[SellerBreakdown] = Field(default_factory=list)

    @property
    def volume_discounts_applied(self) -> bool:
        return self.volume_discounts > 0

    @property
    def billed_amount(self) -> Decimal:
        """Invoiced amount: products + IVA, without shipping"""
        return self.subtotal_after_coupon + self.iva_amount

    @property
    def total_quantity(self) -> int:
        return sum(item.quantity for item in self.items)

    def item_for(self, product_id: int) -> Optional[PricedItem]:
        return next((item for item in self.items if item.product_id == product_id), None)

    def to_dict(self) -> dict:
        """JSON friendly dict (Decimal → float) with computed fields"""
        data = self.model_dump()
        data['volume_discounts_applied'] = self.volume_discounts_applied
        data['billed_amount'] = float(self.billed_amount)
        return _decimals_to_float(data)


def _decimals_to_float(value):
    if isinstance(value, dict):
        return {k: _decimals_to_float(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_decimals_to_float(v) for v in value]
    if isinstance(value, Decimal):
        return float(value)
    return value
