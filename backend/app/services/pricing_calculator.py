"""
Pricing Calculator
Single source of truth for cart totals (seller discount, volume discount,
coupon, shipping, IVA). Both gateways price carts through this class.

Author: TM3
Date: 2025-10-17
"""
import logging
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from app.core.exceptions import InvalidCartError
from app.domain.pricing import (
    ZERO,
    CartLine,
    CouponApplication,
    PricedItem,
    PricingConfig,
    PricingResult,
    SellerBreakdown,
    money,
    percent_of,
)
from app.domain.product import Product
from app.domain.payment import DiscountCode

logger = logging.getLogger(__name__)


class PricingCalculator:
    """
    Computes a PricingResult for a cart

    Calculation order:
    1. Seller discount (per product)
    2. Volume discount on the seller-discounted price (per line quantity)
    3. Coupon over the discounted subtotal
    4. Shipping on the subtotal after coupon
    5. IVA on (subtotal after coupon + shipping)
    """

    def __init__(self, config: Optional[PricingConfig] = None):
        self.config = config or PricingConfig()

    def volume_discount_percentage(self, quantity: int) -> Decimal:
        """
        Get the volume discount for a line quantity

        The tier with the highest `quantity` not above the line quantity wins.

        Returns:
            Discount percentage (0 when no tier applies or tiers are disabled)
        """
        if not self.config.volume_discounts_enabled:
            return ZERO

        for tier in sorted(self.config.volume_tiers, key=lambda t: t.quantity, reverse=True):
            if quantity >= tier.quantity:
                return Decimal(tier.discount)
        return ZERO

    def _volume_tier_label(self, quantity: int) -> Optional[str]:
        if not self.config.volume_discounts_enabled:
            return None
        for tier in sorted(self.config.volume_tiers, key=lambda t: t.quantity, reverse=True):
            if quantity >= tier.quantity:
                return tier.label
        return None

    def price_item(self, product: Product, quantity: int, volume_percentage: Optional[Decimal] = None) -> PricedItem:
        """
        Price one cart line

        Volume discount is applied on the unrounded seller-discounted price;
        each reported amount is rounded to cents on its own. A given
        `volume_percentage` replaces the tier lookup (re-pricing a stored order).
        """
        price = Decimal(product.price)
        seller_pct = Decimal(product.discount_percentage or 0)

        seller_discount = percent_of(price, seller_pct)
        seller_discounted = price - seller_discount

        if volume_percentage is None:
            volume_pct = self.volume_discount_percentage(quantity)
        else:
            volume_pct = Decimal(volume_percentage)
        volume_discount = percent_of(seller_discounted, volume_pct)

        final_price = money(seller_discounted - volume_discount)

        return PricedItem(
            product_id=product.id,
            seller_id=product.seller_id,
            product_name=product.name,
            quantity=quantity,
            original_price=money(price),
            seller_discount_percentage=seller_pct,
            seller_discounted_price=money(seller_discounted),
            volume_discount_percentage=volume_pct,
            volume_discount_label=self._volume_tier_label(quantity) if volume_pct > 0 else None,
            final_price=final_price,
            seller_discount_amount=money(seller_discount),
            volume_discount_amount=money(volume_discount),
            total_discount_amount=money(seller_discount + volume_discount),
            subtotal=final_price * quantity,
        )

    def calculate(
        self,
        lines: Sequence[CartLine],
        products: Dict[int, Product],
        coupon: Optional[DiscountCode] = None,
        volume_percentages: Optional[Dict[int, Decimal]] = None,
    ) -> PricingResult:
        """
        Calculate complete cart totals

        Args:
            lines: Cart lines (product_id + quantity)
            products: Products keyed by ID, loaded from the catalog
            coupon: Already validated discount code (optional)
            volume_percentages: Fixed volume discount per product ID instead of the tiers

        Returns:
            PricingResult with per-item and order-level breakdown

        Raises:
            InvalidCartError: Empty cart, bad quantity, unknown or inactive product
        """
        if not lines:
            raise InvalidCartError("Cart is empty")

        items: List[PricedItem] = []
        for line in lines:
            if line.quantity <= 0:
                raise InvalidCartError(
                    f"Invalid quantity for product {line.product_id}: {line.quantity}",
                    details={'product_id': line.product_id, 'quantity': line.quantity},
                )
            product = products.get(line.product_id)
            if product is None:
                raise InvalidCartError(
                    f"Product {line.product_id} not found",
                    details={'product_id': line.product_id},
                )
            if not product.is_active:
                raise InvalidCartError(
                    f"Product {line.product_id} is not available",
                    details={'product_id': line.product_id},
                )
            volume_pct = (volume_percentages or {}).get(line.product_id)
            items.append(self.price_item(product, line.quantity, volume_pct))

        subtotal_original = money(sum((i.original_price * i.quantity for i in items), ZERO))
        subtotal_with_discounts = money(sum((i.subtotal for i in items), ZERO))
        seller_discounts = money(sum((i.seller_discount_amount * i.quantity for i in items), ZERO))
        volume_discounts = money(sum((i.volume_discount_amount * i.quantity for i in items), ZERO))

        coupon_application = None
        coupon_discount = ZERO
        if coupon is not None:
            coupon_discount = money(percent_of(subtotal_with_discounts, coupon.discount_percentage))
            coupon_application = CouponApplication(
                code=coupon.code,
                discount_percentage=Decimal(coupon.discount_percentage),
                discount_amount=coupon_discount,
            )
        subtotal_after_coupon = money(subtotal_with_discounts - coupon_discount)

        shipping_cost, free_shipping, threshold = self.shipping_for(subtotal_after_coupon)

        taxable_amount = money(subtotal_after_coupon + shipping_cost)
        tax_rate = Decimal(self.config.tax_rate)
        iva_amount = money(percent_of(taxable_amount, tax_rate))

        final_total = money(subtotal_after_coupon + shipping_cost + iva_amount)
        total_discounts = money(seller_discounts + volume_discounts + coupon_discount)

        result = PricingResult(
            items=items,
            subtotal_original=subtotal_original,
            subtotal_with_discounts=subtotal_with_discounts,
            seller_discounts=seller_discounts,
            volume_discounts=volume_discounts,
            coupon=coupon_application,
            coupon_discount=coupon_discount,
            subtotal_after_coupon=subtotal_after_coupon,
            total_discounts=total_discounts,
            shipping_cost=shipping_cost,
            free_shipping=free_shipping,
            free_shipping_threshold=threshold,
            taxable_amount=taxable_amount,
            tax_rate=tax_rate,
            iva_amount=iva_amount,
            final_total=final_total,
            sellers=self.group_by_seller(items, shipping_cost),
        )

        logger.info(
            f"Priced cart: {len(items)} items, subtotal={subtotal_with_discounts}, "
            f"coupon={coupon_discount}, shipping={shipping_cost}, iva={iva_amount}, total={final_total}"
        )
        return result

    def shipping_for(self, subtotal: Decimal):
        """
        Shipping for a subtotal (after coupon)

        Returns:
            Tuple of (shipping_cost, free_shipping, free_shipping_threshold)
        """
        if not self.config.shipping_enabled:
            return ZERO, True, ZERO

        threshold = money(self.config.free_shipping_threshold)
        if subtotal >= threshold:
            return ZERO, True, threshold
        return money(self.config.default_shipping_cost), False, threshold

    @staticmethod
    def group_by_seller(items: Sequence[PricedItem], shipping_cost: Decimal) -> List[SellerBreakdown]:
        """
        Group priced items by seller and split shipping evenly

        Sellers keep first-appearance order; leftover cents of the split go
        to the first seller so shares add up to the order shipping.
        """
        grouped: Dict[int, List[PricedItem]] = {}
        for item in items:
            grouped.setdefault(item.seller_id, []).append(item)

        if not grouped:
            return []

        share = money(Decimal(shipping_cost) / len(grouped))
        if share * len(grouped) > shipping_cost:
            share -= Decimal('0.01')
        remainder = money(Decimal(shipping_cost) - share * len(grouped))

        sellers = []
        for index, (seller_id, seller_items) in enumerate(grouped.items()):
            sellers.append(SellerBreakdown(
                seller_id=seller_id,
                items=seller_items,
                subtotal=money(sum((i.subtotal for i in seller_items), ZERO)),
                original_total=money(sum((i.original_price * i.quantity for i in seller_items), ZERO)),
                seller_discounts=money(sum((i.seller_discount_amount * i.quantity for i in seller_items), ZERO)),
                volume_discounts=money(sum((i.volume_discount_amount * i.quantity for i in seller_items), ZERO)),
                shipping_cost=share + remainder if index == 0 else share,
            ))
        return sellers
