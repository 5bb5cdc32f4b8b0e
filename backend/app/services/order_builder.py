"""
Order Builder
Turns a PricingResult into the OrderCreate that gets persisted.

Every gateway builds its order here so Datafast and DeUna orders for the
same cart carry the same breakdown.

Author: TM3
Date: 2025-10-17
"""
import secrets
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Union

from app.domain.order import Order, OrderCreate, OrderItemCreate, SellerOrderCreate
from app.domain.pricing import ZERO, PricingResult

ORDER_FIELDS = (
    'original_total', 'subtotal_products', 'seller_discount_savings', 'volume_discount_savings',
    'feedback_discount_code', 'feedback_discount_amount', 'feedback_discount_percentage',
    'total_discount_savings', 'volume_discounts_applied', 'shipping_cost', 'free_shipping',
    'free_shipping_threshold', 'taxable_amount', 'tax_rate', 'iva_amount', 'total',
)

ITEM_FIELDS = (
    'product_id', 'seller_id', 'quantity', 'original_price', 'price',
    'seller_discount_percentage', 'seller_discount_amount',
    'volume_discount_percentage', 'volume_discount_amount', 'subtotal',
)


def generate_order_number(now: Optional[datetime] = None) -> str:
    """ORD-<YYYYMMDDHHMMSS>-<6 hex>"""
    now = now or datetime.now()
    return f"ORD-{now.strftime('%Y%m%d%H%M%S')}-{secrets.token_hex(3).upper()}"


def seller_order_number(order_number: str, seller_id: int) -> str:
    return f"{order_number}-S{seller_id}"


def build_order(
    result: PricingResult,
    user_id: int,
    payment_method: str,
    payment_id: Optional[str],
    shipping_data: Optional[Dict[str, Any]] = None,
    order_number: Optional[str] = None,
    payment_details: Optional[Dict[str, Any]] = None,
) -> OrderCreate:
    """
    Build the order to persist from a pricing result

    Args:
        result: Server-side pricing of the cart
        user_id: Buyer
        payment_method: 'datafast' or 'deuna'
        payment_id: Gateway payment identifier
        shipping_data: Delivery address as submitted
        order_number: Reuse a reserved order number (DeUna); generated otherwise
        payment_details: Raw gateway metadata to keep with the order

    Returns:
        OrderCreate with items and seller orders
    """
    order_number = order_number or generate_order_number()

    items = [
        OrderItemCreate(
            product_id=item.product_id,
            seller_id=item.seller_id,
            product_name=item.product_name,
            quantity=item.quantity,
            original_price=item.original_price,
            price=item.final_price,
            seller_discount_percentage=item.seller_discount_percentage,
            seller_discount_amount=item.seller_discount_amount,
            volume_discount_percentage=item.volume_discount_percentage,
            volume_discount_amount=item.volume_discount_amount,
            subtotal=item.subtotal,
        )
        for item in result.items
    ]

    seller_orders = [
        SellerOrderCreate(
            seller_id=seller.seller_id,
            order_number=seller_order_number(order_number, seller.seller_id),
            subtotal=seller.subtotal,
            original_total=seller.original_total,
            seller_discounts=seller.seller_discounts,
            volume_discount_savings=seller.volume_discounts,
            volume_discounts_applied=seller.volume_discounts_applied,
            shipping_cost=seller.shipping_cost,
            payment_method=payment_method,
            product_ids=[item.product_id for item in seller.items],
        )
        for seller in result.sellers
    ]

    coupon = result.coupon
    return OrderCreate(
        order_number=order_number,
        user_id=user_id,
        seller_id=result.items[0].seller_id if result.items else None,
        payment_method=payment_method,
        payment_id=payment_id,
        original_total=result.subtotal_original,
        subtotal_products=result.subtotal_with_discounts,
        seller_discount_savings=result.seller_discounts,
        volume_discount_savings=result.volume_discounts,
        feedback_discount_code=coupon.code if coupon else None,
        feedback_discount_amount=result.coupon_discount,
        feedback_discount_percentage=coupon.discount_percentage if coupon else ZERO,
        total_discount_savings=result.total_discounts,
        volume_discounts_applied=result.volume_discounts_applied,
        shipping_cost=result.shipping_cost,
        free_shipping=result.free_shipping,
        free_shipping_threshold=result.free_shipping_threshold,
        taxable_amount=result.taxable_amount,
        tax_rate=result.tax_rate,
        iva_amount=result.iva_amount,
        total=result.final_total,
        shipping_data=shipping_data or {},
        payment_details=payment_details or {},
        items=items,
        seller_orders=seller_orders,
    )


def _normalize(value):
    if isinstance(value, Decimal):
        return value.normalize()
    return value


def breakdown_fields(order: Union[Order, OrderCreate]) -> Dict[str, Any]:
    """
    Comparable pricing fields of an order and its items

    Identifiers, timestamps and gateway data are left out, so two orders
    for the same cart paid through different gateways compare equal.
    """
    fields = {name: _normalize(getattr(order, name)) for name in ORDER_FIELDS}
    items = sorted(order.items, key=lambda i: i.product_id)
    fields['items'] = [
        {name: _normalize(getattr(item, name)) for name in ITEM_FIELDS}
        for item in items
    ]
    return fields
