"""
Reconciliation Service
Checks stored order breakdowns against a fresh calculation, and compares
two orders field by field (e.g. the same cart paid through Datafast and DeUna).

Author: TM3
Date: 2025-10-17
"""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel

from app.core.exceptions import OrderNotFoundError
from app.domain.order import Order, OrderCreate
from app.domain.payment import DiscountCode
from app.domain.pricing import CartLine, PricingConfig
from app.domain.product import Product
from app.repositories.configuration_repository import ConfigurationRepository
from app.repositories.order_repository import OrderRepository
from app.services.order_builder import breakdown_fields, build_order
from app.services.pricing_calculator import PricingCalculator

logger = logging.getLogger(__name__)


class Discrepancy(BaseModel):
    field: str
    stored: Any = None
    expected: Any = None

    def to_dict(self) -> dict:
        return {
            'field': self.field,
            'stored': float(self.stored) if isinstance(self.stored, Decimal) else self.stored,
            'expected': float(self.expected) if isinstance(self.expected, Decimal) else self.expected,
        }


def _flatten(fields: Dict[str, Any]) -> Dict[str, Any]:
    flat = {key: value for key, value in fields.items() if key != 'items'}
    for item in fields.get('items', []):
        for key, value in item.items():
            if key != 'product_id':
                flat[f"items[{item['product_id']}].{key}"] = value
    return flat


def compare_records(stored: Union[Order, OrderCreate], expected: Union[Order, OrderCreate]) -> List[Discrepancy]:
    """
    Compare the pricing breakdown of two orders

    Returns:
        One Discrepancy per differing field (empty when identical)
    """
    left = _flatten(breakdown_fields(stored))
    right = _flatten(breakdown_fields(expected))
    return [
        Discrepancy(field=key, stored=left.get(key), expected=right.get(key))
        for key in sorted(set(left) | set(right))
        if left.get(key) != right.get(key)
    ]


class ReconciliationService:
    """Recomputes stored orders and reports breakdown differences"""

    def __init__(
        self,
        order_repository: Optional[OrderRepository] = None,
        configuration_repository: Optional[ConfigurationRepository] = None,
    ):
        self.orders = order_repository or OrderRepository()
        self.configuration = configuration_repository or ConfigurationRepository()

    def stored_pricing_config(self, order: Order) -> PricingConfig:
        """
        Pricing configuration in force when the order was placed

        Tax rate, shipping cost and free shipping threshold come from the
        order; the live configuration only fills what the order doesn't keep.
        """
        config = self.configuration.get_pricing_config()
        threshold = order.free_shipping_threshold
        shipping_enabled = not (order.free_shipping and not threshold)

        updates = {'tax_rate': order.tax_rate, 'shipping_enabled': shipping_enabled}
        if shipping_enabled:
            if threshold is not None:
                updates['free_shipping_threshold'] = threshold
            if order.shipping_cost > 0:
                updates['default_shipping_cost'] = order.shipping_cost
        return config.model_copy(update=updates)

    def expected_order(self, order: Order) -> OrderCreate:
        """
        Recalculate an order from its own items

        Uses the prices, seller and volume discounts stored on the items,
        the coupon stored on the order and the order's tax and shipping
        settings, so catalog or configuration changes after the purchase
        don't show up as differences.
        """
        products = {
            item.product_id: Product(
                id=item.product_id,
                seller_id=item.seller_id,
                name=item.product_name or f"Product {item.product_id}",
                price=item.original_price,
                discount_percentage=item.seller_discount_percentage,
                stock=item.quantity,
            )
            for item in order.items
        }
        lines = [CartLine(product_id=item.product_id, quantity=item.quantity) for item in order.items]

        coupon = None
        if order.feedback_discount_code and order.feedback_discount_percentage > 0:
            coupon = DiscountCode(
                id=0,
                code=order.feedback_discount_code,
                discount_percentage=order.feedback_discount_percentage,
            )

        volume_percentages = {item.product_id: item.volume_discount_percentage for item in order.items}
        result = PricingCalculator(self.stored_pricing_config(order)).calculate(
            lines, products, coupon, volume_percentages=volume_percentages
        )

        return build_order(
            result,
            user_id=order.user_id,
            payment_method=order.payment_method or 'unknown',
            payment_id=order.payment_id,
            order_number=order.order_number,
        )

    def compare(self, order_id: int) -> List[Discrepancy]:
        """
        Compare a stored order with its recalculated breakdown

        Raises:
            OrderNotFoundError: No order with that ID
        """
        order = self.orders.find_by_id(order_id)
        if order is None:
            raise OrderNotFoundError(f"Order {order_id} not found")

        discrepancies = compare_records(order, self.expected_order(order))
        if discrepancies:
            logger.warning(
                f"Order {order.order_number} has {len(discrepancies)} breakdown discrepancies: "
                f"{[d.field for d in discrepancies]}"
            )
        else:
            logger.info(f"Order {order.order_number} breakdown is consistent")
        return discrepancies
