"""
Order Placement Service
Pricing inputs and the order transaction shared by every payment gateway

Handles:
- Loading products and the runtime pricing configuration
- Coupon validation
- Stock validation
- The single DB transaction that creates the order

Author: TM3
Date: 2025-10-17
"""
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from app.core.database import transaction
from app.core.exceptions import InsufficientStockError, InvalidDiscountCodeError, OrderAlreadyPlacedError
from app.domain.order import OrderCreate
from app.domain.payment import DiscountCode
from app.domain.pricing import CartLine, PricingResult
from app.domain.product import Product
from app.repositories.cart_repository import CartRepository
from app.repositories.configuration_repository import ConfigurationRepository
from app.repositories.discount_code_repository import DiscountCodeRepository
from app.repositories.order_repository import OrderRepository
from app.repositories.product_repository import ProductRepository
from app.services.order_builder import build_order
from app.services.pricing_calculator import PricingCalculator

logger = logging.getLogger(__name__)


def merge_lines(lines: Sequence[CartLine]) -> List[CartLine]:
    """Merge repeated products into one line (quantities added, first client price kept)"""
    merged: Dict[int, CartLine] = {}
    for line in lines:
        if line.product_id in merged:
            existing = merged[line.product_id]
            merged[line.product_id] = existing.model_copy(update={'quantity': existing.quantity + line.quantity})
        else:
            merged[line.product_id] = line
    return list(merged.values())


class OrderPlacementService:
    """
    Shared pricing and persistence for the Datafast and DeUna flows

    Both gateways price with the same calculator and persist through
    place_order, so their stored breakdowns can't drift apart.
    """

    def __init__(
        self,
        product_repository: Optional[ProductRepository] = None,
        order_repository: Optional[OrderRepository] = None,
        discount_code_repository: Optional[DiscountCodeRepository] = None,
        configuration_repository: Optional[ConfigurationRepository] = None,
        cart_repository: Optional[CartRepository] = None,
        transaction_factory: Callable = transaction,
    ):
        self.products = product_repository or ProductRepository()
        self.orders = order_repository or OrderRepository()
        self.discount_codes = discount_code_repository or DiscountCodeRepository()
        self.configuration = configuration_repository or ConfigurationRepository()
        self.carts = cart_repository or CartRepository()
        self.transaction = transaction_factory

    def calculator(self) -> PricingCalculator:
        return PricingCalculator(self.configuration.get_pricing_config())

    def resolve_coupon(self, code: Optional[str], user_id: int, strict: bool = True) -> Optional[DiscountCode]:
        """
        Look up a coupon for a user

        Args:
            code: Coupon code (None/empty → no coupon)
            user_id: Shopper redeeming it
            strict: When False (payment already taken with this coupon) a
                used/expired code is still applied so the order matches the charge

        Raises:
            InvalidDiscountCodeError: Unknown code, or invalid for this user in strict mode
        """
        if not code:
            return None

        discount_code = self.discount_codes.find_by_code(code.strip())
        if discount_code is None:
            raise InvalidDiscountCodeError(f"Discount code '{code}' not found", details={'code': code})

        if not discount_code.is_valid_for(user_id):
            if strict:
                reason = 'used' if discount_code.is_used else 'expired' if discount_code.is_expired else 'not yours'
                raise InvalidDiscountCodeError(
                    f"Discount code '{code}' is not valid ({reason})",
                    details={'code': code, 'reason': reason},
                )
            logger.warning(f"Applying no longer valid coupon {code} for user {user_id}: payment already taken")

        return discount_code

    def price(
        self,
        user_id: int,
        lines: Sequence[CartLine],
        coupon_code: Optional[str] = None,
        strict_coupon: bool = True,
    ) -> Tuple[PricingResult, Dict[int, Product], Optional[DiscountCode]]:
        """
        Price a cart from current catalog data

        Returns:
            Tuple of (PricingResult, products by ID, coupon)
        """
        lines = merge_lines(lines)
        products = self.products.find_by_ids(line.product_id for line in lines)
        coupon = self.resolve_coupon(coupon_code, user_id, strict=strict_coupon)
        result = self.calculator().calculate(lines, products, coupon)
        return result, products, coupon

    @staticmethod
    def validate_stock(lines: Sequence[CartLine], products: Dict[int, Product]) -> None:
        """
        Raises:
            InsufficientStockError: A line asks for more units than available
        """
        shortages = []
        for line in merge_lines(lines):
            product = products.get(line.product_id)
            if product is not None and not product.has_stock_for(line.quantity):
                shortages.append({
                    'product_id': line.product_id,
                    'requested': line.quantity,
                    'available': product.stock,
                })
        if shortages:
            raise InsufficientStockError("Insufficient stock", details={'items': shortages})

    def place_order(
        self,
        result: PricingResult,
        user_id: int,
        payment_method: str,
        payment_id: Optional[str],
        shipping_data: Optional[Dict[str, Any]] = None,
        coupon: Optional[DiscountCode] = None,
        order_number: Optional[str] = None,
        payment_details: Optional[Dict[str, Any]] = None,
        on_created: Optional[Callable[[Any, int], None]] = None,
        lock_payment: Optional[Callable[[Any], Any]] = None,
    ) -> Tuple[int, OrderCreate]:
        """
        Persist an order in one transaction

        `lock_payment(conn)` locks the gateway's pending payment row first,
        then the order for `payment_id` is looked up again on the locked
        connection, so overlapping confirmations of one payment create a
        single order. After that the order is created with items and seller
        orders, units are taken out of stock, the coupon is marked as used,
        `on_created(conn, order_id)` runs (gateway bookkeeping) and the
        buyer's cart is cleared. Any failure rolls everything back.

        Returns:
            Tuple of (order_id, OrderCreate that was persisted)

        Raises:
            OrderAlreadyPlacedError: The payment already has an order
        """
        order = build_order(
            result,
            user_id=user_id,
            payment_method=payment_method,
            payment_id=payment_id,
            shipping_data=shipping_data,
            order_number=order_number,
            payment_details=payment_details,
        )

        try:
            with self.transaction() as conn:
                if lock_payment is not None:
                    lock_payment(conn)
                if payment_id:
                    existing = self.orders.find_by_payment_id(payment_id, conn=conn)
                    if existing is not None:
                        raise OrderAlreadyPlacedError(
                            f"Payment {payment_id} already has order {existing.order_number}",
                            order=existing,
                        )

                order_id = self.orders.create(order, conn=conn)

                for item in order.items:
                    self.products.decrement_stock(item.product_id, item.quantity, conn=conn)

                if coupon is not None and not self.discount_codes.mark_used(coupon, user_id, conn=conn):
                    logger.warning(f"Coupon {coupon.code} was already marked as used (order {order.order_number})")

                if on_created is not None:
                    on_created(conn, order_id)

                self.carts.clear(user_id, conn=conn)
        except OrderAlreadyPlacedError:
            logger.info(f"Order for {payment_method} payment {payment_id} was placed by another request")
            raise
        except Exception as e:
            logger.error(f"Failed to persist order {order.order_number} ({payment_method} {payment_id}): {e}")
            raise

        logger.info(
            f"Order {order.order_number} (id={order_id}) placed via {payment_method}: "
            f"total={order.total}, iva={order.iva_amount}, shipping={order.shipping_cost}"
        )
        return order_id, order
