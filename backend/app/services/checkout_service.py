"""
Checkout Service - Datafast card payments
Synchronous flow: the order is created in the same request that verifies
the payment.

Author: TM3
Date: 2025-10-17
"""
import logging
import secrets
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Sequence

from app.connectors.datafast_connector import DatafastConnector
from app.core.exceptions import (
    AmountMismatchError,
    OrderAlreadyPlacedError,
    PaymentNotCompletedError,
    PaymentNotFoundError,
    PaymentVerificationError,
)
from app.domain.payment import DatafastPayment, PaymentMethod, PaymentStatus
from app.domain.pricing import CartLine, PricingResult, money
from app.repositories.order_repository import OrderRepository
from app.repositories.payment_repository import PaymentRepository
from app.services.order_placement_service import OrderPlacementService, merge_lines
from app.services.price_verification_service import PriceVerificationService

logger = logging.getLogger(__name__)


def generate_transaction_id(user_id: int) -> str:
    return f"TXN_{user_id}_{datetime.now().strftime('%Y%m%d%H%M%S')}_{secrets.token_hex(4)}"


def customer_from_shipping(user_id: int, shipping_data: Dict[str, Any]) -> Dict[str, Any]:
    """Datafast customer block from the checkout shipping form"""
    name_parts = (shipping_data.get('name') or '').split()
    return {
        'id': str(user_id),
        'given_name': shipping_data.get('given_name') or (name_parts[0] if name_parts else None),
        'middle_name': shipping_data.get('middle_name'),
        'surname': shipping_data.get('surname') or (' '.join(name_parts[1:]) if len(name_parts) > 1 else None),
        'email': shipping_data.get('email'),
        'phone': shipping_data.get('phone'),
        'doc_id': shipping_data.get('identification') or shipping_data.get('doc_id'),
        'ip': shipping_data.get('ip'),
    }


class CheckoutService:
    """
    Datafast checkout orchestration

    1. quote: price a cart (no side effects)
    2. start_checkout: price, verify client values, create Datafast checkout
    3. complete_checkout: verify payment, re-price, create order
    """

    def __init__(
        self,
        placement: Optional[OrderPlacementService] = None,
        connector: Optional[DatafastConnector] = None,
        payment_repository: Optional[PaymentRepository] = None,
        order_repository: Optional[OrderRepository] = None,
        verifier: Optional[PriceVerificationService] = None,
    ):
        self.placement = placement or OrderPlacementService()
        self.connector = connector or DatafastConnector()
        self.payments = payment_repository or PaymentRepository()
        self.orders = order_repository or OrderRepository()
        self.verifier = verifier or PriceVerificationService()

    def quote(self, user_id: int, lines: Sequence[CartLine], coupon_code: Optional[str] = None) -> PricingResult:
        """Price a cart without side effects"""
        result, _, _ = self.placement.price(user_id, lines, coupon_code)
        return result

    async def start_checkout(
        self,
        user_id: int,
        lines: Sequence[CartLine],
        shipping_data: Dict[str, Any],
        coupon_code: Optional[str] = None,
        client_totals: Optional[Dict[str, Any]] = None,
        customer: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Create a Datafast checkout for a cart

        Args:
            user_id: Buyer
            lines: Cart lines, optionally with the unit prices the shopper saw
            shipping_data: Delivery address and contact data
            coupon_code: Optional discount code
            client_totals: Totals the shopper saw (anti-tampering)
            customer: Datafast customer block (derived from shipping_data if omitted)

        Returns:
            Dict with checkout_id, widget_url, transaction_id, amount and totals
        """
        result, products, coupon = self.placement.price(user_id, lines, coupon_code)

        self.verifier.verify_item_prices(merge_lines(lines), result, user_id=user_id)
        self.verifier.verify_totals(client_totals, result, user_id=user_id)
        self.placement.validate_stock(lines, products)

        transaction_id = generate_transaction_id(user_id)
        params = self.connector.build_checkout_params(
            amount=result.final_total,
            taxable_amount=result.taxable_amount,
            iva_amount=result.iva_amount,
            transaction_id=transaction_id,
            customer=customer or customer_from_shipping(user_id, shipping_data),
            shipping=shipping_data,
            billing=shipping_data.get('billing'),
            items=[
                {'name': item.product_name, 'price': item.final_price, 'quantity': item.quantity}
                for item in result.items
            ],
        )
        checkout = await self.connector.create_checkout(params)

        self.payments.create_datafast(DatafastPayment(
            checkout_id=checkout['checkout_id'],
            transaction_id=transaction_id,
            user_id=user_id,
            amount=result.final_total,
            items=[CartLine(product_id=line.product_id, quantity=line.quantity) for line in merge_lines(lines)],
            coupon_code=coupon.code if coupon else None,
            shipping_data=shipping_data,
        ))

        logger.info(
            f"Datafast checkout {checkout['checkout_id']} started for user {user_id}: "
            f"total={result.final_total}"
        )
        return {
            'checkout_id': checkout['checkout_id'],
            'widget_url': checkout['widget_url'],
            'transaction_id': transaction_id,
            'amount': float(result.final_total),
            'totals': result.to_dict(),
        }

    async def complete_checkout(self, resource_path: str, checkout_id: str) -> Dict[str, Any]:
        """
        Verify a Datafast payment and create the order

        Idempotent: a checkout that already produced an order returns it.

        Raises:
            PaymentNotFoundError: Unknown checkout
            PaymentNotCompletedError: Checkout exists but nothing was paid
            PaymentVerificationError: Datafast rejected the transaction
            AmountMismatchError: Charged amount differs from the recomputed total
        """
        payment = self.payments.find_datafast_by_checkout_id(checkout_id)
        if payment is None:
            raise PaymentNotFoundError(f"Datafast checkout {checkout_id} not found")

        existing = self.orders.find_by_payment_id(checkout_id)
        if existing is not None:
            logger.info(f"Datafast checkout {checkout_id} already has order {existing.order_number}")
            return self._already_processed(existing)

        verification = await self.connector.verify_payment(resource_path)
        result_code = verification['result_code']

        if verification['status'] == 'pending':
            raise PaymentNotCompletedError(
                "Checkout was created but no payment was completed",
                details={'result_code': result_code},
            )
        if verification['status'] != 'success':
            self.payments.update_datafast_status(checkout_id, PaymentStatus.FAILED.value, result_code=result_code)
            logger.warning(f"Datafast rejected checkout {checkout_id}: {result_code} {verification['description']}")
            raise PaymentVerificationError(
                verification['description'] or "Payment was not approved",
                details={'result_code': result_code},
            )

        result, _, coupon = self.placement.price(
            payment.user_id, payment.items, payment.coupon_code, strict_coupon=False
        )

        paid = self._paid_amount(verification.get('amount'), payment.amount)
        if paid != result.final_total:
            logger.error(
                f"Amount mismatch on Datafast checkout {checkout_id}: paid={paid}, "
                f"recomputed={result.final_total}"
            )
            self.payments.update_datafast_status(checkout_id, PaymentStatus.FAILED.value, result_code=result_code)
            raise AmountMismatchError(
                "Charged amount does not match the order total",
                details={'paid': float(paid), 'expected': float(result.final_total)},
            )

        gateway_payment_id = verification.get('payment_id')

        def mark_completed(conn, order_id):
            self.payments.update_datafast_status(
                checkout_id,
                PaymentStatus.COMPLETED.value,
                result_code=result_code,
                payment_id=gateway_payment_id,
                order_id=order_id,
                conn=conn,
            )

        def lock_checkout(conn):
            self.payments.find_datafast_by_checkout_id(checkout_id, conn=conn, for_update=True)

        try:
            order_id, order = self.placement.place_order(
                result,
                user_id=payment.user_id,
                payment_method=PaymentMethod.DATAFAST.value,
                payment_id=checkout_id,
                shipping_data=payment.shipping_data,
                coupon=coupon,
                payment_details={
                    'result_code': result_code,
                    'gateway_payment_id': gateway_payment_id,
                    'payment_brand': verification.get('payment_brand'),
                    'transaction_id': payment.transaction_id,
                },
                on_created=mark_completed,
                lock_payment=lock_checkout,
            )
        except OrderAlreadyPlacedError as e:
            return self._already_processed(e.order)

        return {
            'order_id': order_id,
            'order_number': order.order_number,
            'total': float(order.total),
            'created': True,
            'message': 'Payment verified and order created',
        }

    @staticmethod
    def _already_processed(existing) -> Dict[str, Any]:
        return {
            'order_id': existing.id,
            'order_number': existing.order_number,
            'total': float(existing.total),
            'created': False,
            'message': 'Order already processed',
        }

    @staticmethod
    def _paid_amount(reported, stored: Decimal) -> Decimal:
        """Amount Datafast reports as charged, falling back to the stored checkout amount"""
        if reported in (None, ''):
            return money(stored)
        try:
            return money(Decimal(str(reported)))
        except InvalidOperation:
            logger.warning(f"Unparseable Datafast amount {reported!r}, using stored amount {stored}")
            return money(stored)
