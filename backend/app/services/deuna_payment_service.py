"""
DeUna Payment Service
Asynchronous flow: a pending payment is stored when the QR is generated
and the order is created when DeUna confirms through the webhook.

Author: TM3
Date: 2025-10-17
"""
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Sequence

from app.connectors.deuna_connector import DeunaConnector, map_status
from app.core.config import settings
from app.core.exceptions import (
    InvalidWebhookError,
    OrderAlreadyPlacedError,
    PaymentNotFoundError,
    WebhookNotConfiguredError,
    WebhookSignatureError,
)
from app.domain.payment import (
    ORDER_AFFECTING_STATUSES,
    DeunaPayment,
    PaymentMethod,
    PaymentStatus,
    can_transition,
    order_status_for,
)
from app.domain.pricing import CartLine, money
from app.repositories.order_repository import OrderRepository
from app.repositories.payment_repository import PaymentRepository
from app.services.order_builder import generate_order_number
from app.services.order_placement_service import OrderPlacementService, merge_lines
from app.services.price_verification_service import PriceVerificationService

logger = logging.getLogger(__name__)

PAYMENT_ID_KEYS = ('idTransaction', 'payment_id', 'idTransacionReference')

# webhook field → payment_details key
WEBHOOK_DETAIL_FIELDS = {
    'transferNumber': 'transfer_number',
    'branchId': 'branch_id',
    'posId': 'pos_id',
    'customerIdentification': 'customer_identification',
    'customerFullName': 'customer_full_name',
    'date': 'date',
    'internalTransactionReference': 'internal_transaction_reference',
}


def extract_payment_id(payload: Dict[str, Any]) -> Optional[str]:
    """Payment id from the top level of the webhook, then from `data`"""
    for source in (payload, payload.get('data') or {}):
        if not isinstance(source, dict):
            continue
        for key in PAYMENT_ID_KEYS:
            if source.get(key):
                return str(source[key])
    return None


def _field(payload: Dict[str, Any], key: str):
    if payload.get(key) is not None:
        return payload[key]
    data = payload.get('data')
    if isinstance(data, dict):
        return data.get(key)
    return None


class DeunaPaymentService:
    """
    DeUna payment orchestration

    create_payment stores the cart lines and coupon; handle_webhook
    re-prices them with the same calculator the Datafast flow uses.
    """

    def __init__(
        self,
        placement: Optional[OrderPlacementService] = None,
        connector: Optional[DeunaConnector] = None,
        payment_repository: Optional[PaymentRepository] = None,
        order_repository: Optional[OrderRepository] = None,
        verifier: Optional[PriceVerificationService] = None,
    ):
        self.placement = placement or OrderPlacementService()
        self.connector = connector or DeunaConnector()
        self.payments = payment_repository or PaymentRepository()
        self.orders = order_repository or OrderRepository()
        self.verifier = verifier or PriceVerificationService()

    async def create_payment(
        self,
        user_id: int,
        lines: Sequence[CartLine],
        shipping_data: Dict[str, Any],
        coupon_code: Optional[str] = None,
        client_totals: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Create a DeUna payment request for a cart

        Returns:
            Dict with payment_id, order_number, qr, deeplink, amount and totals
        """
        result, products, coupon = self.placement.price(user_id, lines, coupon_code)

        self.verifier.verify_item_prices(merge_lines(lines), result, user_id=user_id)
        self.verifier.verify_totals(client_totals, result, user_id=user_id)
        self.placement.validate_stock(lines, products)

        order_number = generate_order_number()
        request = await self.connector.create_payment_request(
            order_number,
            result.final_total,
            item_names=[item.product_name for item in result.items if item.product_name],
        )

        self.payments.create_deuna(DeunaPayment(
            payment_id=request['payment_id'],
            order_number=order_number,
            user_id=user_id,
            amount=result.final_total,
            items=[CartLine(product_id=line.product_id, quantity=line.quantity) for line in merge_lines(lines)],
            coupon_code=coupon.code if coupon else None,
            shipping_data=shipping_data,
            qr=request.get('qr'),
            deeplink=request.get('deeplink'),
        ))

        return {
            'payment_id': request['payment_id'],
            'order_number': order_number,
            'qr': request.get('qr'),
            'deeplink': request.get('deeplink'),
            'numeric_code': request.get('numeric_code'),
            'amount': float(result.final_total),
            'totals': result.to_dict(),
        }

    def _check_signature(self, raw_body: bytes, signature: Optional[str]) -> None:
        """
        Raises:
            WebhookSignatureError: Signature missing or invalid
            WebhookNotConfiguredError: No webhook secret outside debug mode
        """
        if not self.connector.webhook_secret:
            if not settings.API_DEBUG:
                logger.error("DeUna webhook received but DEUNA_WEBHOOK_SECRET is not configured")
                raise WebhookNotConfiguredError("Webhook is not properly configured")
            logger.warning("Accepting DeUna webhook without signature check (API_DEBUG)")
            return

        if not signature:
            logger.warning("Rejected DeUna webhook without signature")
            raise WebhookSignatureError("Webhook signature required")
        if not self.connector.verify_webhook_signature(raw_body, signature):
            logger.warning("Rejected DeUna webhook with invalid signature")
            raise WebhookSignatureError("Invalid webhook signature")

    async def handle_webhook(self, raw_body: bytes, signature: Optional[str], payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Process a DeUna webhook

        Args:
            raw_body: Body exactly as received (signature input)
            signature: Signature header value, if any
            payload: Parsed JSON body

        Returns:
            Dict with payment_id, status, order_id, created and message

        Raises:
            WebhookSignatureError: Signature missing or invalid
            WebhookNotConfiguredError: No webhook secret outside debug mode
            InvalidWebhookError: No payment identifier or status in the payload
            PaymentNotFoundError: Payment unknown to us
        """
        self._check_signature(raw_body, signature)

        payment_id = extract_payment_id(payload)
        if not payment_id:
            raise InvalidWebhookError("Webhook without payment identifier", details={'keys': sorted(payload.keys())})

        raw_status = _field(payload, 'status')
        if not raw_status:
            raise InvalidWebhookError("Webhook without payment status", details={'payment_id': payment_id})

        status = map_status(raw_status)
        logger.info(f"DeUna webhook for {payment_id}: status={raw_status} → {status}")

        payment = self.payments.find_deuna_by_payment_id(payment_id)
        if payment is None:
            raise PaymentNotFoundError(f"DeUna payment {payment_id} not found")

        transaction_id = _field(payload, 'transferNumber')
        transaction_id = str(transaction_id) if transaction_id is not None else None
        details = {
            target: _field(payload, source)
            for source, target in WEBHOOK_DETAIL_FIELDS.items()
            if _field(payload, source) is not None
        }

        if status == PaymentStatus.COMPLETED.value:
            return await self._complete(payment, transaction_id, details, _field(payload, 'amount'))
        return self._apply_status(payment, status, transaction_id)

    async def refresh_status(self, payment_id: str) -> Dict[str, Any]:
        """
        Ask DeUna for the payment status when the webhook did not arrive

        A completed payment goes through the same order creation as the
        webhook; other statuses are applied like a webhook event.

        Raises:
            PaymentNotFoundError: Payment unknown to us
            PaymentGatewayError: DeUna could not be queried
        """
        payment = self.payments.find_deuna_by_payment_id(payment_id)
        if payment is None:
            raise PaymentNotFoundError(f"DeUna payment {payment_id} not found")

        if payment.is_completed and payment.order_id:
            return {
                'payment_id': payment_id,
                'status': payment.status,
                'order_id': payment.order_id,
                'created': False,
                'message': 'Payment already completed',
            }

        remote = await self.connector.get_payment_status(payment_id)
        status = remote['status']
        logger.info(f"DeUna status for {payment_id}: {status}")

        if status == PaymentStatus.COMPLETED.value:
            return await self._complete(payment, None, {}, remote.get('amount'))
        return self._apply_status(payment, status, None)

    def _apply_status(self, payment: DeunaPayment, status: str, transaction_id: Optional[str]) -> Dict[str, Any]:
        """Record a non-completed status; only failures, cancellations and refunds reach an existing order"""
        payment_id = payment.payment_id

        if not can_transition(payment.status, status):
            logger.warning(f"Ignoring DeUna status {status} for {payment_id}: payment is {payment.status}")
            return {
                'payment_id': payment_id,
                'status': payment.status,
                'order_id': payment.order_id,
                'created': False,
                'message': f"Status {status} ignored, payment is {payment.status}",
            }

        self.payments.update_deuna_status(payment_id, status, transaction_id=transaction_id)

        existing = None
        if status in ORDER_AFFECTING_STATUSES:
            existing = self.orders.find_by_payment_id(payment_id)
            if existing is not None:
                self.orders.update_status(existing.id, order_status_for(status), payment_status=status)

        return {
            'payment_id': payment_id,
            'status': status,
            'order_id': existing.id if existing else None,
            'created': False,
            'message': f"Payment status updated to {status}",
        }

    async def _complete(
        self,
        payment: DeunaPayment,
        transaction_id: Optional[str],
        details: Dict[str, Any],
        reported_amount: Any,
    ) -> Dict[str, Any]:
        payment_id = payment.payment_id

        existing = self.orders.find_by_payment_id(payment_id)
        if existing is not None:
            self.payments.update_deuna_status(
                payment_id, PaymentStatus.COMPLETED.value, transaction_id=transaction_id, order_id=existing.id
            )
            logger.info(f"DeUna payment {payment_id} already has order {existing.order_number}")
            return self._already_processed(payment_id, existing)

        result, _, coupon = self.placement.price(
            payment.user_id, payment.items, payment.coupon_code, strict_coupon=False
        )

        if reported_amount is not None:
            try:
                if money(Decimal(str(reported_amount))) != result.final_total:
                    logger.warning(
                        f"DeUna payment {payment_id} reports amount {reported_amount}, "
                        f"recomputed total is {result.final_total}"
                    )
            except InvalidOperation:
                logger.warning(f"Unparseable DeUna amount {reported_amount!r} for {payment_id}")

        def mark_completed(conn, order_id):
            self.payments.update_deuna_status(
                payment_id,
                PaymentStatus.COMPLETED.value,
                transaction_id=transaction_id,
                order_id=order_id,
                conn=conn,
            )

        def lock_payment(conn):
            self.payments.find_deuna_by_payment_id(payment_id, conn=conn, for_update=True)

        try:
            order_id, order = self.placement.place_order(
                result,
                user_id=payment.user_id,
                payment_method=PaymentMethod.DEUNA.value,
                payment_id=payment_id,
                shipping_data=payment.shipping_data,
                coupon=coupon,
                order_number=payment.order_number,
                payment_details=details,
                on_created=mark_completed,
                lock_payment=lock_payment,
            )
        except OrderAlreadyPlacedError as e:
            return self._already_processed(payment_id, e.order)

        return {
            'payment_id': payment_id,
            'status': PaymentStatus.COMPLETED.value,
            'order_id': order_id,
            'created': True,
            'message': f"Order {order.order_number} created",
        }

    @staticmethod
    def _already_processed(payment_id: str, existing) -> Dict[str, Any]:
        return {
            'payment_id': payment_id,
            'status': PaymentStatus.COMPLETED.value,
            'order_id': existing.id,
            'created': False,
            'message': 'Order already exists for this payment',
        }
