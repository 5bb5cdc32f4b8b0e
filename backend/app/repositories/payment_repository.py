"""
Payment Repository - pending gateway payments

Datafast checkouts and DeUna payment requests are stored together with
the cart lines and coupon they were priced from, so the order can be
built from the same inputs once the gateway confirms.

Author: TM3
Date: 2025-10-17
"""
import logging
from typing import Optional
from psycopg2.extras import Json

from app.domain.payment import DatafastPayment, DeunaPayment
from app.core.database import get_db_connection_dict

logger = logging.getLogger(__name__)


def _lines_json(payment) -> Json:
    return Json([line.model_dump(mode='json') for line in payment.items])


class PaymentRepository:
    """Repository for datafast_payments and deuna_payments"""

    # Datafast

    def create_datafast(self, payment: DatafastPayment) -> None:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                INSERT INTO datafast_payments (
                    checkout_id, transaction_id, user_id, amount, currency, status,
                    items, coupon_code, shipping_data, created_at, updated_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, NOW(), NOW())
            """, (
                payment.checkout_id, payment.transaction_id, payment.user_id, payment.amount,
                payment.currency, payment.status, _lines_json(payment), payment.coupon_code,
                Json(payment.shipping_data),
            ))
            conn.commit()
            logger.info(f"Stored pending Datafast checkout {payment.checkout_id} for user {payment.user_id}")
        finally:
            cursor.close()
            conn.close()

    def find_datafast_by_checkout_id(self, checkout_id: str, conn=None, for_update: bool = False) -> Optional[DatafastPayment]:
        """
        Args:
            checkout_id: Datafast checkout ID
            conn: Open connection (optional)
            for_update: Lock the row until the surrounding transaction ends
        """
        should_close = conn is None
        if conn is None:
            conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            query = """
                SELECT checkout_id, transaction_id, user_id, amount, currency, status,
                       items, coupon_code, shipping_data, payment_id, result_code, order_id,
                       created_at, updated_at
                FROM datafast_payments
                WHERE checkout_id = %s
            """
            if for_update:
                query += " FOR UPDATE"
            cursor.execute(query, (checkout_id,))
            row = cursor.fetchone()
            if not row:
                return None
            data = dict(row)
            data['items'] = data.get('items') or []
            data['shipping_data'] = data.get('shipping_data') or {}
            return DatafastPayment(**data)
        finally:
            cursor.close()
            if should_close:
                conn.close()

    def update_datafast_status(
        self,
        checkout_id: str,
        status: str,
        result_code: Optional[str] = None,
        payment_id: Optional[str] = None,
        order_id: Optional[int] = None,
        conn=None,
    ) -> None:
        """
        Update a Datafast checkout after verification

        Fields passed as None keep their stored value.
        """
        should_close = conn is None
        if conn is None:
            conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                UPDATE datafast_payments
                SET status = %s,
                    result_code = COALESCE(%s, result_code),
                    payment_id = COALESCE(%s, payment_id),
                    order_id = COALESCE(%s, order_id),
                    updated_at = NOW()
                WHERE checkout_id = %s
            """, (status, result_code, payment_id, order_id, checkout_id))
            if should_close:
                conn.commit()
        finally:
            cursor.close()
            if should_close:
                conn.close()

    # DeUna

    def create_deuna(self, payment: DeunaPayment) -> None:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                INSERT INTO deuna_payments (
                    payment_id, order_number, user_id, amount, currency, status,
                    items, coupon_code, shipping_data, qr, deeplink, created_at, updated_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, NOW(), NOW())
            """, (
                payment.payment_id, payment.order_number, payment.user_id, payment.amount,
                payment.currency, payment.status, _lines_json(payment), payment.coupon_code,
                Json(payment.shipping_data), payment.qr, payment.deeplink,
            ))
            conn.commit()
            logger.info(f"Stored pending DeUna payment {payment.payment_id} for user {payment.user_id}")
        finally:
            cursor.close()
            conn.close()

    def find_deuna_by_payment_id(self, payment_id: str, conn=None, for_update: bool = False) -> Optional[DeunaPayment]:
        should_close = conn is None
        if conn is None:
            conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            query = """
                SELECT payment_id, order_number, user_id, amount, currency, status,
                       items, coupon_code, shipping_data, transaction_id, qr, deeplink,
                       order_id, created_at, updated_at
                FROM deuna_payments
                WHERE payment_id = %s
            """
            if for_update:
                query += " FOR UPDATE"
            cursor.execute(query, (payment_id,))
            row = cursor.fetchone()
            if not row:
                return None
            data = dict(row)
            data['items'] = data.get('items') or []
            data['shipping_data'] = data.get('shipping_data') or {}
            return DeunaPayment(**data)
        finally:
            cursor.close()
            if should_close:
                conn.close()

    def update_deuna_status(
        self,
        payment_id: str,
        status: str,
        transaction_id: Optional[str] = None,
        order_id: Optional[int] = None,
        conn=None,
    ) -> None:
        should_close = conn is None
        if conn is None:
            conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                UPDATE deuna_payments
                SET status = %s,
                    transaction_id = COALESCE(%s, transaction_id),
                    order_id = COALESCE(%s, order_id),
                    completed_at = CASE WHEN %s = 'completed' THEN NOW() ELSE completed_at END,
                    updated_at = NOW()
                WHERE payment_id = %s
            """, (status, transaction_id, order_id, status, payment_id))
            if should_close:
                conn.commit()
            logger.info(f"DeUna payment {payment_id} status → {status}")
        finally:
            cursor.close()
            if should_close:
                conn.close()
