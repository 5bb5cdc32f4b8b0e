"""
Order Repository - Data Access Layer for Orders

Persists orders with their items and seller orders, and reads them back
as Order domain models.

Author: TM3
Date: 2025-10-17
"""
import logging
from typing import Dict, List, Optional
from psycopg2.extras import Json

from app.domain.order import Order, OrderItem, OrderCreate
from app.core.database import get_db_connection_dict

logger = logging.getLogger(__name__)

ORDER_COLUMNS = """
    id, order_number, user_id, seller_id, status, payment_status, payment_method, payment_id,
    original_total, subtotal_products, seller_discount_savings, volume_discount_savings,
    feedback_discount_code, feedback_discount_amount, feedback_discount_percentage,
    total_discount_savings, volume_discounts_applied, shipping_cost, free_shipping,
    free_shipping_threshold, taxable_amount, tax_rate, iva_amount, total,
    shipping_data, payment_details, created_at, updated_at
"""

ITEM_COLUMNS = """
    id, order_id, seller_order_id, product_id, seller_id, product_name, quantity,
    original_price, price, seller_discount_percentage, seller_discount_amount,
    volume_discount_percentage, volume_discount_amount, subtotal
"""


class OrderRepository:
    """
    Repository for Order data access

    All SQL queries for orders, order items and seller orders live here.
    """

    def create(self, order: OrderCreate, conn) -> int:
        """
        Insert an order with its seller orders and items

        Runs on the caller's connection; committing is up to the caller.

        Args:
            order: Order built by the order builder
            conn: Open connection inside the checkout transaction

        Returns:
            New order ID
        """
        cursor = conn.cursor()

        try:
            cursor.execute("""
                INSERT INTO orders (
                    order_number, user_id, seller_id, status, payment_status, payment_method, payment_id,
                    original_total, subtotal_products, seller_discount_savings, volume_discount_savings,
                    feedback_discount_code, feedback_discount_amount, feedback_discount_percentage,
                    total_discount_savings, volume_discounts_applied, shipping_cost, free_shipping,
                    free_shipping_threshold, taxable_amount, tax_rate, iva_amount, total,
                    shipping_data, payment_details, created_at, updated_at
                ) VALUES (
                    %s, %s, %s, %s, %s, %s, %s,
                    %s, %s, %s, %s,
                    %s, %s, %s,
                    %s, %s, %s, %s,
                    %s, %s, %s, %s, %s,
                    %s, %s, NOW(), NOW()
                )
                RETURNING id
            """, (
                order.order_number, order.user_id, order.seller_id, order.status,
                order.payment_status, order.payment_method, order.payment_id,
                order.original_total, order.subtotal_products, order.seller_discount_savings,
                order.volume_discount_savings,
                order.feedback_discount_code, order.feedback_discount_amount,
                order.feedback_discount_percentage,
                order.total_discount_savings, order.volume_discounts_applied, order.shipping_cost,
                order.free_shipping,
                order.free_shipping_threshold, order.taxable_amount, order.tax_rate,
                order.iva_amount, order.total,
                Json(order.shipping_data), Json(order.payment_details),
            ))
            order_id = cursor.fetchone()['id']

            seller_order_ids: Dict[int, int] = {}
            for seller_order in order.seller_orders:
                cursor.execute("""
                    INSERT INTO seller_orders (
                        order_id, seller_id, order_number, status, payment_status, payment_method,
                        total, original_total, seller_discount_savings, volume_discount_savings,
                        volume_discounts_applied, shipping_cost, created_at, updated_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, NOW(), NOW())
                    RETURNING id
                """, (
                    order_id, seller_order.seller_id, seller_order.order_number,
                    seller_order.status, seller_order.payment_status, seller_order.payment_method,
                    seller_order.subtotal, seller_order.original_total, seller_order.seller_discounts,
                    seller_order.volume_discount_savings, seller_order.volume_discounts_applied,
                    seller_order.shipping_cost,
                ))
                seller_order_ids[seller_order.seller_id] = cursor.fetchone()['id']

            for item in order.items:
                cursor.execute("""
                    INSERT INTO order_items (
                        order_id, seller_order_id, product_id, seller_id, product_name, quantity,
                        original_price, price, seller_discount_percentage, seller_discount_amount,
                        volume_discount_percentage, volume_discount_amount, subtotal,
                        created_at, updated_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, NOW(), NOW())
                """, (
                    order_id, seller_order_ids.get(item.seller_id), item.product_id, item.seller_id,
                    item.product_name, item.quantity,
                    item.original_price, item.price, item.seller_discount_percentage,
                    item.seller_discount_amount,
                    item.volume_discount_percentage, item.volume_discount_amount, item.subtotal,
                ))

            logger.info(
                f"Created order {order.order_number} (id={order_id}) with {len(order.items)} items "
                f"and {len(order.seller_orders)} seller orders"
            )
            return order_id

        finally:
            cursor.close()

    def _load_items(self, cursor, order_id: int) -> List[OrderItem]:
        cursor.execute(f"SELECT {ITEM_COLUMNS} FROM order_items WHERE order_id = %s ORDER BY id", (order_id,))
        return [OrderItem(**row) for row in cursor.fetchall()]

    @staticmethod
    def _map_row_to_order(row: dict, items: List[OrderItem]) -> Order:
        order_dict = dict(row)
        order_dict['shipping_data'] = order_dict.get('shipping_data') or {}
        order_dict['payment_details'] = order_dict.get('payment_details') or {}
        order_dict['items'] = items
        return Order(**order_dict)

    def find_by_id(self, order_id: int) -> Optional[Order]:
        """
        Find order by ID with its items

        Args:
            order_id: Internal order ID

        Returns:
            Order or None if not found
        """
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"SELECT {ORDER_COLUMNS} FROM orders WHERE id = %s", (order_id,))
            row = cursor.fetchone()
            if not row:
                return None
            return self._map_row_to_order(row, self._load_items(cursor, order_id))
        finally:
            cursor.close()
            conn.close()

    def find_by_payment_id(self, payment_id: str, conn=None) -> Optional[Order]:
        """
        Find the order created for a gateway payment (idempotency check)

        Args:
            payment_id: Datafast checkout ID or DeUna transaction ID
            conn: Open connection (optional)
        """
        should_close = conn is None
        if conn is None:
            conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(
                f"SELECT {ORDER_COLUMNS} FROM orders WHERE payment_id = %s ORDER BY id LIMIT 1",
                (payment_id,),
            )
            row = cursor.fetchone()
            if not row:
                return None
            return self._map_row_to_order(row, self._load_items(cursor, row['id']))
        finally:
            cursor.close()
            if should_close:
                conn.close()

    def update_status(self, order_id: int, status: str, payment_status: Optional[str] = None, conn=None) -> None:
        """
        Update order (and its seller orders) status

        Args:
            order_id: Order to update
            status: New order status
            payment_status: New payment status (unchanged when None)
        """
        should_close = conn is None
        if conn is None:
            conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                UPDATE orders
                SET status = %s,
                    payment_status = COALESCE(%s, payment_status),
                    updated_at = NOW()
                WHERE id = %s
            """, (status, payment_status, order_id))
            cursor.execute("""
                UPDATE seller_orders
                SET status = %s,
                    payment_status = COALESCE(%s, payment_status),
                    updated_at = NOW()
                WHERE order_id = %s
            """, (status, payment_status, order_id))
            if should_close:
                conn.commit()
            logger.info(f"Order {order_id} status → {status} (payment_status={payment_status})")
        finally:
            cursor.close()
            if should_close:
                conn.close()
