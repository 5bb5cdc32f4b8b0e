"""
Product Repository - Data Access Layer for Products

Loads products for pricing and keeps stock in sync with paid orders.

Author: TM3
Date: 2025-10-17
"""
from typing import Dict, Iterable
from app.domain.product import Product
from app.core.database import get_db_connection_dict
from app.core.exceptions import InsufficientStockError

PRODUCT_COLUMNS = """
    id, seller_id, name, price, discount_percentage, stock,
    (status = 'active' AND published) AS is_active,
    created_at, updated_at
"""


class ProductRepository:
    """
    Repository for Product data access

    Stock changes run on the order transaction's connection.
    """

    @staticmethod
    def _map_row_to_product(row: dict) -> Product:
        return Product(
            id=row['id'],
            seller_id=row['seller_id'],
            name=row['name'],
            price=row['price'],
            discount_percentage=row.get('discount_percentage') or 0,
            stock=row.get('stock') or 0,
            is_active=bool(row.get('is_active', True)),
            created_at=row.get('created_at'),
            updated_at=row.get('updated_at'),
        )

    def find_by_ids(self, product_ids: Iterable[int]) -> Dict[int, Product]:
        """
        Load several products at once

        Args:
            product_ids: IDs to load (duplicates are ignored)

        Returns:
            Dict of product_id → Product (missing IDs are absent)
        """
        ids = sorted(set(product_ids))
        if not ids:
            return {}

        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"SELECT {PRODUCT_COLUMNS} FROM products WHERE id = ANY(%s)", (ids,))
            return {row['id']: self._map_row_to_product(row) for row in cursor.fetchall()}
        finally:
            cursor.close()
            conn.close()

    def decrement_stock(self, product_id: int, quantity: int, conn) -> int:
        """
        Take `quantity` units out of stock inside the caller's transaction

        Returns:
            Remaining stock

        Raises:
            InsufficientStockError: Not enough units left
        """
        cursor = conn.cursor()
        try:
            cursor.execute("""
                UPDATE products
                SET stock = stock - %s, updated_at = NOW()
                WHERE id = %s AND stock >= %s
                RETURNING stock
            """, (quantity, product_id, quantity))
            row = cursor.fetchone()
            if not row:
                raise InsufficientStockError(
                    f"Insufficient stock for product {product_id}",
                    details={'product_id': product_id, 'requested': quantity},
                )
            return row['stock']
        finally:
            cursor.close()
