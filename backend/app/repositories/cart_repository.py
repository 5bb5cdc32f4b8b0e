"""
Cart Repository - shopping cart lines

Author: TM3
Date: 2025-10-17
"""
from typing import List
from app.domain.pricing import CartLine
from app.core.database import get_db_connection_dict


class CartRepository:
    """Reads and clears a user's shopping cart"""

    def get_lines(self, user_id: int) -> List[CartLine]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT ci.product_id, ci.quantity
                FROM shopping_cart_items ci
                JOIN shopping_carts c ON ci.cart_id = c.id
                WHERE c.user_id = %s
                ORDER BY ci.id
            """, (user_id,))
            return [CartLine(**row) for row in cursor.fetchall()]
        finally:
            cursor.close()
            conn.close()

    def clear(self, user_id: int, conn) -> int:
        """Remove every item from the user's cart; returns deleted rows"""
        cursor = conn.cursor()
        try:
            cursor.execute("""
                DELETE FROM shopping_cart_items
                WHERE cart_id IN (SELECT id FROM shopping_carts WHERE user_id = %s)
            """, (user_id,))
            return cursor.rowcount
        finally:
            cursor.close()
