"""
Discount Code Repository - Data Access Layer for coupons

Coupons come from two tables: feedback codes (owned by the user who left
the feedback) and admin codes (usable once by anyone).

Author: TM3
Date: 2025-10-17
"""
from typing import Optional
from app.domain.payment import DiscountCode
from app.core.database import get_db_connection_dict


class DiscountCodeRepository:
    """Repository for feedback and admin discount codes"""

    def find_by_code(self, code: str, conn=None) -> Optional[DiscountCode]:
        """
        Find a discount code in feedback codes first, then admin codes

        Args:
            code: Coupon code as typed by the shopper

        Returns:
            DiscountCode or None if no table has it
        """
        should_close = conn is None
        if conn is None:
            conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT
                    dc.id, dc.code, dc.discount_percentage, dc.is_used, dc.expires_at,
                    f.user_id AS owner_user_id
                FROM discount_codes dc
                LEFT JOIN feedback f ON dc.feedback_id = f.id
                WHERE dc.code = %s
            """, (code,))
            row = cursor.fetchone()
            if row:
                return DiscountCode(**dict(row), source='feedback')

            cursor.execute("""
                SELECT id, code, discount_percentage, is_used, expires_at
                FROM admin_discount_codes
                WHERE code = %s
            """, (code,))
            row = cursor.fetchone()
            if row:
                return DiscountCode(**dict(row), owner_user_id=None, source='admin')

            return None
        finally:
            cursor.close()
            if should_close:
                conn.close()

    def mark_used(self, discount_code: DiscountCode, user_id: int, conn) -> bool:
        """
        Mark a code as used by `user_id` inside the caller's transaction

        Returns:
            True if the row was updated, False if it was already used
        """
        table = 'admin_discount_codes' if discount_code.source == 'admin' else 'discount_codes'
        cursor = conn.cursor()
        try:
            cursor.execute(f"""
                UPDATE {table}
                SET is_used = TRUE, used_by = %s, used_at = NOW()
                WHERE id = %s AND is_used = FALSE
            """, (user_id, discount_code.id))
            return cursor.rowcount == 1
        finally:
            cursor.close()
