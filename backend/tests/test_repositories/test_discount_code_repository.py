"""
Unit tests for DiscountCodeRepository

Author: TM3
Date: 2025-10-17
"""
from decimal import Decimal
from unittest.mock import patch, MagicMock

from app.domain.payment import DiscountCode
from app.repositories.discount_code_repository import DiscountCodeRepository

FEEDBACK_ROW = {
    'id': 1, 'code': 'FEED10', 'discount_percentage': Decimal('10.00'),
    'is_used': False, 'expires_at': None, 'owner_user_id': 7,
}


class TestFindByCode:

    @patch('app.repositories.discount_code_repository.get_db_connection_dict')
    def test_feedback_code(self, mock_get_conn):
        cursor = mock_get_conn.return_value.cursor.return_value
        cursor.fetchone.return_value = FEEDBACK_ROW

        code = DiscountCodeRepository().find_by_code('FEED10')

        assert code.source == 'feedback'
        assert code.owner_user_id == 7
        assert cursor.execute.call_count == 1
        mock_get_conn.return_value.close.assert_called_once()

    @patch('app.repositories.discount_code_repository.get_db_connection_dict')
    def test_falls_back_to_admin_codes(self, mock_get_conn):
        cursor = mock_get_conn.return_value.cursor.return_value
        cursor.fetchone.side_effect = [
            None,
            {'id': 9, 'code': 'ADMIN5', 'discount_percentage': Decimal('5'), 'is_used': False, 'expires_at': None},
        ]

        code = DiscountCodeRepository().find_by_code('ADMIN5')

        assert code.source == 'admin'
        assert code.owner_user_id is None
        assert 'admin_discount_codes' in cursor.execute.call_args[0][0]

    @patch('app.repositories.discount_code_repository.get_db_connection_dict')
    def test_unknown_code(self, mock_get_conn):
        mock_get_conn.return_value.cursor.return_value.fetchone.return_value = None
        assert DiscountCodeRepository().find_by_code('NOPE') is None


class TestMarkUsed:

    def test_marks_feedback_code(self):
        conn = MagicMock()
        conn.cursor.return_value.rowcount = 1
        code = DiscountCode(**FEEDBACK_ROW)

        assert DiscountCodeRepository().mark_used(code, 7, conn=conn) is True
        query, params = conn.cursor.return_value.execute.call_args[0]
        assert 'UPDATE discount_codes' in query
        assert 'is_used = FALSE' in query
        assert params == (7, 1)

    def test_admin_code_already_used(self):
        conn = MagicMock()
        conn.cursor.return_value.rowcount = 0
        code = DiscountCode(id=9, code='ADMIN5', discount_percentage=Decimal('5'), source='admin')

        assert DiscountCodeRepository().mark_used(code, 7, conn=conn) is False
        assert 'UPDATE admin_discount_codes' in conn.cursor.return_value.execute.call_args[0][0]
