"""
Unit tests for OrderPlacementService

Author: TM3
Date: 2025-10-17
"""
import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock

from app.core.exceptions import InsufficientStockError, InvalidDiscountCodeError, OrderAlreadyPlacedError
from app.domain.payment import DiscountCode
from app.domain.pricing import CartLine
from app.services.order_placement_service import OrderPlacementService, merge_lines


def coupon(**overrides):
    data = {"id": 3, "code": "ADMIN5", "discount_percentage": Decimal("5"), "source": "admin"}
    data.update(overrides)
    return DiscountCode(**data)


class TestMergeLines:

    def test_repeated_products_are_merged(self):
        lines = [
            CartLine(product_id=1, quantity=2, price=Decimal("10.00")),
            CartLine(product_id=2, quantity=1),
            CartLine(product_id=1, quantity=3),
        ]

        merged = merge_lines(lines)

        assert [(l.product_id, l.quantity) for l in merged] == [(1, 5), (2, 1)]
        assert merged[0].price == Decimal("10.00")


class TestResolveCoupon:
    """Coupon validation rules"""

    def test_no_code(self, placement):
        assert placement.resolve_coupon(None, 7) is None
        assert placement.resolve_coupon("", 7) is None

    def test_unknown_code(self, placement):
        with pytest.raises(InvalidDiscountCodeError):
            placement.resolve_coupon("NOPE", 7)

    def test_code_is_trimmed(self, placement, feedback_coupon):
        assert placement.resolve_coupon("  FEED10 ", 7) == feedback_coupon

    def test_feedback_code_of_another_user(self, placement):
        with pytest.raises(InvalidDiscountCodeError) as exc:
            placement.resolve_coupon("FEED10", 8)
        assert exc.value.details["reason"] == "not yours"

    @pytest.mark.parametrize("overrides,reason", [
        ({"is_used": True}, "used"),
        ({"expires_at": datetime.now(timezone.utc) - timedelta(days=1)}, "expired"),
    ])
    def test_invalid_admin_code(self, placement, placement_mocks, overrides, reason):
        placement_mocks["discount_codes"].find_by_code.side_effect = lambda code: coupon(**overrides)

        with pytest.raises(InvalidDiscountCodeError) as exc:
            placement.resolve_coupon("ADMIN5", 7)
        assert exc.value.details["reason"] == reason

    def test_admin_code_valid_for_anyone(self, placement, placement_mocks):
        placement_mocks["discount_codes"].find_by_code.side_effect = lambda code: coupon()
        assert placement.resolve_coupon("ADMIN5", 12345).code == "ADMIN5"

    def test_non_strict_keeps_used_code(self, placement, placement_mocks):
        placement_mocks["discount_codes"].find_by_code.side_effect = lambda code: coupon(is_used=True)
        assert placement.resolve_coupon("ADMIN5", 7, strict=False).is_used is True


class TestPrice:

    def test_uses_runtime_configuration(self, placement, placement_mocks, pricing_config, bulk_lines):
        placement_mocks["configuration"].get_pricing_config.return_value = pricing_config.model_copy(
            update={"tax_rate": Decimal("12")}
        )

        result, products, coupon_ = placement.price(7, bulk_lines)

        assert result.tax_rate == Decimal("12")
        assert result.iva_amount == Decimal("11.66")
        assert set(products) == {2}
        assert coupon_ is None

    def test_repeated_lines_priced_as_one(self, placement):
        lines = [CartLine(product_id=2, quantity=3), CartLine(product_id=2, quantity=3)]

        result, _, _ = placement.price(7, lines)

        assert len(result.items) == 1
        assert result.items[0].volume_discount_percentage == Decimal("10")


class TestValidateStock:

    def test_enough_stock(self, products, bulk_lines):
        OrderPlacementService.validate_stock(bulk_lines, products)

    def test_merged_quantity_exceeds_stock(self, products):
        lines = [CartLine(product_id=3, quantity=60), CartLine(product_id=3, quantity=60)]

        with pytest.raises(InsufficientStockError) as exc:
            OrderPlacementService.validate_stock(lines, products)

        assert exc.value.details["items"] == [{"product_id": 3, "requested": 120, "available": 100}]


class TestPlaceOrder:
    """Single transaction for order, stock, coupon and cart"""

    def test_all_writes_share_the_transaction(self, placement, placement_mocks, bulk_lines, feedback_coupon):
        # Arrange
        result, _, coupon_ = placement.price(7, bulk_lines, "FEED10")
        conn = placement_mocks["conn"]
        created = []

        # Act
        order_id, order = placement.place_order(
            result, 7, "deuna", "dn-1", coupon=coupon_,
            on_created=lambda c, oid: created.append((c, oid)),
        )

        # Assert
        assert order_id == 101
        placement_mocks["orders"].create.assert_called_once_with(order, conn=conn)
        placement_mocks["products"].decrement_stock.assert_called_once_with(2, 6, conn=conn)
        placement_mocks["discount_codes"].mark_used.assert_called_once_with(feedback_coupon, 7, conn=conn)
        placement_mocks["carts"].clear.assert_called_once_with(7, conn=conn)
        assert created == [(conn, 101)]

    def test_already_used_coupon_does_not_block_order(self, placement, placement_mocks, bulk_lines, feedback_coupon):
        placement_mocks["discount_codes"].mark_used.return_value = False
        result, _, _ = placement.price(7, bulk_lines, "FEED10")

        order_id, _ = placement.place_order(result, 7, "datafast", "chk-1", coupon=feedback_coupon)

        assert order_id == 101

    def test_without_coupon_nothing_is_marked(self, placement, placement_mocks, bulk_lines):
        result, _, _ = placement.price(7, bulk_lines)

        placement.place_order(result, 7, "datafast", "chk-1")

        placement_mocks["discount_codes"].mark_used.assert_not_called()

    def test_failure_stops_remaining_writes(self, placement, placement_mocks, bulk_lines):
        placement_mocks["orders"].create.side_effect = RuntimeError("connection lost")
        result, _, _ = placement.price(7, bulk_lines)

        with pytest.raises(RuntimeError):
            placement.place_order(result, 7, "datafast", "chk-1")

        placement_mocks["products"].decrement_stock.assert_not_called()
        placement_mocks["carts"].clear.assert_not_called()

    def test_payment_row_locked_before_order_lookup(self, placement, placement_mocks, bulk_lines):
        result, _, _ = placement.price(7, bulk_lines)
        conn = placement_mocks["conn"]
        calls = []
        placement_mocks["orders"].find_by_payment_id.side_effect = lambda pid, conn: calls.append(("lookup", pid)) or None

        placement.place_order(result, 7, "deuna", "dn-1", lock_payment=lambda c: calls.append(("lock", c)))

        assert calls == [("lock", conn), ("lookup", "dn-1")]
        placement_mocks["orders"].create.assert_called_once()

    def test_payment_with_order_is_not_placed_twice(self, placement, placement_mocks, bulk_lines):
        existing = MagicMock(id=77, order_number="ORD-20251017090000-ABC123")
        placement_mocks["orders"].find_by_payment_id.return_value = existing
        result, _, _ = placement.price(7, bulk_lines)

        with pytest.raises(OrderAlreadyPlacedError) as exc:
            placement.place_order(result, 7, "deuna", "dn-1", lock_payment=MagicMock())

        assert exc.value.order is existing
        placement_mocks["orders"].create.assert_not_called()
        placement_mocks["products"].decrement_stock.assert_not_called()
        placement_mocks["carts"].clear.assert_not_called()
