"""
Datafast and DeUna must store identical breakdowns for the same cart

Both flows run against the same mocked repositories; the OrderCreate each
one hands to OrderRepository.create is compared field by field.

Author: TM3
Date: 2025-10-17
"""
import asyncio
import json
import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from app.connectors.datafast_connector import DatafastConnector
from app.connectors.deuna_connector import DeunaConnector
from app.domain.payment import DatafastPayment, DeunaPayment
from app.domain.pricing import CartLine
from app.services.checkout_service import CheckoutService
from app.services.deuna_payment_service import DeunaPaymentService
from app.services.order_builder import breakdown_fields
from app.services.reconciliation_service import compare_records


def run_both(placement, placement_mocks, lines, coupon_code, shipping_data, amount):
    """Complete the same cart through both gateways, return the two persisted orders"""
    placement_mocks["orders"].find_by_payment_id.return_value = None

    datafast = DatafastConnector(base_url="https://test.oppwa.com", entity_id="ent", authorization="Bearer x")
    datafast.verify_payment = AsyncMock(return_value={
        "status": "success", "result_code": "000.100.110", "description": "ok",
        "payment_id": "8ac7", "amount": amount, "currency": "USD", "payment_brand": "VISA", "raw": {},
    })
    datafast_payments = MagicMock()
    datafast_payments.find_datafast_by_checkout_id.return_value = DatafastPayment(
        checkout_id="chk-1", transaction_id="TXN_7", user_id=7, amount=Decimal(amount),
        items=lines, coupon_code=coupon_code, shipping_data=shipping_data,
    )
    checkout = CheckoutService(placement, datafast, datafast_payments, placement_mocks["orders"])

    deuna_payments = MagicMock()
    deuna_payments.find_deuna_by_payment_id.return_value = DeunaPayment(
        payment_id="dn-1", order_number="ORD-20251017090000-ABC123", user_id=7, amount=Decimal(amount),
        items=lines, coupon_code=coupon_code, shipping_data=shipping_data,
    )
    deuna = DeunaPaymentService(
        placement, DeunaConnector(webhook_secret=""), deuna_payments, placement_mocks["orders"]
    )

    asyncio.run(checkout.complete_checkout("/v1/checkouts/chk-1/payment", "chk-1"))
    payload = {"idTransaction": "dn-1", "status": "SUCCESS", "amount": float(amount), "transferNumber": "42"}
    asyncio.run(deuna.handle_webhook(json.dumps(payload).encode(), None, payload))

    calls = placement_mocks["orders"].create.call_args_list
    assert len(calls) == 2
    return calls[0][0][0], calls[1][0][0]


class TestGatewayParity:

    def test_bulk_cart_with_coupon(self, placement, placement_mocks, bulk_lines, shipping_data):
        datafast_order, deuna_order = run_both(
            placement, placement_mocks, bulk_lines, "FEED10", shipping_data, "100.60"
        )

        assert datafast_order.payment_method == "datafast"
        assert deuna_order.payment_method == "deuna"
        assert breakdown_fields(datafast_order) == breakdown_fields(deuna_order)
        assert compare_records(datafast_order, deuna_order) == []
        assert deuna_order.total == Decimal("100.60")

    def test_multi_seller_cart_with_shipping(self, placement, placement_mocks, shipping_data):
        lines = [CartLine(product_id=1, quantity=1), CartLine(product_id=2, quantity=1), CartLine(product_id=3, quantity=5)]

        datafast_order, deuna_order = run_both(placement, placement_mocks, lines, None, shipping_data, "53.42")

        assert breakdown_fields(datafast_order) == breakdown_fields(deuna_order)
        assert [s.shipping_cost for s in datafast_order.seller_orders] == \
            [s.shipping_cost for s in deuna_order.seller_orders]
        assert datafast_order.shipping_cost == Decimal("5.00")
