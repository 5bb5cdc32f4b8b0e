"""
API tests for pricing, checkout, DeUna and orders endpoints

Services are replaced through FastAPI dependency overrides.

Author: TM3
Date: 2025-10-17
"""
import json
import pytest
from datetime import datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from fastapi.testclient import TestClient

from app.api.deuna import get_deuna_service
from app.api.orders import get_order_repository, get_reconciliation_service
from app.api.pricing import get_cart_repository, get_checkout_service
from app.core.exceptions import (
    OrderNotFoundError,
    PaymentNotFoundError,
    PaymentVerificationError,
    PriceTamperingError,
    WebhookNotConfiguredError,
    WebhookSignatureError,
)
from app.domain.pricing import CartLine
from app.main import app
from app.services.pricing_calculator import PricingCalculator
from app.services.reconciliation_service import Discrepancy


@pytest.fixture
def checkout_service():
    return MagicMock()


@pytest.fixture
def deuna_service():
    return MagicMock()


@pytest.fixture
def carts():
    return MagicMock()


@pytest.fixture
def client(checkout_service, deuna_service, carts):
    app.dependency_overrides[get_checkout_service] = lambda: checkout_service
    app.dependency_overrides[get_deuna_service] = lambda: deuna_service
    app.dependency_overrides[get_cart_repository] = lambda: carts
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestQuoteEndpoint:

    def test_quote_with_items(self, client, checkout_service, products):
        checkout_service.quote.return_value = PricingCalculator().calculate(
            [CartLine(product_id=2, quantity=6)], products
        )

        response = client.post("/api/v1/pricing/quote", json={"user_id": 7, "items": [{"product_id": 2, "quantity": 6}]})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["final_total"] == 111.78
        assert data["volume_discounts_applied"] is True
        user_id, lines, coupon = checkout_service.quote.call_args[0]
        assert lines == [CartLine(product_id=2, quantity=6)]
        assert coupon is None

    def test_quote_from_stored_cart(self, client, checkout_service, carts, products):
        carts.get_lines.return_value = [CartLine(product_id=1, quantity=1)]
        checkout_service.quote.return_value = PricingCalculator().calculate(carts.get_lines.return_value, products)

        response = client.post("/api/v1/pricing/quote", json={"user_id": 7, "coupon_code": "FEED10"})

        assert response.status_code == 200
        carts.get_lines.assert_called_once_with(7)
        assert checkout_service.quote.call_args[0][2] == "FEED10"

    def test_invalid_quantity(self, client):
        response = client.post("/api/v1/pricing/quote", json={"user_id": 7, "items": [{"product_id": 2, "quantity": 0}]})
        assert response.status_code == 422


class TestDatafastEndpoints:

    BODY = {
        "user_id": 7,
        "items": [{"product_id": 2, "quantity": 6, "price": 16.2}],
        "shipping_data": {"street": "Av. Amazonas 123", "email": "ana@example.com"},
        "totals": {"final_total": 111.78},
    }

    def test_start_checkout(self, client, checkout_service):
        checkout_service.start_checkout = AsyncMock(return_value={"checkout_id": "chk-1", "amount": 111.78})

        response = client.post("/api/v1/checkout/datafast", json=self.BODY)

        assert response.status_code == 200
        assert response.json()["data"]["checkout_id"] == "chk-1"
        kwargs = checkout_service.start_checkout.await_args[1]
        assert float(kwargs["client_totals"]["final_total"]) == 111.78
        assert float(kwargs["lines"][0].price) == 16.2

    def test_tampering_returns_409(self, client, checkout_service):
        checkout_service.start_checkout = AsyncMock(side_effect=PriceTamperingError(
            "Submitted prices do not match current prices", details={"items": [{"product_id": 2}]}
        ))

        response = client.post("/api/v1/checkout/datafast", json=self.BODY)

        assert response.status_code == 409
        assert response.json()["detail"]["details"] == {"items": [{"product_id": 2}]}

    def test_empty_cart_rejected(self, client):
        response = client.post("/api/v1/checkout/datafast", json=dict(self.BODY, items=[]))
        assert response.status_code == 422

    def test_verify_rejected_payment(self, client, checkout_service):
        checkout_service.complete_checkout = AsyncMock(side_effect=PaymentVerificationError("Declined"))

        response = client.post(
            "/api/v1/checkout/datafast/verify",
            json={"resource_path": "/v1/checkouts/chk-1/payment", "checkout_id": "chk-1"},
        )

        assert response.status_code == 402
        assert response.json()["detail"] == {"message": "Declined"}

    def test_verify_creates_order(self, client, checkout_service):
        checkout_service.complete_checkout = AsyncMock(return_value={"order_id": 101, "created": True})

        response = client.post(
            "/api/v1/checkout/datafast/verify",
            json={"resource_path": "/v1/checkouts/chk-1/payment", "checkout_id": "chk-1"},
        )

        assert response.status_code == 200
        checkout_service.complete_checkout.assert_awaited_once_with("/v1/checkouts/chk-1/payment", "chk-1")


class TestDeunaEndpoints:

    def test_create_payment(self, client, deuna_service):
        deuna_service.create_payment = AsyncMock(return_value={"payment_id": "dn-1", "qr": "QR"})

        response = client.post("/api/v1/payments/deuna", json={
            "user_id": 7,
            "items": [{"product_id": 2, "quantity": 6}],
            "shipping_data": {"street": "Av. Amazonas 123"},
            "coupon_code": "FEED10",
        })

        assert response.status_code == 200
        assert deuna_service.create_payment.await_args[1]["coupon_code"] == "FEED10"

    def test_webhook_passes_raw_body_and_signature(self, client, deuna_service):
        deuna_service.handle_webhook = AsyncMock(return_value={"payment_id": "dn-1", "created": True})
        raw = json.dumps({"idTransaction": "dn-1", "status": "SUCCESS"}).encode()

        response = client.post(
            "/api/v1/webhooks/deuna",
            content=raw,
            headers={"Content-Type": "application/json", "X-Signature": "sha256=abc"},
        )

        assert response.status_code == 200
        deuna_service.handle_webhook.assert_awaited_once_with(
            raw, "sha256=abc", {"idTransaction": "dn-1", "status": "SUCCESS"}
        )

    @pytest.mark.parametrize("header", ["X-DeUna-Signature", "signature"])
    def test_webhook_reads_deuna_signature_headers(self, client, deuna_service, header):
        deuna_service.handle_webhook = AsyncMock(return_value={"payment_id": "dn-1", "created": True})
        raw = json.dumps({"idTransaction": "dn-1", "status": "SUCCESS"}).encode()

        response = client.post(
            "/api/v1/webhooks/deuna",
            content=raw,
            headers={"Content-Type": "application/json", header: "sha256=def"},
        )

        assert response.status_code == 200
        assert deuna_service.handle_webhook.await_args[0][1] == "sha256=def"

    def test_webhook_without_secret_configured(self, client, deuna_service):
        deuna_service.handle_webhook = AsyncMock(side_effect=WebhookNotConfiguredError("Webhook is not properly configured"))

        response = client.post("/api/v1/webhooks/deuna", json={"idTransaction": "dn-1", "status": "SUCCESS"})

        assert response.status_code == 500
        assert response.json()["detail"] == {"message": "Webhook is not properly configured"}

    def test_payment_status_refresh(self, client, deuna_service):
        deuna_service.refresh_status = AsyncMock(return_value={
            "payment_id": "dn-1", "status": "completed", "order_id": 101, "created": True,
        })

        response = client.get("/api/v1/payments/deuna/dn-1")

        assert response.status_code == 200
        assert response.json()["data"]["order_id"] == 101
        deuna_service.refresh_status.assert_awaited_once_with("dn-1")

    def test_payment_status_unknown_payment(self, client, deuna_service):
        deuna_service.refresh_status = AsyncMock(side_effect=PaymentNotFoundError("DeUna payment nope not found"))

        response = client.get("/api/v1/payments/deuna/nope")

        assert response.status_code == 404

    def test_webhook_bad_signature(self, client, deuna_service):
        deuna_service.handle_webhook = AsyncMock(side_effect=WebhookSignatureError("Invalid webhook signature"))

        response = client.post("/api/v1/webhooks/deuna", json={"idTransaction": "dn-1"})

        assert response.status_code == 401

    def test_webhook_invalid_json(self, client, deuna_service):
        deuna_service.handle_webhook = AsyncMock()

        response = client.post("/api/v1/webhooks/deuna", content=b"not json")

        assert response.status_code == 400
        deuna_service.handle_webhook.assert_not_awaited()

    def test_webhook_non_object_body(self, client):
        response = client.post("/api/v1/webhooks/deuna", json=[1, 2])
        assert response.status_code == 400


class TestOrderEndpoints:

    def test_order_not_found(self, client):
        repo = MagicMock()
        repo.find_by_id.return_value = None
        app.dependency_overrides[get_order_repository] = lambda: repo

        response = client.get("/api/v1/orders/404")

        assert response.status_code == 404

    def test_get_order(self, client):
        order = MagicMock()
        order.to_dict.return_value = {"id": 101, "total": 111.78}
        repo = MagicMock()
        repo.find_by_id.return_value = order
        app.dependency_overrides[get_order_repository] = lambda: repo

        response = client.get("/api/v1/orders/101")

        assert response.status_code == 200
        assert response.json()["data"]["total"] == 111.78

    def test_reconcile(self, client):
        service = MagicMock()
        service.compare.return_value = [Discrepancy(field="iva_amount", stored=Decimal("13.13"), expected=Decimal("13.12"))]
        app.dependency_overrides[get_reconciliation_service] = lambda: service

        response = client.get("/api/v1/orders/101/reconcile")

        data = response.json()["data"]
        assert data["consistent"] is False
        assert data["discrepancies"] == [{"field": "iva_amount", "stored": 13.13, "expected": 13.12}]

    def test_reconcile_unknown_order(self, client):
        service = MagicMock()
        service.compare.side_effect = OrderNotFoundError("Order 9 not found")
        app.dependency_overrides[get_reconciliation_service] = lambda: service

        assert client.get("/api/v1/orders/9/reconcile").status_code == 404
