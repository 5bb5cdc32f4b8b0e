"""
Unit tests for DeunaConnector helpers and HTTP calls

Author: TM3
Date: 2025-10-17
"""
import asyncio
import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import httpx

from app.connectors.deuna_connector import (
    DeunaConnector,
    compute_signature,
    map_status,
    payment_detail,
    short_reference,
    verify_signature,
)
from app.core.exceptions import PaymentGatewayError


class TestMapStatus:

    @pytest.mark.parametrize("raw,expected", [
        ("SUCCESS", "completed"),
        ("paid", "completed"),
        ("Successful", "completed"),
        ("PROCESSING", "pending"),
        ("DECLINED", "failed"),
        ("CANCELED", "cancelled"),
        ("REFUNDED", "refunded"),
        ("ON_HOLD", "unknown"),
        (None, "unknown"),
    ])
    def test_mapping(self, raw, expected):
        assert map_status(raw) == expected


class TestSignature:

    BODY = b'{"idTransaction":"dn-1","status":"SUCCESS"}'

    def test_valid(self):
        signature = compute_signature(self.BODY, "secret")
        assert verify_signature(self.BODY, signature, "secret") is True
        assert verify_signature(self.BODY, f"sha256={signature}", "secret") is True
        assert verify_signature(self.BODY, signature.upper(), "secret") is True

    def test_body_changed(self):
        signature = compute_signature(self.BODY, "secret")
        assert verify_signature(self.BODY + b" ", signature, "secret") is False

    def test_missing_inputs(self):
        assert verify_signature(self.BODY, "", "secret") is False
        assert verify_signature(self.BODY, "abc", "") is False


class TestReferences:

    def test_short_reference(self):
        assert short_reference("ORD-20251017103000-A1B2C3") == "O20251017103000A1B2"
        assert len(short_reference("ORD-20251017103000-A1B2C3")) <= 20

    def test_short_order_number_kept(self):
        assert short_reference("ORD-1") == "ORD-1"

    def test_payment_detail(self):
        assert payment_detail(["Café"]) == "Café"
        detail = payment_detail(["Chocolate", "Café de altura", "Panela orgánica", "Miel"])
        assert detail.endswith("...")
        assert len(detail) <= 50


class TestCreatePaymentRequest:

    def _client(self, *responses):
        client = MagicMock()
        client.post = AsyncMock(side_effect=list(responses))
        factory = MagicMock()
        factory.return_value.__aenter__ = AsyncMock(return_value=client)
        factory.return_value.__aexit__ = AsyncMock(return_value=False)
        return factory, client

    @staticmethod
    def _response(status_code, body):
        return httpx.Response(status_code, json=body, request=httpx.Request("POST", "https://deuna.test"))

    def test_retries_then_succeeds(self):
        connector = DeunaConnector(base_url="https://deuna.test", api_key="k", api_secret="s",
                                   point_of_sale="4112", retry_delay=0)
        factory, client = self._client(
            self._response(503, {"message": "unavailable"}),
            self._response(200, {"transactionId": "dn-1", "qr": "QR", "deeplink": "DL", "numericCode": "123"}),
        )

        with patch('app.connectors.deuna_connector.httpx.AsyncClient', factory):
            result = asyncio.run(connector.create_payment_request("ORD-20251017103000-A1B2C3", Decimal("100.60")))

        assert result["payment_id"] == "dn-1"
        assert result["numeric_code"] == "123"
        assert client.post.await_count == 2
        payload = client.post.await_args[1]["json"]
        assert payload["amount"] == 100.6
        assert payload["pointOfSale"] == "4112"
        assert payload["internalTransactionReference"] == "O20251017103000A1B2"
        assert client.post.await_args[1]["headers"]["x-api-key"] == "k"

    def test_gives_up_after_retries(self):
        connector = DeunaConnector(base_url="https://deuna.test", retry_attempts=2, retry_delay=0)
        factory, _ = self._client(
            self._response(500, {}),
            self._response(500, {}),
        )

        with patch('app.connectors.deuna_connector.httpx.AsyncClient', factory):
            with pytest.raises(PaymentGatewayError):
                asyncio.run(connector.create_payment_request("ORD-1", Decimal("10")))

    def test_response_without_transaction_id(self):
        connector = DeunaConnector(base_url="https://deuna.test", retry_delay=0)
        factory, _ = self._client(self._response(200, {"status": "ERROR"}))

        with patch('app.connectors.deuna_connector.httpx.AsyncClient', factory):
            with pytest.raises(PaymentGatewayError):
                asyncio.run(connector.create_payment_request("ORD-1", Decimal("10")))
