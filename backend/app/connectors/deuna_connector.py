"""
DeUna API Connector
QR / bank transfer payments (Banco Pichincha)

Author: TM3
Date: 2025-10-17

API CONFIGURATION:
- Base URL: https://apis-merchant.qa.deunalab.com (QA)
- Auth headers: x-api-key + x-api-secret

ENDPOINTS:
- POST /merchant/v1/payment/request - Create payment (QR + deeplink)
- POST /merchant/v1/payment/info    - Payment status

WEBHOOK:
- DeUna signs the raw body with HMAC-SHA256 using the webhook secret,
  hex encoded, optionally prefixed with "sha256="
"""
import asyncio
import hashlib
import hmac
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from app.core.config import settings
from app.core.exceptions import PaymentGatewayError

logger = logging.getLogger(__name__)

# DeUna status → internal payment status
STATUS_MAP = {
    'SUCCESS': 'completed',
    'COMPLETED': 'completed',
    'PAID': 'completed',
    'SUCCESSFUL': 'completed',
    'PENDING': 'pending',
    'PROCESSING': 'pending',
    'FAILED': 'failed',
    'ERROR': 'failed',
    'DECLINED': 'failed',
    'REJECTED': 'failed',
    'CANCELLED': 'cancelled',
    'CANCELED': 'cancelled',
    'REFUNDED': 'refunded',
}


def map_status(deuna_status: Optional[str]) -> str:
    """Map a DeUna status to our payment status ('unknown' when not recognised)"""
    status = str(deuna_status or '').strip()
    return STATUS_MAP.get(status.upper(), 'unknown')


def compute_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode('utf-8'), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: str, secret: str) -> bool:
    """
    Check a webhook signature

    Args:
        raw_body: Request body exactly as received
        signature: Header value, with or without "sha256=" prefix
        secret: Webhook secret

    Returns:
        True when the signature matches (constant-time compare)
    """
    if not signature or not secret:
        return False
    if signature.startswith('sha256='):
        signature = signature[len('sha256='):]
    expected = compute_signature(raw_body, secret)
    return hmac.compare_digest(expected, signature.strip().lower())


def short_reference(order_number: str, max_length: int = 20) -> str:
    """
    internalTransactionReference (DeUna accepts at most 20 characters)

    ORD-20251017103000-A1B2C3 → O20251017103000A1B2 (prefix + timestamp + 4 chars)
    """
    if len(order_number) <= max_length:
        return order_number
    parts = order_number.split('-')
    if len(parts) == 3 and parts[1].isdigit():
        reference = f"O{parts[1]}{parts[2][:4]}"
        if len(reference) > max_length:
            reference = f"O{parts[1][-10:]}{parts[2][:4]}"
        return reference[:max_length]
    return order_number[-max_length:]


def payment_detail(item_names: List[str], max_length: int = 50) -> str:
    """Short purchase description from product names"""
    if not item_names:
        return f"Compra en {settings.DATAFAST_MERCHANT_NAME}"[:max_length]

    detail = ''
    for index, name in enumerate(item_names):
        if index:
            detail += ', '
        detail += name
        if len(detail) > 40:
            if index < len(item_names) - 1:
                detail += '...'
            break
    return detail[:max_length]


class DeunaConnector:
    """
    Connector for DeUna merchant API

    Handles:
    - Payment request creation (QR + deeplink)
    - Payment status queries
    - Webhook signature verification
    """

    REQUEST_PATH = "/merchant/v1/payment/request"
    INFO_PATH = "/merchant/v1/payment/info"

    def __init__(
        self,
        base_url: str = None,
        api_key: str = None,
        api_secret: str = None,
        point_of_sale: str = None,
        webhook_secret: str = None,
        timeout: float = 30.0,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
    ):
        self.base_url = (base_url or settings.DEUNA_BASE_URL).rstrip('/')
        self.api_key = api_key or settings.DEUNA_API_KEY
        self.api_secret = api_secret or settings.DEUNA_API_SECRET
        self.point_of_sale = point_of_sale or settings.DEUNA_POINT_OF_SALE
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.DEUNA_WEBHOOK_SECRET
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay

    @property
    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "x-api-secret": self.api_secret,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST to DeUna with retries

        Raises:
            PaymentGatewayError: All attempts failed
        """
        url = f"{self.base_url}{path}"
        last_error = None

        for attempt in range(1, self.retry_attempts + 1):
            async with httpx.AsyncClient() as client:
                try:
                    response = await client.post(url, json=payload, headers=self._headers, timeout=self.timeout)
                    response.raise_for_status()
                    return response.json()
                except httpx.HTTPStatusError as e:
                    last_error = f"HTTP {e.response.status_code}: {e.response.text}"
                    logger.error(f"DeUna API error on {path} (attempt {attempt}): {last_error}")
                except (httpx.HTTPError, ValueError) as e:
                    last_error = str(e)
                    logger.error(f"DeUna request failed on {path} (attempt {attempt}): {e}")

            if attempt < self.retry_attempts:
                await asyncio.sleep(self.retry_delay)

        raise PaymentGatewayError(f"DeUna API error: {last_error}")

    async def create_payment_request(
        self,
        order_number: str,
        amount: Decimal,
        item_names: Optional[List[str]] = None,
        qr_type: str = 'dynamic',
        response_format: str = '2',
    ) -> Dict[str, Any]:
        """
        Create a payment request

        Args:
            order_number: Our order number (shortened for DeUna)
            amount: Amount to charge
            item_names: Product names for the payment detail

        Returns:
            Dict with payment_id, qr, deeplink, numeric_code and raw response
        """
        payload = {
            'pointOfSale': self.point_of_sale,
            'qrType': qr_type,
            'amount': float(amount),
            'detail': payment_detail(item_names or []),
            'internalTransactionReference': short_reference(order_number),
            'format': response_format,
        }
        logger.info(f"Creating DeUna payment for {order_number}: amount={amount}")

        data = await self._post(self.REQUEST_PATH, payload)
        payment_id = data.get('transactionId')
        if not payment_id:
            logger.error(f"DeUna payment response without transactionId: {data}")
            raise PaymentGatewayError("DeUna did not return a transaction id", details={'response': data})

        logger.info(f"DeUna payment created: {payment_id} for {order_number}")
        return {
            'payment_id': payment_id,
            'qr': data.get('qr'),
            'deeplink': data.get('deeplink'),
            'numeric_code': data.get('numericCode'),
            'raw': data,
        }

    async def get_payment_status(self, payment_id: str) -> Dict[str, Any]:
        """Query DeUna for the status of a transaction"""
        data = await self._post(self.INFO_PATH, {'idTransacionReference': payment_id, 'idType': '0'})
        return {
            'payment_id': data.get('transactionId') or payment_id,
            'status': map_status(data.get('status')),
            'amount': data.get('amount'),
            'raw': data,
        }

    def verify_webhook_signature(self, raw_body: bytes, signature: str) -> bool:
        is_valid = verify_signature(raw_body, signature, self.webhook_secret)
        logger.info(f"DeUna webhook signature valid: {is_valid}")
        return is_valid
