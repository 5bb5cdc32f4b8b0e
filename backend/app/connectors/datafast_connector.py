"""
Datafast (OPPWA) API Connector
Card checkout for Ecuador

Author: TM3
Date: 2025-10-17

FLOW:
1. POST /v1/checkouts (form encoded) → checkout id for the payment widget
2. Shopper pays inside the widget, Datafast redirects with resourcePath
3. GET {resourcePath}?entityId=... → result code of the transaction

RESULT CODES:
- 000.000.000 - Transaction succeeded (production)
- 000.100.110 - Succeeded in integrator test mode
- 000.100.112 - Succeeded in connector test mode
- 000.200.100 - Checkout created, no transaction yet
"""
import ipaddress
import logging
import re
from decimal import Decimal
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx
from pydantic import EmailStr, TypeAdapter, ValidationError

from app.core.config import settings
from app.core.exceptions import InvalidCustomerDataError, PaymentGatewayError

logger = logging.getLogger(__name__)

SUCCESS_CODES = {'000.000.000', '000.100.110', '000.100.112'}
CHECKOUT_PENDING_CODE = '000.200.100'

EMAIL_ADAPTER = TypeAdapter(EmailStr)


def classify_result_code(code: Optional[str]) -> str:
    """
    Classify a Datafast result code

    Returns:
        'success', 'pending' (checkout created but not paid) or 'rejected'
    """
    if code in SUCCESS_CODES:
        return 'success'
    if code == CHECKOUT_PENDING_CODE:
        return 'pending'
    return 'rejected'


def _fmt(amount) -> str:
    return f"{Decimal(amount):.2f}"


def _sanitize(value: Optional[str], max_length: int) -> str:
    value = str(value or '')
    for char in ('&', '<', '>', '"', "'"):
        value = value.replace(char, '')
    return value.strip()[:max_length]


def _document_id(doc_id: Optional[str]) -> str:
    """Cédula with 10 digits; a 13 digit RUC yields its first 10"""
    digits = re.sub(r'\D', '', doc_id or '')
    if not digits:
        raise InvalidCustomerDataError("Customer identification document is required")
    if len(digits) == 13:
        return digits[:10]
    if len(digits) != 10:
        raise InvalidCustomerDataError(f"Customer identification must have 10 digits: {digits}")
    return digits


def _phone(phone: Optional[str]) -> str:
    cleaned = re.sub(r'[^\d+]', '', phone or '')
    if not cleaned:
        raise InvalidCustomerDataError("Customer phone is required")
    if len(cleaned) < 7:
        raise InvalidCustomerDataError(f"Customer phone is too short: {cleaned}")
    return cleaned[:25]


def _email(email: Optional[str]) -> str:
    if not email:
        raise InvalidCustomerDataError("Customer email is required")
    try:
        email = EMAIL_ADAPTER.validate_python(email)
    except ValidationError:
        raise InvalidCustomerDataError(f"Invalid customer email: {email}")
    return email[:128]


def _country(country: Optional[str]) -> str:
    country = (country or '').strip().upper()
    if len(country) == 2 and country.isalpha():
        return country
    return 'EC'


def _address(address_data: Dict[str, Any]) -> str:
    address = address_data.get('street') or address_data.get('address')
    if not address or not str(address).strip():
        raise InvalidCustomerDataError("Customer address is required")
    return _sanitize(address, 100)


def _json(response: httpx.Response) -> Dict[str, Any]:
    try:
        return response.json()
    except ValueError:
        return {}


def _ip(ip: Optional[str]) -> str:
    try:
        return str(ipaddress.ip_address(ip or ''))
    except ValueError:
        return '127.0.0.1'


class DatafastConnector:
    """
    Connector for the Datafast payment gateway

    Handles:
    - Phase 2 checkout creation (customer, tax split and merchant data)
    - Payment verification by resource path
    """

    def __init__(
        self,
        base_url: str = None,
        entity_id: str = None,
        authorization: str = None,
        timeout: float = 30.0,
    ):
        self.base_url = (base_url or settings.DATAFAST_BASE_URL).rstrip('/')
        self.entity_id = entity_id or settings.DATAFAST_ENTITY_ID
        self.authorization = authorization or settings.DATAFAST_AUTHORIZATION
        self.timeout = timeout

        if not self.entity_id or not self.authorization:
            logger.warning("Datafast credentials not configured (DATAFAST_ENTITY_ID / DATAFAST_AUTHORIZATION)")

    @property
    def _headers(self) -> Dict[str, str]:
        return {"Authorization": self.authorization}

    def build_checkout_params(
        self,
        amount: Decimal,
        taxable_amount: Decimal,
        iva_amount: Decimal,
        transaction_id: str,
        customer: Dict[str, Any],
        shipping: Dict[str, Any],
        billing: Optional[Dict[str, Any]] = None,
        items: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, str]:
        """
        Build the phase 2 form data for POST /v1/checkouts

        The tax split (BASE0 / BASEIMP / IVA) comes from the order breakdown,
        so amount == BASEIMP + IVA when everything is taxed.

        Args:
            amount: Total to charge
            taxable_amount: Taxable base (subtotal after coupon + shipping)
            iva_amount: IVA on the taxable base
            transaction_id: merchantTransactionId
            customer: given_name, middle_name, surname, id, email, doc_id, phone, ip
            shipping: street/address and country
            billing: street/address and country (defaults to shipping)
            items: Cart items for cart.items[0] (name, description, price, quantity)

        Raises:
            InvalidCustomerDataError: Required customer data is missing
        """
        billing = billing or shipping

        params = {
            'entityId': self.entity_id,
            'amount': _fmt(amount),
            'currency': settings.CURRENCY,
            'paymentType': 'DB',

            'customer.givenName': _sanitize(customer.get('given_name') or 'Cliente', 48),
            'customer.middleName': _sanitize(customer.get('middle_name') or 'De', 50),
            'customer.surname': _sanitize(customer.get('surname') or 'Cliente', 48),
            'customer.ip': _ip(customer.get('ip')),
            'customer.merchantCustomerId': _sanitize(customer.get('id'), 16),
            'merchantTransactionId': _sanitize(transaction_id, 255),
            'customer.email': _email(customer.get('email')),
            'customer.identificationDocType': 'IDCARD',
            'customer.identificationDocId': _document_id(customer.get('doc_id')),
            'customer.phone': _phone(customer.get('phone')),

            'shipping.street1': _address(shipping),
            'shipping.country': _country(shipping.get('country')),
            'billing.street1': _address(billing),
            'billing.country': _country(billing.get('country')),

            'shopperResultUrl': f"{settings.FRONTEND_URL.rstrip('/')}/datafast-result",

            'customParameters[SHOPPER_VAL_BASE0]': _fmt(0),
            'customParameters[SHOPPER_VAL_BASEIMP]': _fmt(taxable_amount),
            'customParameters[SHOPPER_VAL_IVA]': _fmt(iva_amount),
            'customParameters[SHOPPER_MID]': settings.DATAFAST_MID,
            'customParameters[SHOPPER_TID]': settings.DATAFAST_TID,
            'customParameters[SHOPPER_ECI]': '0103910',
            'customParameters[SHOPPER_PSERV]': '17913101',
            'customParameters[SHOPPER_VERSIONDF]': '2',

            'risk.parameters[USER_DATA2]': _sanitize(settings.DATAFAST_MERCHANT_NAME, 30),
        }

        if settings.DATAFAST_TEST_MODE:
            params['testMode'] = settings.DATAFAST_TEST_MODE

        first = (items or [{}])[0]
        params['cart.items[0].name'] = _sanitize(first.get('name') or 'Producto', 255)
        params['cart.items[0].description'] = _sanitize(first.get('description') or first.get('name') or 'Producto', 255)
        params['cart.items[0].price'] = _fmt(first.get('price') if first.get('price') is not None else amount)
        params['cart.items[0].quantity'] = str(max(1, int(first.get('quantity') or 1)))

        return params

    async def create_checkout(self, params: Dict[str, str]) -> Dict[str, Any]:
        """
        Create a checkout

        Returns:
            Dict with checkout_id and widget_url

        Raises:
            PaymentGatewayError: Datafast unreachable or no checkout id returned
        """
        url = f"{self.base_url}/v1/checkouts"
        logger.info(f"Creating Datafast checkout: amount={params.get('amount')}, "
                    f"transaction={params.get('merchantTransactionId')}")

        async with httpx.AsyncClient() as client:
            try:
                response = await client.post(url, data=params, headers=self._headers, timeout=self.timeout)
            except httpx.HTTPError as e:
                logger.error(f"Datafast checkout request failed: {e}")
                raise PaymentGatewayError(f"Error communicating with Datafast: {e}")

        data = _json(response)
        result = data.get('result') or {}

        if response.is_success and data.get('id'):
            checkout_id = data['id']
            logger.info(f"Datafast checkout created: {checkout_id}")
            return {
                'checkout_id': checkout_id,
                'widget_url': f"{self.base_url}/v1/paymentWidgets.js?checkoutId={checkout_id}",
                'result_code': result.get('code'),
            }

        code = result.get('code')
        description = result.get('description') or 'Error creating checkout'
        if code == '200.300.404':
            description = 'Invalid or missing parameter'
        logger.error(f"Datafast checkout rejected: HTTP {response.status_code}, code={code}, {description}")
        raise PaymentGatewayError(description, details={'result_code': code})

    async def verify_payment(self, resource_path: str) -> Dict[str, Any]:
        """
        Get the transaction result for a resource path

        Args:
            resource_path: Path returned to the shopper (a full URL is accepted)

        Returns:
            Dict with status ('success' / 'pending' / 'rejected'), result_code,
            description, payment_id, amount, currency and raw response

        Raises:
            PaymentGatewayError: Datafast unreachable or response without result
        """
        if resource_path.startswith('http'):
            resource_path = urlparse(resource_path).path or resource_path
        if not resource_path.startswith('/'):
            resource_path = f"/{resource_path}"

        url = f"{self.base_url}{resource_path}"
        logger.info(f"Verifying Datafast payment: {resource_path}")

        async with httpx.AsyncClient() as client:
            try:
                response = await client.get(
                    url,
                    params={'entityId': self.entity_id},
                    headers=self._headers,
                    timeout=self.timeout,
                )
            except httpx.HTTPError as e:
                logger.error(f"Datafast verification request failed: {e}")
                raise PaymentGatewayError(f"Error communicating with Datafast: {e}")

        data = _json(response)
        result = data.get('result')
        if not result:
            logger.error(f"Datafast verification without result: HTTP {response.status_code}")
            raise PaymentGatewayError(
                f"Invalid Datafast verification response (HTTP {response.status_code})",
                details={'response': data},
            )

        code = result.get('code')
        status = classify_result_code(code) if response.is_success else 'rejected'
        logger.info(f"Datafast verification: HTTP {response.status_code}, code={code}, status={status}")

        return {
            'status': status,
            'result_code': code,
            'description': result.get('description'),
            'payment_id': data.get('id'),
            'amount': data.get('amount'),
            'currency': data.get('currency'),
            'payment_brand': data.get('paymentBrand'),
            'raw': data,
        }
