"""
DeUna API Endpoints
Payment request creation and the DeUna webhook

Author: TM3
Date: 2025-10-17
"""
import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel, Field

from app.api.checkout import ClientTotals
from app.api.errors import http_error
from app.api.pricing import CartLineIn
from app.core.exceptions import CheckoutError
from app.services.deuna_payment_service import DeunaPaymentService

logger = logging.getLogger(__name__)

payments_router = APIRouter()
webhooks_router = APIRouter()


class DeunaPaymentRequest(BaseModel):
    user_id: int
    items: List[CartLineIn] = Field(..., min_length=1)
    shipping_data: Dict[str, Any]
    coupon_code: Optional[str] = None
    totals: Optional[ClientTotals] = None


def get_deuna_service() -> DeunaPaymentService:
    return DeunaPaymentService()


@payments_router.post("/deuna")
async def create_deuna_payment(
    request: DeunaPaymentRequest,
    service: DeunaPaymentService = Depends(get_deuna_service),
):
    """
    Create a DeUna payment (QR + deeplink)

    The order is created later, when the webhook confirms the payment.
    """
    try:
        data = await service.create_payment(
            user_id=request.user_id,
            lines=[item.to_line() for item in request.items],
            shipping_data=request.shipping_data,
            coupon_code=request.coupon_code,
            client_totals=request.totals.model_dump(exclude_none=True) if request.totals else None,
        )
        return {"status": "success", "data": data}

    except CheckoutError as e:
        raise http_error(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error creating DeUna payment: {str(e)}")


@payments_router.get("/deuna/{payment_id}")
async def get_deuna_payment_status(
    payment_id: str,
    service: DeunaPaymentService = Depends(get_deuna_service),
):
    """
    Refresh a DeUna payment from the gateway

    Used by the payment page while waiting; creates the order when DeUna
    reports the payment as completed and the webhook has not arrived.
    """
    try:
        data = await service.refresh_status(payment_id)
        return {"status": "success", "data": data}

    except CheckoutError as e:
        raise http_error(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error fetching DeUna payment status: {str(e)}")


@webhooks_router.post("/deuna")
async def deuna_webhook(
    request: Request,
    x_deuna_signature: Optional[str] = Header(None),
    x_signature: Optional[str] = Header(None),
    signature: Optional[str] = Header(None),
    service: DeunaPaymentService = Depends(get_deuna_service),
):
    """
    DeUna payment notification

    Reads the raw body so the HMAC signature is checked against the exact
    bytes DeUna signed. The signature may come in X-DeUna-Signature,
    X-Signature or signature.
    """
    raw_body = await request.body()
    try:
        payload = json.loads(raw_body or b'{}')
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Webhook body must be a JSON object")

    try:
        data = await service.handle_webhook(raw_body, x_deuna_signature or x_signature or signature, payload)
        return {"status": "success", "data": data}

    except CheckoutError as e:
        logger.warning(f"DeUna webhook rejected: {e.message}")
        raise http_error(e)
    except Exception as e:
        logger.error(f"DeUna webhook failed: {e}")
        raise HTTPException(status_code=500, detail=f"Error processing DeUna webhook: {str(e)}")
