"""
Checkout API Endpoints - Datafast
Card checkout creation and payment verification

Author: TM3
Date: 2025-10-17
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from app.api.errors import http_error
from app.api.pricing import CartLineIn, get_checkout_service
from app.core.exceptions import CheckoutError
from app.services.checkout_service import CheckoutService

router = APIRouter()


class ClientTotals(BaseModel):
    """Totals displayed to the shopper (all optional)"""
    final_total: Optional[Decimal] = None
    subtotal_with_discounts: Optional[Decimal] = None
    iva_amount: Optional[Decimal] = None
    shipping_cost: Optional[Decimal] = None


class DatafastCheckoutRequest(BaseModel):
    user_id: int
    items: List[CartLineIn] = Field(..., min_length=1)
    shipping_data: Dict[str, Any]
    coupon_code: Optional[str] = None
    totals: Optional[ClientTotals] = None
    customer: Optional[Dict[str, Any]] = None


class DatafastVerifyRequest(BaseModel):
    resource_path: str = Field(..., min_length=1)
    checkout_id: str = Field(..., min_length=1)


@router.post("/datafast")
async def start_datafast_checkout(
    request: DatafastCheckoutRequest,
    service: CheckoutService = Depends(get_checkout_service),
):
    """
    Create a Datafast checkout

    Prices the cart on the server, rejects tampered prices and returns
    the checkout id for the payment widget.
    """
    try:
        data = await service.start_checkout(
            user_id=request.user_id,
            lines=[item.to_line() for item in request.items],
            shipping_data=request.shipping_data,
            coupon_code=request.coupon_code,
            client_totals=request.totals.model_dump(exclude_none=True) if request.totals else None,
            customer=request.customer,
        )
        return {"status": "success", "data": data}

    except CheckoutError as e:
        raise http_error(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error creating Datafast checkout: {str(e)}")


@router.post("/datafast/verify")
async def verify_datafast_payment(
    request: DatafastVerifyRequest,
    service: CheckoutService = Depends(get_checkout_service),
):
    """
    Verify a Datafast payment and create the order

    Safe to call more than once for the same checkout.
    """
    try:
        data = await service.complete_checkout(request.resource_path, request.checkout_id)
        return {"status": "success", "data": data}

    except CheckoutError as e:
        raise http_error(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error verifying Datafast payment: {str(e)}")
