"""
Pricing API Endpoints
Cart quotes with the full discount / shipping / IVA breakdown

Author: TM3
Date: 2025-10-17
"""
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from app.api.errors import http_error
from app.core.exceptions import CheckoutError
from app.domain.pricing import CartLine
from app.repositories.cart_repository import CartRepository
from app.services.checkout_service import CheckoutService

router = APIRouter()


class CartLineIn(BaseModel):
    product_id: int
    quantity: int = Field(..., gt=0)
    price: Optional[Decimal] = Field(None, ge=0, description="Unit price shown to the shopper")

    def to_line(self) -> CartLine:
        return CartLine(product_id=self.product_id, quantity=self.quantity, price=self.price)


class QuoteRequest(BaseModel):
    user_id: int
    items: List[CartLineIn] = Field(default_factory=list, description="Empty → use the stored cart")
    coupon_code: Optional[str] = None


def get_checkout_service() -> CheckoutService:
    return CheckoutService()


def get_cart_repository() -> CartRepository:
    return CartRepository()


@router.post("/quote")
async def quote(
    request: QuoteRequest,
    service: CheckoutService = Depends(get_checkout_service),
    carts: CartRepository = Depends(get_cart_repository),
):
    """
    Price a cart

    Returns per-item prices, discounts (seller, volume, coupon),
    shipping, IVA and final total. Nothing is stored.
    """
    try:
        lines = [item.to_line() for item in request.items] or carts.get_lines(request.user_id)
        result = service.quote(request.user_id, lines, request.coupon_code)
        return {"status": "success", "data": result.to_dict()}

    except CheckoutError as e:
        raise http_error(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error calculating quote: {str(e)}")
