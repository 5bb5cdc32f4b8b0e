"""
Product Domain Model

Represents a marketplace product as seen by the pricing engine.
Catalog management lives elsewhere; only price, seller discount,
owner and stock matter here.

Author: TM3
Date: 2025-10-17
"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional
from datetime import datetime
from decimal import Decimal


class Product(BaseModel):
    """
    Product domain model

    Fields:
        id: Internal product ID (primary key)
        seller_id: Vendor that owns the product
        name: Product name
        price: Base unit price, before any discount
        discount_percentage: Seller discount (0-100) configured by the vendor
        stock: Units available
        is_active: Whether product can be sold
    """

    id: int = Field(..., description="Internal product ID")
    seller_id: int = Field(..., description="Owning seller ID")
    name: str = Field(..., description="Product name")
    price: Decimal = Field(..., description="Base unit price", ge=0)
    discount_percentage: Decimal = Field(Decimal('0'), description="Seller discount %", ge=0, le=100)
    stock: int = Field(0, description="Units in stock")
    is_active: bool = Field(True, description="Active in catalog")
    created_at: Optional[datetime] = Field(None, description="Creation timestamp")
    updated_at: Optional[datetime] = Field(None, description="Last update timestamp")

    model_config = ConfigDict(from_attributes=True)

    def has_stock_for(self, quantity: int) -> bool:
        return self.stock >= quantity
