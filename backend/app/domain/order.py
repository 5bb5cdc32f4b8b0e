"""
Order Domain Models

Represents the persisted order breakdown. Both payment gateways
(Datafast and DeUna) write orders through these schemas, so the
stored breakdown has a single shape.

Author: TM3
Date: 2025-10-17
"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List, Dict, Any
from datetime import datetime
from decimal import Decimal


MONEY_FIELDS = (
    'original_total', 'subtotal_products', 'seller_discount_savings',
    'volume_discount_savings', 'feedback_discount_amount', 'total_discount_savings',
    'shipping_cost', 'taxable_amount', 'iva_amount', 'total',
)

ITEM_MONEY_FIELDS = (
    'original_price', 'price', 'seller_discount_amount', 'volume_discount_amount', 'subtotal',
)


class OrderItemCreate(BaseModel):
    """
    Schema for one order line

    Fields:
        product_id: Product catalog ID
        seller_id: Seller that owns the product
        product_name: Name at order time
        quantity: Units ordered
        original_price: Base unit price (before discounts)
        price: Final unit price (after seller + volume discounts)
        seller_discount_percentage / seller_discount_amount: Per unit seller discount
        volume_discount_percentage / volume_discount_amount: Per unit volume discount
        subtotal: price × quantity
    """

    product_id: int
    seller_id: int
    product_name: Optional[str] = None
    quantity: int = Field(..., ge=1)
    original_price: Decimal = Field(..., ge=0)
    price: Decimal = Field(..., ge=0)
    seller_discount_percentage: Decimal = Decimal('0')
    seller_discount_amount: Decimal = Decimal('0')
    volume_discount_percentage: Decimal = Decimal('0')
    volume_discount_amount: Decimal = Decimal('0')
    subtotal: Decimal = Field(..., ge=0)


class SellerOrderCreate(BaseModel):
    """Schema for the per-seller slice of an order"""

    seller_id: int
    order_number: str
    subtotal: Decimal
    original_total: Decimal
    seller_discounts: Decimal
    volume_discount_savings: Decimal
    volume_discounts_applied: bool
    shipping_cost: Decimal
    status: str = "processing"
    payment_status: str = "completed"
    payment_method: str
    product_ids: List[int] = Field(default_factory=list)


class OrderCreate(BaseModel):
    """
    Schema for creating a new order with its full pricing breakdown

    The numeric fields are what must be identical between the Datafast
    checkout and the DeUna webhook for the same cart.
    """

    order_number: str
    user_id: int
    seller_id: Optional[int] = None
    status: str = "processing"
    payment_status: str = "completed"
    payment_method: str
    payment_id: Optional[str] = None

    # Pricing breakdown
    original_total: Decimal
    subtotal_products: Decimal
    seller_discount_savings: Decimal
    volume_discount_savings: Decimal
    feedback_discount_code: Optional[str] = None
    feedback_discount_amount: Decimal = Decimal('0.00')
    feedback_discount_percentage: Decimal = Decimal('0')
    total_discount_savings: Decimal
    volume_discounts_applied: bool = False
    shipping_cost: Decimal
    free_shipping: bool
    free_shipping_threshold: Optional[Decimal] = None
    taxable_amount: Decimal
    tax_rate: Decimal
    iva_amount: Decimal
    total: Decimal

    shipping_data: Dict[str, Any] = Field(default_factory=dict)
    payment_details: Dict[str, Any] = Field(default_factory=dict)

    items: List[OrderItemCreate] = Field(default_factory=list)
    seller_orders: List[SellerOrderCreate] = Field(default_factory=list)


class OrderItem(OrderItemCreate):
    """Persisted order line"""

    id: int
    order_id: int
    seller_order_id: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)

    def to_dict(self) -> dict:
        """Convert to dictionary with Decimal to float conversion"""
        data = self.model_dump()
        for field in ITEM_MONEY_FIELDS + ('seller_discount_percentage', 'volume_discount_percentage'):
            if data.get(field) is not None:
                data[field] = float(data[field])
        return data


class Order(BaseModel):
    """
    Order domain model - a paid marketplace order

    Mirrors the `orders` table; `items` comes from `order_items`.
    """

    id: int
    order_number: str
    user_id: int
    seller_id: Optional[int] = None
    status: str
    payment_status: Optional[str] = None
    payment_method: Optional[str] = None
    payment_id: Optional[str] = None

    original_total: Decimal
    subtotal_products: Decimal
    seller_discount_savings: Decimal = Decimal('0')
    volume_discount_savings: Decimal = Decimal('0')
    feedback_discount_code: Optional[str] = None
    feedback_discount_amount: Decimal = Decimal('0')
    feedback_discount_percentage: Decimal = Decimal('0')
    total_discount_savings: Decimal = Decimal('0')
    volume_discounts_applied: bool = False
    shipping_cost: Decimal = Decimal('0')
    free_shipping: bool = False
    free_shipping_threshold: Optional[Decimal] = None
    taxable_amount: Decimal
    tax_rate: Decimal
    iva_amount: Decimal
    total: Decimal

    shipping_data: Dict[str, Any] = Field(default_factory=dict)
    payment_details: Dict[str, Any] = Field(default_factory=dict)

    created_at: datetime
    updated_at: Optional[datetime] = None

    items: List[OrderItem] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_paid(self) -> bool:
        return self.payment_status in ('completed', 'paid')

    @property
    def total_quantity(self) -> int:
        """Total quantity of all items"""
        return sum(item.quantity for item in self.items)

    def to_dict(self) -> dict:
        """
        Convert to dictionary with computed fields

        Decimals become floats and datetimes ISO strings for JSON responses.
        """
        data = self.model_dump()
        data['is_paid'] = self.is_paid
        data['total_quantity'] = self.total_quantity

        for field in MONEY_FIELDS + ('feedback_discount_percentage', 'tax_rate', 'free_shipping_threshold'):
            if data.get(field) is not None:
                data[field] = float(data[field])

        data['created_at'] = self.created_at.isoformat()
        if self.updated_at:
            data['updated_at'] = self.updated_at.isoformat()

        data['items'] = [item.to_dict() for item in self.items]
        return data
