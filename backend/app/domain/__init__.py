"""
Domain Layer - Business Entities

This layer contains Pydantic models representing business entities.
These models enforce type safety and validation across the application.

Author: TM3
Date: 2025-10-17
"""
from app.domain.product import Product
from app.domain.pricing import (
    CartLine,
    CouponApplication,
    PricedItem,
    PricingConfig,
    PricingResult,
    SellerBreakdown,
    VolumeTier,
)
from app.domain.order import Order, OrderItem, OrderCreate, OrderItemCreate, SellerOrderCreate
from app.domain.payment import DatafastPayment, DeunaPayment, DiscountCode, PaymentStatus, PaymentMethod

__all__ = [
    'Product',
    'CartLine', 'CouponApplication', 'PricedItem', 'PricingConfig', 'PricingResult',
    'SellerBreakdown', 'VolumeTier',
    'Order', 'OrderItem', 'OrderCreate', 'OrderItemCreate', 'SellerOrderCreate',
    'DatafastPayment', 'DeunaPayment', 'DiscountCode', 'PaymentStatus', 'PaymentMethod',
]
