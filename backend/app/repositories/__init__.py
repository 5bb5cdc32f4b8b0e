"""
Repository Layer - Data Access

This layer handles all database queries and returns domain models.
Repositories abstract away SQL details from business logic.

Author: TM3
Date: 2025-10-17
"""
from app.repositories.product_repository import ProductRepository
from app.repositories.order_repository import OrderRepository
from app.repositories.payment_repository import PaymentRepository
from app.repositories.discount_code_repository import DiscountCodeRepository
from app.repositories.configuration_repository import ConfigurationRepository
from app.repositories.cart_repository import CartRepository

__all__ = [
    'ProductRepository',
    'OrderRepository',
    'PaymentRepository',
    'DiscountCodeRepository',
    'ConfigurationRepository',
    'CartRepository',
]
