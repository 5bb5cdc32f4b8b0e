"""
Pytest fixtures and configuration for Mercado Checkout Backend tests

This file provides shared fixtures that can be used across all test modules.

Author: TM3
Date: 2025-10-17
"""
import pytest
import os
from contextlib import contextmanager
from decimal import Decimal
from unittest.mock import MagicMock
from dotenv import load_dotenv

from app.domain.payment import DiscountCode
from app.domain.pricing import CartLine, PricingConfig
from app.domain.product import Product

# Load environment variables for tests
load_dotenv()


@pytest.fixture(scope="session")
def database_url():
    """
    Provides the database URL for integration tests

    Scope: session (created once per test session)
    """
    url = os.getenv("DATABASE_URL")
    if not url:
        pytest.skip("DATABASE_URL not configured")
    return url


@pytest.fixture
def pricing_config():
    """Default pricing: IVA 15%, free shipping from $50, $5 shipping, tiers 5/6/19"""
    return PricingConfig()


@pytest.fixture
def products():
    """
    Catalog used across pricing tests

    1: $10.00, no seller discount (seller 10)
    2: $20.00, 10% seller discount (seller 20)
    3: $3.33, 15% seller discount (seller 10)
    """
    return {
        1: Product(id=1, seller_id=10, name="Café de altura", price=Decimal("10.00"), stock=100),
        2: Product(id=2, seller_id=20, name="Chocolate 70%", price=Decimal("20.00"),
                   discount_percentage=Decimal("10"), stock=100),
        3: Product(id=3, seller_id=10, name="Panela", price=Decimal("3.33"),
                   discount_percentage=Decimal("15"), stock=100),
    }


@pytest.fixture
def feedback_coupon():
    """10% feedback code owned by user 7"""
    return DiscountCode(id=1, code="FEED10", discount_percentage=Decimal("10"), owner_user_id=7)


@pytest.fixture
def bulk_lines():
    """6 units of product 2 (10% volume tier, above free shipping threshold)"""
    return [CartLine(product_id=2, quantity=6)]


@pytest.fixture
def shipping_data():
    return {
        "name": "Ana Torres",
        "email": "ana@example.com",
        "phone": "0991234567",
        "identification": "1712345678",
        "street": "Av. Amazonas 123",
        "city": "Quito",
        "country": "EC",
    }


@pytest.fixture
def placement_mocks(products, pricing_config, feedback_coupon):
    """
    Mocked repositories for OrderPlacementService

    Returns a dict with each mock plus the connection handed out by the
    fake transaction.
    """
    conn = MagicMock()

    @contextmanager
    def fake_transaction():
        yield conn

    product_repo = MagicMock()
    product_repo.find_by_ids.side_effect = lambda ids, **kwargs: {i: products[i] for i in ids if i in products}

    configuration_repo = MagicMock()
    configuration_repo.get_pricing_config.return_value = pricing_config

    discount_repo = MagicMock()
    discount_repo.find_by_code.side_effect = lambda code: feedback_coupon if code == "FEED10" else None
    discount_repo.mark_used.return_value = True

    order_repo = MagicMock()
    order_repo.create.return_value = 101
    order_repo.find_by_payment_id.return_value = None

    return {
        "conn": conn,
        "transaction": fake_transaction,
        "products": product_repo,
        "configuration": configuration_repo,
        "discount_codes": discount_repo,
        "orders": order_repo,
        "carts": MagicMock(),
    }


@pytest.fixture
def placement(placement_mocks):
    from app.services.order_placement_service import OrderPlacementService

    return OrderPlacementService(
        product_repository=placement_mocks["products"],
        order_repository=placement_mocks["orders"],
        discount_code_repository=placement_mocks["discount_codes"],
        configuration_repository=placement_mocks["configuration"],
        cart_repository=placement_mocks["carts"],
        transaction_factory=placement_mocks["transaction"],
    )
