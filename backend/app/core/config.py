"""
Configuración centralizada de la aplicación
"""
import json
from decimal import Decimal
from typing import List, Optional

from pydantic_settings import BaseSettings


DEFAULT_VOLUME_TIERS = (
    '[{"quantity":5,"discount":5,"label":"Descuento 5+"},'
    '{"quantity":6,"discount":10,"label":"Descuento 6+"},'
    '{"quantity":19,"discount":15,"label":"Descuento 19+"}]'
)


class Settings(BaseSettings):
    """Configuración de la aplicación"""

    # API Settings
    API_TITLE: str = "Mercado Checkout API"
    API_VERSION: str = "1.0.0"
    API_DESCRIPTION: str = "Cálculo de precios y cobro de pedidos (Datafast / DeUna)"
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    API_DEBUG: bool = False

    # Database
    DATABASE_URL: str = ""
    DB_CONNECT_TIMEOUT: int = 10

    # CORS - Can be string (comma-separated) or JSON array
    # Example: "http://localhost:3000,https://yourdomain.com" or '["http://localhost:3000"]'
    ALLOWED_ORIGINS: Optional[str] = "http://localhost:3000"

    FRONTEND_URL: str = "http://localhost:3000"
    CURRENCY: str = "USD"

    # Pricing defaults (overridable from platform_configurations table)
    TAX_RATE: Decimal = Decimal("15.0")
    SHIPPING_ENABLED: bool = True
    FREE_SHIPPING_THRESHOLD: Decimal = Decimal("50.00")
    DEFAULT_SHIPPING_COST: Decimal = Decimal("5.00")
    VOLUME_DISCOUNTS_ENABLED: bool = True
    VOLUME_DISCOUNT_TIERS: str = DEFAULT_VOLUME_TIERS

    # Datafast (card checkout)
    DATAFAST_BASE_URL: str = "https://eu-test.oppwa.com"
    DATAFAST_ENTITY_ID: str = ""
    DATAFAST_AUTHORIZATION: str = ""
    DATAFAST_MID: str = "1000000505"
    DATAFAST_TID: str = "PD100406"
    DATAFAST_TEST_MODE: Optional[str] = "EXTERNAL"
    DATAFAST_MERCHANT_NAME: str = "MiComercio"

    # DeUna (QR / transfer)
    DEUNA_BASE_URL: str = "https://apis-merchant.qa.deunalab.com"
    DEUNA_API_KEY: str = ""
    DEUNA_API_SECRET: str = ""
    DEUNA_POINT_OF_SALE: str = ""
    DEUNA_WEBHOOK_SECRET: str = ""

    def get_allowed_origins(self) -> List[str]:
        """Parse ALLOWED_ORIGINS string into list"""
        if not self.ALLOWED_ORIGINS:
            return ["http://localhost:3000"]

        # Try JSON parse first (for array format)
        try:
            origins = json.loads(self.ALLOWED_ORIGINS)
            if isinstance(origins, list):
                return origins
        except (json.JSONDecodeError, ValueError):
            pass

        # Fall back to comma-separated string
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",")]

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
