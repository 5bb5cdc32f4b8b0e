"""
Configuration Repository - runtime pricing configuration

Values in `platform_configurations` override the defaults from settings.

Author: TM3
Date: 2025-10-17
"""
import json
import logging
from typing import Any, Dict

import psycopg2

from app.core.config import settings
from app.core.database import get_db_connection_dict
from app.domain.pricing import PricingConfig, parse_volume_tiers

logger = logging.getLogger(__name__)

# platform_configurations.key → PricingConfig field
PRICING_KEYS = {
    'payment.taxRate': 'tax_rate',
    'shipping.enabled': 'shipping_enabled',
    'shipping.free_threshold': 'free_shipping_threshold',
    'shipping.default_cost': 'default_shipping_cost',
    'volume_discounts.enabled': 'volume_discounts_enabled',
    'volume_discounts.default_tiers': 'volume_tiers',
}


def _decode(value: Any) -> Any:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ('true', 'false'):
            return lowered == 'true'
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


class ConfigurationRepository:
    """Reads pricing overrides from platform_configurations"""

    def get_values(self) -> Dict[str, Any]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(
                "SELECT key, value FROM platform_configurations WHERE key = ANY(%s)",
                (list(PRICING_KEYS.keys()),),
            )
            return {row['key']: _decode(row['value']) for row in cursor.fetchall()}
        finally:
            cursor.close()
            conn.close()

    def get_pricing_config(self) -> PricingConfig:
        """
        Build the pricing configuration

        Returns:
            PricingConfig from settings, overridden by stored values.
            Falls back to settings alone when the table can't be read.
        """
        config = PricingConfig.from_settings(settings)

        try:
            stored = self.get_values()
        except (psycopg2.Error, RuntimeError) as e:
            logger.warning(f"Could not read platform_configurations, using settings: {e}")
            return config

        overrides = {}
        for key, value in stored.items():
            field = PRICING_KEYS[key]
            overrides[field] = parse_volume_tiers(value) if field == 'volume_tiers' else value

        if not overrides:
            return config

        try:
            return PricingConfig(**{**config.model_dump(), **overrides})
        except ValueError as e:
            logger.warning(f"Invalid pricing overrides {overrides}, using settings: {e}")
            return config
