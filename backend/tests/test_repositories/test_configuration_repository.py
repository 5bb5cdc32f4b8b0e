"""
Unit tests for ConfigurationRepository

Author: TM3
Date: 2025-10-17
"""
import psycopg2
from decimal import Decimal
from unittest.mock import patch

from app.repositories.configuration_repository import ConfigurationRepository, _decode


class TestDecode:

    def test_values(self):
        assert _decode('true') is True
        assert _decode('False') is False
        assert _decode('12') == 12
        assert _decode('[{"quantity": 3, "discount": 5}]') == [{'quantity': 3, 'discount': 5}]
        assert _decode('plain text') == 'plain text'
        assert _decode(7.5) == 7.5


class TestGetPricingConfig:

    @patch.object(ConfigurationRepository, 'get_values')
    def test_defaults_without_overrides(self, mock_values):
        mock_values.return_value = {}

        config = ConfigurationRepository().get_pricing_config()

        assert config.tax_rate == Decimal('15.0')
        assert config.free_shipping_threshold == Decimal('50.00')
        assert [t.quantity for t in config.volume_tiers] == [5, 6, 19]

    @patch.object(ConfigurationRepository, 'get_values')
    def test_stored_values_override_settings(self, mock_values):
        mock_values.return_value = {
            'payment.taxRate': 12,
            'shipping.enabled': False,
            'shipping.free_threshold': 80,
            'volume_discounts.default_tiers': [{'quantity': 10, 'discount': 8}],
        }

        config = ConfigurationRepository().get_pricing_config()

        assert config.tax_rate == Decimal('12')
        assert config.shipping_enabled is False
        assert config.free_shipping_threshold == Decimal('80')
        assert config.default_shipping_cost == Decimal('5.00')
        assert [(t.quantity, t.discount) for t in config.volume_tiers] == [(10, Decimal('8'))]

    @patch.object(ConfigurationRepository, 'get_values')
    def test_invalid_tiers_use_fallback(self, mock_values):
        mock_values.return_value = {'volume_discounts.default_tiers': 'garbage'}

        config = ConfigurationRepository().get_pricing_config()

        assert [t.quantity for t in config.volume_tiers] == [5, 6, 19]

    @patch.object(ConfigurationRepository, 'get_values')
    def test_invalid_override_is_ignored(self, mock_values):
        mock_values.return_value = {'payment.taxRate': 250}

        assert ConfigurationRepository().get_pricing_config().tax_rate == Decimal('15.0')

    @patch.object(ConfigurationRepository, 'get_values')
    def test_database_error_falls_back_to_settings(self, mock_values):
        mock_values.side_effect = psycopg2.OperationalError("could not connect")

        config = ConfigurationRepository().get_pricing_config()

        assert config.tax_rate == Decimal('15.0')
        assert config.shipping_enabled is True
