"""
Price Verification Service
Detects client-side price tampering by comparing what the shopper saw
with what the server computed.

Author: TM3
Date: 2025-10-17
"""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from app.core.exceptions import PriceTamperingError
from app.domain.pricing import CartLine, PricingResult

logger = logging.getLogger(__name__)

PRICE_TOLERANCE = Decimal('0.001')

# client total key → PricingResult attribute
VERIFIED_TOTALS = {
    'final_total': 'final_total',
    'subtotal_with_discounts': 'subtotal_with_discounts',
    'iva_amount': 'iva_amount',
    'shipping_cost': 'shipping_cost',
}


class PriceVerificationService:
    """
    Anti-tampering checks

    Only client-submitted values are checked; lines or totals the
    client did not send are skipped.
    """

    def __init__(self, tolerance: Decimal = PRICE_TOLERANCE):
        self.tolerance = tolerance

    def _matches(self, client_value, server_value: Decimal) -> bool:
        return abs(Decimal(str(client_value)) - Decimal(server_value)) <= self.tolerance

    def item_price_mismatches(self, lines: Sequence[CartLine], result: PricingResult) -> List[Dict[str, Any]]:
        """Return one entry per line whose client price differs from the server final price"""
        mismatches = []
        for line in lines:
            if line.price is None:
                continue
            item = result.item_for(line.product_id)
            if item is None:
                continue
            if not self._matches(line.price, item.final_price):
                mismatches.append({
                    'product_id': line.product_id,
                    'client_price': float(line.price),
                    'server_price': float(item.final_price),
                })
        return mismatches

    def verify_item_prices(self, lines: Sequence[CartLine], result: PricingResult, user_id: Optional[int] = None) -> None:
        """
        Verify every client unit price against the server final_price

        Raises:
            PriceTamperingError: At least one price differs beyond tolerance
        """
        mismatches = self.item_price_mismatches(lines, result)
        if mismatches:
            logger.warning(f"Item price tampering detected for user {user_id}: {mismatches}")
            raise PriceTamperingError(
                "Submitted prices do not match current prices",
                details={'items': mismatches},
            )

    def verify_totals(self, client_totals: Optional[Dict[str, Any]], result: PricingResult, user_id: Optional[int] = None) -> None:
        """
        Verify client order totals against the server breakdown

        Args:
            client_totals: Dict with any of final_total, subtotal_with_discounts,
                iva_amount, shipping_cost
            result: Server-side PricingResult

        Raises:
            PriceTamperingError: A submitted total differs beyond tolerance
        """
        if not client_totals:
            return

        mismatches = {}
        for key, attribute in VERIFIED_TOTALS.items():
            client_value = client_totals.get(key)
            if client_value is None:
                continue
            server_value = getattr(result, attribute)
            if not self._matches(client_value, server_value):
                mismatches[key] = {'client': float(client_value), 'server': float(server_value)}

        if mismatches:
            logger.warning(f"Total tampering detected for user {user_id}: {mismatches}")
            raise PriceTamperingError(
                "Submitted totals do not match server totals",
                details={'totals': mismatches},
            )
