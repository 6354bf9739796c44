"""
Bundle Pricing Engine
Original price, discount/markup classification and savings for admin bundles
"""
from typing import Iterable, Tuple
import logging
from decimal import Decimal

from schemas.bundle_schemas import BundleLineItem, BundlePricingResult, PricingMode
from services.formatting import format_price, format_savings_label, round_half_up, to_decimal

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


class BundlePricingEngine:
    """Pure pricing rules for bundles. Holds no state between calls."""

    def compute_original_price(self, items: Iterable[BundleLineItem]) -> Decimal:
        """Sum of unit_price * quantity. No intermediate rounding."""
        total = Decimal("0")
        for item in items:
            total += item.line_total
        return total

    def classify_pricing(self, original_price, bundle_price) -> Tuple[PricingMode, int]:
        """
        Classify a bundle price against its original price.

        Returns (mode, percent) where percent is a non-negative integer
        rounded half-up. A zero (or negative) original price is NEUTRAL rather than an error.
        """
        original = to_decimal(original_price)
        bundle = to_decimal(bundle_price)

        if original <= 0:
            return PricingMode.NEUTRAL, 0
        if bundle < original:
            percent = round_half_up((original - bundle) / original * HUNDRED)
            return PricingMode.DISCOUNT, int(percent)
        if bundle > original:
            percent = round_half_up((bundle - original) / original * HUNDRED)
            return PricingMode.MARKUP, int(percent)
        return PricingMode.NEUTRAL, 0

    def compute_savings(self, original_price, bundle_price) -> Decimal:
        """original - bundle; negative values are markup."""
        return to_decimal(original_price) - to_decimal(bundle_price)

    def price_bundle(self, items: Iterable[BundleLineItem], bundle_price) -> BundlePricingResult:
        """Full pricing snapshot for a set of line items and a proposed price."""
        items = list(items)
        original = self.compute_original_price(items)
        bundle = to_decimal(bundle_price)
        mode, percent = self.classify_pricing(original, bundle)

        # A percent that rounds to 0 (e.g. 0.4%) still reads as neutral
        if percent == 0:
            mode = PricingMode.NEUTRAL

        result = BundlePricingResult(
            original_price=original,
            bundle_price=bundle,
            mode=mode,
            discount_percent=percent if mode == PricingMode.DISCOUNT else 0,
            markup_percent=percent if mode == PricingMode.MARKUP else 0,
        )
        logger.debug(
            f"Priced bundle: items={len(items)} original={original} bundle={bundle} "
            f"mode={mode.value} percent={percent}"
        )
        return result

    def describe(self, result: BundlePricingResult) -> dict:
        """Display strings for a pricing snapshot (badges and labels)."""
        if result.mode == PricingMode.DISCOUNT:
            badge = f"{result.discount_percent}% OFF"
        elif result.mode == PricingMode.MARKUP:
            badge = f"+{result.markup_percent}% Markup"
        else:
            badge = ""
        return {
            "original_price": format_price(result.original_price),
            "bundle_price": format_price(result.bundle_price),
            "savings": format_savings_label(result.savings),
            "badge": badge,
        }


# Global instance for application use
pricing_engine = BundlePricingEngine()
