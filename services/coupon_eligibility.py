"""
Coupon Eligibility Engine
Client-side eligibility pre-check and ranking for checkout coupon lists.

The storefront backend stays authoritative: it re-validates every coupon on
apply. Results here only drive the "available offers" list (which coupons
can be applied now, and how close the rest are to unlocking).
"""
from typing import Iterable, List, Optional, Sequence
import logging
import math
from decimal import Decimal

from schemas.coupon_schemas import (
    BogoCoupon,
    CartItem,
    CartWideCoupon,
    CategoryBasedCoupon,
    Coupon,
    DiscountType,
    EligibilityResult,
    ProductSpecificCoupon,
    RankedCoupons,
    ReasonCode,
)
from services.formatting import format_plain_number, to_decimal
from settings import CURRENCY_SYMBOL

logger = logging.getLogger(__name__)

# Checked in order against the first eligible cart item's title
BOGO_ITEM_KEYWORDS = ("ring", "bracelet", "necklace", "earring")
DEFAULT_ITEM_NAME = "item"

MSG_READY = "Ready to apply"
MSG_OFFER_AVAILABLE = "Offer available"
MSG_NO_PRODUCTS_CONFIGURED = "No products configured"
MSG_ADD_ELIGIBLE_PRODUCTS = "Add eligible products"
MSG_ADD_ELIGIBLE_ITEMS = "Add eligible items"


def _eligible(message: str = MSG_READY) -> EligibilityResult:
    return EligibilityResult(eligible=True, reason_code=ReasonCode.ELIGIBLE, message=message)


def infer_item_name(title: Optional[str]) -> str:
    """Pick a human item noun for BOGO messages from a product title."""
    lowered = (title or "").lower()
    for keyword in BOGO_ITEM_KEYWORDS:
        if keyword in lowered:
            return keyword
    return DEFAULT_ITEM_NAME


class CouponEligibilityEngine:
    """Pure eligibility rules. Every call works on the snapshot it is given."""

    def evaluate(self, coupon: Coupon, cart_total, cart_items: Sequence[CartItem]) -> EligibilityResult:
        """
        Decide whether a coupon can be applied to the cart right now.

        Checks short-circuit in order: minimum order value, then the
        coupon-type rule. Unmet conditions are returned as ineligible
        results, never raised.
        """
        total = to_decimal(cart_total)
        items = tuple(cart_items)

        if total < coupon.min_order_value:
            shortfall = coupon.min_order_value - total
            return EligibilityResult(
                eligible=False,
                reason_code=ReasonCode.MIN_ORDER,
                message=f"Add {CURRENCY_SYMBOL}{math.ceil(shortfall)} more to unlock",
                shortfall=shortfall,
            )

        if isinstance(coupon, CartWideCoupon):
            return _eligible()
        if isinstance(coupon, (ProductSpecificCoupon, BogoCoupon)):
            return self._evaluate_product_rule(coupon, items)
        if isinstance(coupon, CategoryBasedCoupon):
            return self._evaluate_category_rule(coupon, items)

        # Unknown coupon types stay applicable; the server decides on apply
        return _eligible()

    def _evaluate_product_rule(self, coupon, items) -> EligibilityResult:
        if not coupon.eligible_product_ids:
            return EligibilityResult(
                eligible=False,
                reason_code=ReasonCode.NO_ELIGIBLE_PRODUCTS,
                message=MSG_NO_PRODUCTS_CONFIGURED,
            )

        matching = [item for item in items if item.product_id in coupon.eligible_product_ids]
        eligible_quantity = sum(item.quantity for item in matching)

        if isinstance(coupon, BogoCoupon):
            total_required = coupon.bogo_buy_quantity + coupon.bogo_get_quantity
            if eligible_quantity < total_required:
                items_needed = total_required - eligible_quantity
                item_name = infer_item_name(matching[0].title if matching else None)
                plural = "s" if items_needed != 1 else ""
                return EligibilityResult(
                    eligible=False,
                    reason_code=ReasonCode.BOGO_INSUFFICIENT,
                    message=f"Add {items_needed} {item_name}{plural} more",
                    items_needed=items_needed,
                )
            return _eligible(MSG_OFFER_AVAILABLE)

        if eligible_quantity == 0:
            return EligibilityResult(
                eligible=False,
                reason_code=ReasonCode.NO_ELIGIBLE_IN_CART,
                message=MSG_ADD_ELIGIBLE_PRODUCTS,
            )
        return _eligible()

    def _evaluate_category_rule(self, coupon: CategoryBasedCoupon, items) -> EligibilityResult:
        # An empty category list means the coupon applies to everything
        if not coupon.eligible_category_ids:
            return _eligible()
        if not any(item.category_id in coupon.eligible_category_ids for item in items):
            return EligibilityResult(
                eligible=False,
                reason_code=ReasonCode.NO_ELIGIBLE_IN_CART,
                message=MSG_ADD_ELIGIBLE_ITEMS,
            )
        return _eligible()

    def estimate_savings(self, coupon: Coupon, cart_total) -> Decimal:
        """Savings estimate used to order eligible coupons."""
        if coupon.discount_type == DiscountType.PERCENT:
            savings = to_decimal(cart_total) * coupon.discount_value / Decimal("100")
            if coupon.max_discount is not None:
                savings = min(savings, coupon.max_discount)
            return savings
        return coupon.discount_value

    def rank_coupons(self, coupons: Iterable[Coupon], cart_total, cart_items: Sequence[CartItem]) -> RankedCoupons:
        """
        Partition coupons into eligible / ineligible and order both lists.

        Eligible: highest estimated savings first.
        Ineligible: smallest shortfall (or items needed) first; coupons with
        neither metric last. Both sorts are stable.
        """
        items = tuple(cart_items)
        eligible: List[Coupon] = []
        ineligible: List[tuple] = []

        for coupon in coupons:
            result = self.evaluate(coupon, cart_total, items)
            if result.eligible:
                eligible.append(coupon)
            else:
                ineligible.append((coupon, result))

        eligible.sort(key=lambda c: self.estimate_savings(c, cart_total), reverse=True)
        ineligible.sort(key=lambda pair: pair[1].sort_key)

        logger.debug(f"Ranked coupons: eligible={len(eligible)} ineligible={len(ineligible)}")
        return RankedCoupons(
            eligible=eligible,
            ineligible=[coupon for coupon, _ in ineligible],
        )

    def display_value(self, coupon: Coupon) -> str:
        """Headline text for a coupon card."""
        if isinstance(coupon, BogoCoupon):
            return f"Buy {coupon.bogo_buy_quantity} Get {coupon.bogo_get_quantity}"
        return format_discount_text(coupon)


def format_discount_text(coupon: Coupon) -> str:
    """'10% OFF (up to ₹100)' / '₹150 OFF'."""
    value = format_plain_number(coupon.discount_value)
    if coupon.discount_type == DiscountType.PERCENT:
        text = f"{value}% OFF"
        if coupon.max_discount is not None:
            text += f" (up to {CURRENCY_SYMBOL}{format_plain_number(coupon.max_discount)})"
        return text
    return f"{CURRENCY_SYMBOL}{value} OFF"


# Global instance for application use
eligibility_engine = CouponEligibilityEngine()
