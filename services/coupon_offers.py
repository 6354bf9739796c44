"""
Checkout "available offers" feed.

Fetches active coupons for the current cart total (debounced, latest-wins)
and ranks them with the eligibility engine against the cart snapshot.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from schemas.coupon_schemas import CartItem, Coupon, EligibilityResult, RankedCoupons
from services.backend_client import BackendClient
from services.concurrency_control import LatestResultGuard
from services.coupon_eligibility import CouponEligibilityEngine, eligibility_engine
from services.formatting import to_decimal

logger = logging.getLogger(__name__)


@dataclass
class CouponOffers:
    """
    Ranked offers plus the result each coupon was ranked by.

    Results are paired with the coupon object itself, so coupons sharing a
    code (or having none) never see each other's result.
    """
    ranked: RankedCoupons
    results: List[Tuple[Coupon, EligibilityResult]] = field(default_factory=list)

    def result_for(self, coupon: Coupon) -> Optional[EligibilityResult]:
        for candidate, result in self.results:
            if candidate is coupon:
                return result
        return None

    def to_dict(self, engine: CouponEligibilityEngine = eligibility_engine) -> Dict[str, Any]:
        def entry(coupon: Coupon) -> Dict[str, Any]:
            result = self.result_for(coupon)
            return {
                "code": coupon.code,
                "coupon_type": coupon.coupon_type,
                "description": coupon.description,
                "display_value": engine.display_value(coupon),
                "result": result.to_dict() if result else None,
            }

        return {
            "eligible": [entry(c) for c in self.ranked.eligible],
            "ineligible": [entry(c) for c in self.ranked.ineligible],
        }


def build_offers(
    coupons: Sequence[Coupon],
    cart_total,
    cart_items: Sequence[CartItem],
    engine: CouponEligibilityEngine = eligibility_engine,
) -> CouponOffers:
    """Rank a coupon snapshot and keep each coupon's evaluation."""
    items = tuple(cart_items)
    ranked = engine.rank_coupons(coupons, cart_total, items)
    results = [(coupon, engine.evaluate(coupon, cart_total, items)) for coupon in coupons]
    return CouponOffers(ranked=ranked, results=results)


class CouponOffersService:
    """
    Keeps the offers list in step with a changing cart.

    Each ``refresh`` supersedes the previous one: only the latest call gets
    offers back, older calls return None.
    """

    def __init__(
        self,
        client: Optional[BackendClient] = None,
        guard: Optional[LatestResultGuard] = None,
        engine: CouponEligibilityEngine = eligibility_engine,
    ):
        self.client = client or BackendClient()
        self.guard = guard or LatestResultGuard(name="active-coupons")
        self.engine = engine

    async def refresh(self, cart_total, cart_items: Sequence[CartItem]) -> Optional[CouponOffers]:
        total = to_decimal(cart_total)
        items = tuple(cart_items)

        coupons = await self.guard.run(lambda: self.client.get_active_coupons(total))
        if coupons is None:
            return None

        offers = build_offers(coupons, total, items, self.engine)
        logger.info(
            f"Offers refreshed: cart_total={total} eligible={len(offers.ranked.eligible)} "
            f"ineligible={len(offers.ranked.ineligible)}"
        )
        return offers

    def unlock_messages(self, offers: CouponOffers) -> List[str]:
        """Hints for the locked coupons ("Add ₹N more to unlock"), closest first."""
        return [offers.result_for(coupon).message for coupon in offers.ranked.ineligible]

    def close(self) -> None:
        self.guard.cancel()
