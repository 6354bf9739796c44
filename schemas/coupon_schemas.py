"""
Coupon Schemas
==============

Coupons arrive from the storefront backend as loosely typed JSON: fields may
be missing, numbers may be strings, id lists may be JSON strings. Everything
passes through ``normalize_coupon`` once, at the boundary, and comes out as
one variant of a tagged union keyed by ``coupon_type``:

- cart_wide         -> CartWideCoupon
- product_specific  -> ProductSpecificCoupon (eligible_product_ids)
- bogo              -> BogoCoupon (eligible_product_ids, buy/get quantities)
- category_based    -> CategoryBasedCoupon (eligible_category_ids)
- anything else     -> UnrecognizedCoupon (kept, treated permissively)
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Union

from services.formatting import to_decimal
from settings import sanitize_code

logger = logging.getLogger(__name__)


class DiscountType(str, Enum):
    PERCENT = "Percent"
    FLAT = "Flat"


class CouponType(str, Enum):
    CART_WIDE = "cart_wide"
    PRODUCT_SPECIFIC = "product_specific"
    BOGO = "bogo"
    CATEGORY_BASED = "category_based"


class ReasonCode(str, Enum):
    MIN_ORDER = "min_order"
    NO_ELIGIBLE_PRODUCTS = "no_eligible_products"
    BOGO_INSUFFICIENT = "bogo_insufficient"
    NO_ELIGIBLE_IN_CART = "no_eligible_in_cart"
    ELIGIBLE = "eligible"


# Sort key for ineligible coupons that carry neither a shortfall nor a count
UNRANKED_SORT_KEY = 999999


# =============================================================================
# COUPON VARIANTS
# =============================================================================

@dataclass(frozen=True)
class CouponBase:
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    max_discount: Optional[Decimal] = None
    min_order_value: Decimal = Decimal("0")
    id: Optional[str] = None
    description: str = ""
    is_active: bool = True
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    usage_limit: Optional[int] = None
    usage_count: int = 0
    usage_per_user: Optional[int] = None

    @property
    def coupon_type(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class CartWideCoupon(CouponBase):
    @property
    def coupon_type(self) -> str:
        return CouponType.CART_WIDE.value


@dataclass(frozen=True)
class ProductSpecificCoupon(CouponBase):
    eligible_product_ids: FrozenSet[str] = frozenset()

    @property
    def coupon_type(self) -> str:
        return CouponType.PRODUCT_SPECIFIC.value


@dataclass(frozen=True)
class BogoCoupon(CouponBase):
    eligible_product_ids: FrozenSet[str] = frozenset()
    bogo_buy_quantity: int = 1
    bogo_get_quantity: int = 1
    bogo_discount_percent: Decimal = Decimal("100")

    @property
    def coupon_type(self) -> str:
        return CouponType.BOGO.value


@dataclass(frozen=True)
class CategoryBasedCoupon(CouponBase):
    eligible_category_ids: FrozenSet[str] = frozenset()

    @property
    def coupon_type(self) -> str:
        return CouponType.CATEGORY_BASED.value


@dataclass(frozen=True)
class UnrecognizedCoupon(CouponBase):
    raw_type: str = ""

    @property
    def coupon_type(self) -> str:
        return self.raw_type


Coupon = Union[
    CartWideCoupon,
    ProductSpecificCoupon,
    BogoCoupon,
    CategoryBasedCoupon,
    UnrecognizedCoupon,
]


# =============================================================================
# CART + RESULTS
# =============================================================================

@dataclass(frozen=True)
class CartItem:
    """Cart line as seen by the eligibility engine."""
    product_id: str
    quantity: int = 1
    category_id: Optional[str] = None
    title: str = ""
    price: Decimal = Decimal("0")


@dataclass(frozen=True)
class EligibilityResult:
    eligible: bool
    reason_code: ReasonCode
    message: str
    shortfall: Optional[Decimal] = None
    items_needed: Optional[int] = None

    @property
    def sort_key(self) -> Union[Decimal, int]:
        """Ranking key among ineligible coupons: closest to unlocking first."""
        if self.shortfall is not None:
            return self.shortfall
        if self.items_needed is not None:
            return self.items_needed
        return UNRANKED_SORT_KEY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "eligible": self.eligible,
            "reason_code": self.reason_code.value,
            "message": self.message,
            "shortfall": float(self.shortfall) if self.shortfall is not None else None,
            "items_needed": self.items_needed,
        }


@dataclass
class RankedCoupons:
    eligible: List[Coupon] = field(default_factory=list)
    ineligible: List[Coupon] = field(default_factory=list)


# =============================================================================
# NORMALIZATION
# =============================================================================

def _id_set(raw: Any) -> FrozenSet[str]:
    """Parse id collections given as list, JSON string, or comma separated string."""
    if raw is None:
        return frozenset()
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return frozenset()
        if text.startswith("["):
            try:
                raw = json.loads(text)
            except json.JSONDecodeError:
                logger.warning(f"Unparseable id list: {text[:80]}")
                return frozenset()
        else:
            raw = text.split(",")
    if not isinstance(raw, (list, tuple, set, frozenset)):
        return frozenset()
    ids = set()
    for value in raw:
        # Joined rows come back as {"id": ...} or {"product_id": ...}
        if isinstance(value, dict):
            value = value.get("product_id") or value.get("category_id") or value.get("id")
        if value is None or not str(value).strip():
            continue
        ids.add(str(value).strip())
    return frozenset(ids)


def _positive_int(raw: Any, default: int) -> int:
    try:
        value = int(float(raw))
    except (TypeError, ValueError):
        return default
    return value if value >= 1 else default


def _optional_int(raw: Any) -> Optional[int]:
    if raw in (None, ""):
        return None
    try:
        return int(float(raw))
    except (TypeError, ValueError):
        return None


def _parse_datetime(raw: Any) -> Optional[datetime]:
    if raw is None or isinstance(raw, datetime):
        return raw
    text = str(raw).strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Unparseable coupon date: {text}")
        return None


def _parse_discount_type(raw: Any) -> DiscountType:
    text = str(raw or "").strip().lower()
    if text in ("percent", "percentage", "%"):
        return DiscountType.PERCENT
    return DiscountType.FLAT


def _parse_max_discount(raw: Any) -> Optional[Decimal]:
    value = to_decimal(raw, default=None)
    # Backend stores "no cap" as null or 0
    if value is None or value <= 0:
        return None
    return value


def normalize_coupon(raw: Dict[str, Any]) -> Coupon:
    """
    Normalize a backend coupon definition into a typed coupon variant.

    Args:
        raw: Coupon JSON as returned by the storefront backend

    Returns:
        One of the ``Coupon`` variants. Never raises for missing or
        malformed optional fields.
    """
    common: Dict[str, Any] = {
        "code": sanitize_code(raw.get("code")) or "",
        "discount_type": _parse_discount_type(raw.get("discount_type")),
        "discount_value": to_decimal(raw.get("discount_value")),
        "max_discount": _parse_max_discount(raw.get("max_discount")),
        "min_order_value": max(to_decimal(raw.get("min_order_value")), Decimal("0")),
        "id": str(raw["id"]) if raw.get("id") is not None else None,
        "description": str(raw.get("description") or ""),
        "is_active": bool(raw.get("is_active", True)),
        "start_date": _parse_datetime(raw.get("start_date")),
        "end_date": _parse_datetime(raw.get("end_date")),
        "usage_limit": _optional_int(raw.get("usage_limit")),
        "usage_count": _optional_int(raw.get("usage_count")) or 0,
        "usage_per_user": _optional_int(raw.get("usage_per_user")),
    }

    coupon_type = str(raw.get("coupon_type") or CouponType.CART_WIDE.value).strip().lower()
    product_ids = _id_set(raw.get("eligible_product_ids", raw.get("eligible_products")))

    if coupon_type == CouponType.CART_WIDE.value:
        return CartWideCoupon(**common)
    if coupon_type == CouponType.PRODUCT_SPECIFIC.value:
        return ProductSpecificCoupon(eligible_product_ids=product_ids, **common)
    if coupon_type == CouponType.BOGO.value:
        return BogoCoupon(
            eligible_product_ids=product_ids,
            bogo_buy_quantity=_positive_int(raw.get("bogo_buy_quantity"), 1),
            bogo_get_quantity=_positive_int(raw.get("bogo_get_quantity"), 1),
            bogo_discount_percent=to_decimal(raw.get("bogo_discount_percent"), default="100"),
            **common,
        )
    if coupon_type == CouponType.CATEGORY_BASED.value:
        return CategoryBasedCoupon(
            eligible_category_ids=_id_set(
                raw.get("eligible_category_ids", raw.get("eligible_categories"))
            ),
            **common,
        )

    logger.info(f"Coupon {common['code']} has unrecognized coupon_type={coupon_type!r}")
    return UnrecognizedCoupon(raw_type=coupon_type, **common)


def normalize_cart_item(raw: Dict[str, Any]) -> CartItem:
    """Normalize a cart line (product or bundle entry) for eligibility checks."""
    product_id = raw.get("product_id") or raw.get("bundle_id") or raw.get("id") or ""
    category_id = raw.get("category_id")
    return CartItem(
        product_id=str(product_id),
        quantity=_positive_int(raw.get("quantity"), 1),
        category_id=str(category_id) if category_id not in (None, "") else None,
        title=str(raw.get("title") or raw.get("name") or ""),
        price=to_decimal(raw.get("price")),
    )
