"""
Coupon helper functions: code formatting, unlock/savings text, discount
amounts, status badges and user-facing error messages.
"""
from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple

from schemas.coupon_schemas import BogoCoupon, CartItem, Coupon, DiscountType
from services.formatting import round_rupee, to_decimal
from settings import (
    COUPON_CODE_MAX_LENGTH,
    COUPON_CODE_MIN_LENGTH,
    CURRENCY_SYMBOL,
    sanitize_code,
)

logger = logging.getLogger(__name__)

_CODE_PATTERN = re.compile(r"^[A-Za-z0-9-]+$")


# ===============================================================================
# Code formatting
# ===============================================================================

def format_coupon_code(code: Optional[str]) -> str:
    return sanitize_code(code) or ""


def validate_coupon_format(code: Any) -> Tuple[bool, Optional[str]]:
    """
    Client-side format check before any backend call.

    Returns:
        (True, None) when the code looks valid, else (False, error message).
    """
    if not isinstance(code, str) or not code.strip():
        return False, "Please enter a coupon code"

    trimmed = code.strip()
    if len(trimmed) < COUPON_CODE_MIN_LENGTH:
        return False, "Coupon code is too short"
    if len(trimmed) > COUPON_CODE_MAX_LENGTH:
        return False, "Coupon code is too long"
    if not _CODE_PATTERN.match(trimmed):
        return False, "Coupon code can only contain letters, numbers, and hyphens"
    return True, None


# ===============================================================================
# Unlock / savings text
# ===============================================================================

def is_coupon_unlocked(coupon: Coupon, cart_total) -> bool:
    if not coupon.min_order_value:
        return True
    return to_decimal(cart_total) >= coupon.min_order_value


def get_unlock_message(coupon: Coupon, cart_total) -> str:
    if not coupon.min_order_value:
        return "Available now"
    if is_coupon_unlocked(coupon, cart_total):
        return "Unlocked!"
    shortfall = coupon.min_order_value - to_decimal(cart_total)
    return f"Add {CURRENCY_SYMBOL}{math.ceil(shortfall)} more to unlock"


def format_savings_text(discount) -> str:
    amount = to_decimal(discount)
    if amount <= 0:
        return ""
    return f"You saved {CURRENCY_SYMBOL}{round_rupee(amount)}!"


# ===============================================================================
# Discount amounts
# ===============================================================================

def calculate_discount(coupon: Coupon, cart_subtotal) -> int:
    """
    Discount a coupon grants on a subtotal, rounded to the rupee.

    Percent discounts honour ``max_discount``; flat discounts never exceed
    the subtotal.
    """
    subtotal = to_decimal(cart_subtotal)
    if subtotal <= 0:
        return 0

    if coupon.discount_type == DiscountType.PERCENT:
        discount = subtotal * coupon.discount_value / Decimal("100")
        if coupon.max_discount is not None:
            discount = min(discount, coupon.max_discount)
    else:
        discount = min(coupon.discount_value, subtotal)
    return round_rupee(discount)


def calculate_bogo_discount(coupon: BogoCoupon, eligible_items: Sequence[CartItem]) -> int:
    """
    BOGO discount: the cheapest units, one ``get`` batch per complete
    buy+get set, discounted by ``bogo_discount_percent`` (100 = free).
    """
    required = coupon.bogo_buy_quantity + coupon.bogo_get_quantity
    unit_prices = sorted(
        item.price for item in eligible_items for _ in range(max(item.quantity, 0))
    )
    sets = len(unit_prices) // required
    free_units = sets * coupon.bogo_get_quantity
    if free_units == 0:
        return 0

    rate = coupon.bogo_discount_percent / Decimal("100")
    discount = sum((price * rate for price in unit_prices[:free_units]), Decimal("0"))
    logger.debug(f"BOGO {coupon.code}: sets={sets} free_units={free_units} discount={discount}")
    return round_rupee(discount)


# ===============================================================================
# Status badge
# ===============================================================================

@dataclass(frozen=True)
class CouponStatus:
    status: str
    color: str
    label: str


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def get_coupon_status(coupon: Coupon, now: Optional[datetime] = None) -> CouponStatus:
    """Admin badge for a coupon: inactive, scheduled, expired, exhausted or active."""
    now = _aware(now or datetime.now(timezone.utc))

    if not coupon.is_active:
        return CouponStatus("inactive", "gray", "Inactive")
    if coupon.start_date and now < _aware(coupon.start_date):
        return CouponStatus("scheduled", "blue", "Scheduled")
    if coupon.end_date and now > _aware(coupon.end_date):
        return CouponStatus("expired", "red", "Expired")
    if coupon.usage_limit and coupon.usage_count >= coupon.usage_limit:
        return CouponStatus("exhausted", "orange", "Limit Reached")
    return CouponStatus("active", "green", "Active")


def remaining_uses(coupon: Coupon) -> Optional[int]:
    if not coupon.usage_limit:
        return None
    return max(0, coupon.usage_limit - coupon.usage_count)


# ===============================================================================
# Error messages
# ===============================================================================

class CouponErrorCode(str, Enum):
    COUPON_NOT_FOUND = "COUPON_NOT_FOUND"
    COUPON_INVALID = "COUPON_INVALID"
    INVALID_FORMAT = "INVALID_FORMAT"
    MISSING_CODE = "MISSING_CODE"
    USAGE_LIMIT_REACHED = "USAGE_LIMIT_REACHED"
    USER_LIMIT_REACHED = "USER_LIMIT_REACHED"
    MIN_ORDER_NOT_MET = "MIN_ORDER_NOT_MET"
    INVALID_CART_TOTAL = "INVALID_CART_TOTAL"
    AUTH_REQUIRED = "AUTH_REQUIRED"
    SERVER_ERROR = "SERVER_ERROR"
    VALIDATION_FAILED = "VALIDATION_FAILED"


FALLBACK_ERROR_MESSAGE = "Unable to apply coupon. Please try again."

_ERROR_MESSAGES: Dict[str, str] = {
    CouponErrorCode.COUPON_NOT_FOUND.value: "Invalid coupon code. Please check and try again.",
    CouponErrorCode.COUPON_INVALID.value: "This coupon is not valid or has expired.",
    CouponErrorCode.INVALID_FORMAT.value: "Please enter a valid coupon code.",
    CouponErrorCode.MISSING_CODE.value: "Please enter a coupon code.",
    CouponErrorCode.USAGE_LIMIT_REACHED.value: "This coupon has reached its maximum usage limit.",
    CouponErrorCode.INVALID_CART_TOTAL.value: "Invalid cart total. Please refresh and try again.",
    CouponErrorCode.AUTH_REQUIRED.value: "Please log in to use coupons.",
    CouponErrorCode.SERVER_ERROR.value: "Unable to validate coupon. Please try again.",
}

# Codes where the server's own message is more specific than ours
_PREFER_SERVER_MESSAGE: Dict[str, str] = {
    CouponErrorCode.USER_LIMIT_REACHED.value: "You have already used this coupon the maximum number of times.",
    CouponErrorCode.MIN_ORDER_NOT_MET.value: "Your cart total does not meet the minimum order value.",
    CouponErrorCode.VALIDATION_FAILED.value: FALLBACK_ERROR_MESSAGE,
}

_WARNING_CODES = {
    CouponErrorCode.MIN_ORDER_NOT_MET.value,
    CouponErrorCode.USER_LIMIT_REACHED.value,
    CouponErrorCode.USAGE_LIMIT_REACHED.value,
}

_USER_FIXABLE_CODES = {
    CouponErrorCode.MIN_ORDER_NOT_MET.value,
    CouponErrorCode.INVALID_FORMAT.value,
    CouponErrorCode.MISSING_CODE.value,
    CouponErrorCode.COUPON_NOT_FOUND.value,
}


def _code_value(code: Any) -> str:
    return code.value if isinstance(code, CouponErrorCode) else str(code or "")


def get_coupon_error_message(code: Any, shortfall=None, original_message: str = "") -> str:
    """Map a backend error code (plus shortfall) to a user-facing message."""
    code = _code_value(code)
    if code == CouponErrorCode.MIN_ORDER_NOT_MET.value and shortfall:
        amount = math.ceil(to_decimal(shortfall))
        return f"Add {CURRENCY_SYMBOL}{amount} more to your cart to use this coupon"
    if code in _ERROR_MESSAGES:
        return _ERROR_MESSAGES[code]
    if code in _PREFER_SERVER_MESSAGE:
        return original_message or _PREFER_SERVER_MESSAGE[code]
    return original_message or FALLBACK_ERROR_MESSAGE


def get_coupon_error_variant(code: Any) -> str:
    """Toast variant: 'warning' for limits and minimums, 'error' otherwise."""
    return "warning" if _code_value(code) in _WARNING_CODES else "error"


def is_user_fixable_error(code: Any) -> bool:
    return _code_value(code) in _USER_FIXABLE_CODES
