"""
Coupons Router
Eligibility pre-check and ranking for checkout coupon lists
"""
from fastapi import APIRouter
from pydantic import BaseModel
from decimal import Decimal
from typing import List, Dict, Any, Optional
import logging

from schemas.coupon_schemas import BogoCoupon, normalize_cart_item, normalize_coupon
from services.coupon_eligibility import eligibility_engine
from services.coupon_helpers import (
    calculate_bogo_discount,
    calculate_discount,
    format_coupon_code,
    get_unlock_message,
    validate_coupon_format,
)
from services.coupon_offers import build_offers

logger = logging.getLogger(__name__)
router = APIRouter()


class CartSnapshotRequest(BaseModel):
    cart_total: Decimal = Decimal("0")
    cart_items: List[Dict[str, Any]] = []
    coupons: List[Dict[str, Any]] = []


class CouponCodeRequest(BaseModel):
    code: Optional[str] = None


@router.post("/coupons/evaluate")
async def evaluate_coupons(request: CartSnapshotRequest):
    """One eligibility result per coupon, in request order"""
    items = [normalize_cart_item(raw) for raw in request.cart_items]
    coupons = [normalize_coupon(raw) for raw in request.coupons]

    results = []
    for coupon in coupons:
        result = eligibility_engine.evaluate(coupon, request.cart_total, items)
        if isinstance(coupon, BogoCoupon):
            matching = [item for item in items if item.product_id in coupon.eligible_product_ids]
            estimated = calculate_bogo_discount(coupon, matching)
        else:
            estimated = calculate_discount(coupon, request.cart_total)
        results.append({
            "code": coupon.code,
            "coupon_type": coupon.coupon_type,
            "display_value": eligibility_engine.display_value(coupon),
            "unlock_message": get_unlock_message(coupon, request.cart_total),
            "estimated_discount": estimated if result.eligible else 0,
            **result.to_dict(),
        })
    return {"results": results}


@router.post("/coupons/rank")
async def rank_coupons(request: CartSnapshotRequest):
    """Eligible coupons by savings, ineligible ones by how close they are to unlocking"""
    items = [normalize_cart_item(raw) for raw in request.cart_items]
    coupons = [normalize_coupon(raw) for raw in request.coupons]
    offers = build_offers(coupons, request.cart_total, items, eligibility_engine)
    return offers.to_dict(eligibility_engine)


@router.post("/coupons/format-check")
async def check_coupon_format(request: CouponCodeRequest):
    valid, error = validate_coupon_format(request.code)
    return {
        "valid": valid,
        "code": format_coupon_code(request.code) if valid else None,
        "error": error,
    }
