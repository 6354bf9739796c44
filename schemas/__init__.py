"""
Schemas Package
Typed data structures for bundles, coupons and carts.
"""

from .bundle_schemas import (
    # Bundle schemas
    BundleDraft,
    BundleLineItem,
    BundleItemPayloadDict,

    # Pricing schemas
    BundlePricingResult,
    BundlePricingDict,
    PricingMode,

    # Helper functions
    normalize_bundle_draft,
    normalize_line_item,
    parse_tags,
)

from .coupon_schemas import (
    # Coupon variants
    Coupon,
    CouponBase,
    CartWideCoupon,
    ProductSpecificCoupon,
    BogoCoupon,
    CategoryBasedCoupon,
    UnrecognizedCoupon,

    # Enums
    CouponType,
    DiscountType,
    ReasonCode,

    # Cart + results
    CartItem,
    EligibilityResult,
    RankedCoupons,
    UNRANKED_SORT_KEY,

    # Helper functions
    normalize_coupon,
    normalize_cart_item,
)
