import sys
from decimal import Decimal
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from schemas.coupon_schemas import (
    BogoCoupon,
    CartItem,
    CartWideCoupon,
    CategoryBasedCoupon,
    DiscountType,
    ProductSpecificCoupon,
    ReasonCode,
    UnrecognizedCoupon,
    normalize_cart_item,
    normalize_coupon,
)
from services.coupon_eligibility import (
    CouponEligibilityEngine,
    eligibility_engine,
    format_discount_text,
    infer_item_name,
)


def _percent(code, value, cap=None, min_order="0"):
    return CartWideCoupon(
        code=code,
        discount_type=DiscountType.PERCENT,
        discount_value=Decimal(value),
        max_discount=Decimal(cap) if cap is not None else None,
        min_order_value=Decimal(min_order),
    )


def _flat(code, value, min_order="0"):
    return CartWideCoupon(
        code=code,
        discount_type=DiscountType.FLAT,
        discount_value=Decimal(value),
        min_order_value=Decimal(min_order),
    )


def _bogo(code="BOGO", product_ids=("p1",), buy=1, get=1):
    return BogoCoupon(
        code=code,
        discount_type=DiscountType.PERCENT,
        discount_value=Decimal("100"),
        eligible_product_ids=frozenset(product_ids),
        bogo_buy_quantity=buy,
        bogo_get_quantity=get,
    )


RING = CartItem(product_id="p1", quantity=1, title="Gold Ring", price=Decimal("500"))


class TestEvaluate:
    def test_min_order_shortfall(self):
        result = eligibility_engine.evaluate(_flat("WELCOME", "100", min_order="1000"), 750, [])

        assert not result.eligible
        assert result.reason_code == ReasonCode.MIN_ORDER
        assert result.shortfall == Decimal("250")
        assert "250" in result.message
        assert result.message == "Add ₹250 more to unlock"

    def test_min_order_shortfall_rounds_up_in_message(self):
        result = eligibility_engine.evaluate(_flat("X", "10", min_order="500"), "349.50", [])
        assert result.shortfall == Decimal("150.50")
        assert result.message == "Add ₹151 more to unlock"

    def test_min_order_met_exactly(self):
        result = eligibility_engine.evaluate(_flat("X", "10", min_order="1000"), 1000, [])
        assert result.eligible
        assert result.reason_code == ReasonCode.ELIGIBLE
        assert result.message == "Ready to apply"

    def test_bogo_needs_one_more_ring(self):
        result = eligibility_engine.evaluate(_bogo(), 500, [RING])

        assert not result.eligible
        assert result.reason_code == ReasonCode.BOGO_INSUFFICIENT
        assert result.items_needed == 1
        assert result.message == "Add 1 ring more"

    def test_bogo_with_two_rings_is_available(self):
        two_rings = CartItem(product_id="p1", quantity=2, title="Gold Ring", price=Decimal("500"))
        result = eligibility_engine.evaluate(_bogo(), 1000, [two_rings])

        assert result.eligible
        assert result.message == "Offer available"

    def test_bogo_counts_quantity_across_lines(self):
        other = CartItem(product_id="p2", quantity=1, title="Silver Ring")
        result = eligibility_engine.evaluate(_bogo(product_ids=("p1", "p2")), 1000, [RING, other])
        assert result.eligible

    def test_bogo_pluralizes_generic_item(self):
        coupon = _bogo(product_ids=("p9",), buy=2, get=1)
        result = eligibility_engine.evaluate(coupon, 500, [RING])

        assert result.items_needed == 3
        assert result.message == "Add 3 items more"

    def test_min_order_is_checked_before_bogo_rule(self):
        coupon = BogoCoupon(
            code="BOGO",
            discount_type=DiscountType.PERCENT,
            discount_value=Decimal("100"),
            min_order_value=Decimal("2000"),
            eligible_product_ids=frozenset({"p1"}),
        )
        result = eligibility_engine.evaluate(coupon, 500, [RING])
        assert result.reason_code == ReasonCode.MIN_ORDER

    @pytest.mark.parametrize("cart", [[], [RING], [RING, CartItem(product_id="p2", quantity=5)]])
    def test_product_coupon_without_ids_is_never_eligible(self, cart):
        coupon = ProductSpecificCoupon(
            code="EMPTY",
            discount_type=DiscountType.FLAT,
            discount_value=Decimal("50"),
        )
        result = eligibility_engine.evaluate(coupon, 10_000, cart)

        assert not result.eligible
        assert result.reason_code == ReasonCode.NO_ELIGIBLE_PRODUCTS
        assert result.message == "No products configured"

    def test_product_coupon_needs_a_matching_item(self):
        coupon = ProductSpecificCoupon(
            code="RINGS",
            discount_type=DiscountType.FLAT,
            discount_value=Decimal("50"),
            eligible_product_ids=frozenset({"p7"}),
        )
        missing = eligibility_engine.evaluate(coupon, 500, [RING])
        assert missing.reason_code == ReasonCode.NO_ELIGIBLE_IN_CART
        assert missing.message == "Add eligible products"

        present = eligibility_engine.evaluate(coupon, 500, [CartItem(product_id="p7")])
        assert present.eligible

    def test_category_coupon(self):
        coupon = CategoryBasedCoupon(
            code="EARRINGS",
            discount_type=DiscountType.PERCENT,
            discount_value=Decimal("5"),
            eligible_category_ids=frozenset({"c1"}),
        )
        miss = eligibility_engine.evaluate(coupon, 500, [CartItem(product_id="p1", category_id="c2")])
        assert miss.reason_code == ReasonCode.NO_ELIGIBLE_IN_CART
        assert miss.message == "Add eligible items"

        hit = eligibility_engine.evaluate(coupon, 500, [CartItem(product_id="p1", category_id="c1")])
        assert hit.eligible

    def test_category_coupon_without_categories_applies_to_everything(self):
        coupon = CategoryBasedCoupon(
            code="ALL",
            discount_type=DiscountType.PERCENT,
            discount_value=Decimal("5"),
        )
        assert eligibility_engine.evaluate(coupon, 500, []).eligible

    def test_unknown_coupon_type_is_permissive(self):
        coupon = UnrecognizedCoupon(
            code="NEW",
            discount_type=DiscountType.FLAT,
            discount_value=Decimal("10"),
            raw_type="loyalty_tier",
        )
        assert eligibility_engine.evaluate(coupon, 0, []).eligible

    def test_evaluation_is_deterministic(self):
        engine = CouponEligibilityEngine()
        coupon = _bogo()
        first = engine.evaluate(coupon, 500, [RING])
        second = engine.evaluate(coupon, 500, [RING])
        assert first == second
        assert first.to_dict() == second.to_dict()


class TestRanking:
    def test_eligible_sorted_by_estimated_savings(self):
        a = _percent("SAVE10", "10", cap="100")
        b = _flat("FLAT150", "150")

        ranked = eligibility_engine.rank_coupons([a, b], 2000, [])

        assert [c.code for c in ranked.eligible] == ["FLAT150", "SAVE10"]
        assert ranked.ineligible == []

    def test_uncapped_percent_beats_flat(self):
        a = _percent("SAVE10", "10")
        b = _flat("FLAT150", "150")
        ranked = eligibility_engine.rank_coupons([b, a], 2000, [])
        assert [c.code for c in ranked.eligible] == ["SAVE10", "FLAT150"]

    def test_ineligible_sorted_by_closeness(self):
        far = _flat("FAR", "100", min_order="800")
        near = _flat("NEAR", "50", min_order="350")
        ranked = eligibility_engine.rank_coupons([far, near], 300, [])

        assert ranked.eligible == []
        assert [c.code for c in ranked.ineligible] == ["NEAR", "FAR"]

    def test_coupons_without_a_metric_rank_last(self):
        no_ids = ProductSpecificCoupon(
            code="NOIDS",
            discount_type=DiscountType.FLAT,
            discount_value=Decimal("999"),
        )
        near = _flat("NEAR", "50", min_order="350")
        bogo = _bogo()
        ranked = eligibility_engine.rank_coupons([no_ids, near, bogo], 300, [RING])

        # BOGO needs 1 item, NEAR needs ₹50, NOIDS has no metric
        assert [c.code for c in ranked.ineligible] == ["BOGO", "NEAR", "NOIDS"]

    def test_ties_keep_input_order(self):
        first = _flat("FIRST", "100")
        second = _flat("SECOND", "100")
        third = _flat("THIRD", "100")
        ranked = eligibility_engine.rank_coupons([first, second, third], 500, [])
        assert [c.code for c in ranked.eligible] == ["FIRST", "SECOND", "THIRD"]

    def test_partitions_mixed_list(self):
        coupons = [_flat("LOCKED", "100", min_order="5000"), _percent("OPEN", "5")]
        ranked = eligibility_engine.rank_coupons(coupons, 1000, [])
        assert [c.code for c in ranked.eligible] == ["OPEN"]
        assert [c.code for c in ranked.ineligible] == ["LOCKED"]


class TestDisplay:
    def test_percent_with_cap(self):
        assert eligibility_engine.display_value(_percent("A", "10", cap="100")) == "10% OFF (up to ₹100)"

    def test_percent_without_cap(self):
        assert format_discount_text(_percent("A", "12.5")) == "12.5% OFF"

    def test_flat(self):
        assert eligibility_engine.display_value(_flat("B", "150.00")) == "₹150 OFF"

    def test_bogo(self):
        assert eligibility_engine.display_value(_bogo(buy=2, get=1)) == "Buy 2 Get 1"

    @pytest.mark.parametrize(
        "title, expected",
        [
            ("Gold Ring", "ring"),
            ("Silver Bracelet Set", "bracelet"),
            ("Pearl Necklace", "necklace"),
            ("Jhumka Earrings", "ring"),  # first keyword match wins
            ("Gift Card", "item"),
            (None, "item"),
        ],
    )
    def test_infer_item_name(self, title, expected):
        assert infer_item_name(title) == expected


class TestNormalization:
    def test_normalize_product_coupon(self):
        coupon = normalize_coupon({
            "id": 7,
            "code": " save10 ",
            "discount_type": "percentage",
            "discount_value": "10",
            "max_discount": 0,
            "min_order_value": None,
            "coupon_type": "product_specific",
            "eligible_product_ids": '["p1", "p2"]',
        })
        assert isinstance(coupon, ProductSpecificCoupon)
        assert coupon.code == "SAVE10"
        assert coupon.id == "7"
        assert coupon.discount_type == DiscountType.PERCENT
        assert coupon.max_discount is None
        assert coupon.min_order_value == Decimal("0")
        assert coupon.eligible_product_ids == frozenset({"p1", "p2"})

    def test_missing_coupon_type_is_cart_wide(self):
        coupon = normalize_coupon({"code": "FLAT50", "discount_type": "Fixed", "discount_value": 50})
        assert isinstance(coupon, CartWideCoupon)
        assert coupon.discount_type == DiscountType.FLAT

    def test_bogo_defaults(self):
        coupon = normalize_coupon({
            "code": "B1G1",
            "coupon_type": "bogo",
            "discount_type": "Percent",
            "discount_value": 100,
            "eligible_products": [{"product_id": "p1"}, {"id": "p2"}],
            "bogo_buy_quantity": None,
            "bogo_get_quantity": "0",
        })
        assert isinstance(coupon, BogoCoupon)
        assert coupon.bogo_buy_quantity == 1
        assert coupon.bogo_get_quantity == 1
        assert coupon.eligible_product_ids == frozenset({"p1", "p2"})

    def test_category_ids_from_csv(self):
        coupon = normalize_coupon({
            "code": "CAT",
            "coupon_type": "category_based",
            "discount_type": "Flat",
            "discount_value": 20,
            "eligible_category_ids": "c1, c2",
        })
        assert coupon.eligible_category_ids == frozenset({"c1", "c2"})

    def test_unknown_type_is_kept(self):
        coupon = normalize_coupon({"code": "NEW", "coupon_type": "Loyalty_Tier", "discount_value": 5})
        assert isinstance(coupon, UnrecognizedCoupon)
        assert coupon.coupon_type == "loyalty_tier"

    def test_cart_item_from_bundle_line(self):
        item = normalize_cart_item({"bundle_id": "b1", "quantity": "3", "name": "Bridal Set", "price": "1999"})
        assert item.product_id == "b1"
        assert item.quantity == 3
        assert item.title == "Bridal Set"
        assert item.price == Decimal("1999")
