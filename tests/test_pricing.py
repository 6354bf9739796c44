import sys
from decimal import Decimal
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from schemas.bundle_schemas import (
    BundleLineItem,
    BundlePricingResult,
    PricingMode,
    normalize_bundle_draft,
    normalize_line_item,
)
from services.formatting import format_price, format_savings_label, round_currency, to_decimal
from services.pricing import BundlePricingEngine, pricing_engine


def _items():
    return [
        BundleLineItem(unit_price=Decimal("500"), quantity=2, product_id="p1"),
        BundleLineItem(unit_price=Decimal("300"), quantity=1, product_id="p2"),
    ]


def test_original_price_sums_unit_price_times_quantity():
    assert pricing_engine.compute_original_price(_items()) == Decimal("1300")


def test_original_price_of_empty_bundle_is_zero():
    assert pricing_engine.compute_original_price([]) == Decimal("0")


def test_original_price_keeps_fractional_amounts():
    items = [BundleLineItem(unit_price=Decimal("99.99"), quantity=3)]
    assert pricing_engine.compute_original_price(items) == Decimal("299.97")


@pytest.mark.parametrize("bundle_price", [0, 1, 500, 10_000])
def test_zero_original_price_is_neutral(bundle_price):
    assert pricing_engine.classify_pricing(0, bundle_price) == (PricingMode.NEUTRAL, 0)


def test_negative_original_price_is_neutral():
    assert pricing_engine.classify_pricing(-400, 100) == (PricingMode.NEUTRAL, 0)


@pytest.mark.parametrize(
    "original, bundle, expected",
    [
        (1000, 750, (PricingMode.DISCOUNT, 25)),
        (1000, 1250, (PricingMode.MARKUP, 25)),
        (1000, 667, (PricingMode.DISCOUNT, 33)),
        (1000, 663, (PricingMode.DISCOUNT, 34)),
        (1000, 1000, (PricingMode.NEUTRAL, 0)),
        (200, 199, (PricingMode.DISCOUNT, 1)),   # 0.5% rounds half-up
        (200, 201, (PricingMode.MARKUP, 1)),
    ],
)
def test_classify_pricing_rounds_half_up(original, bundle, expected):
    assert pricing_engine.classify_pricing(original, bundle) == expected


def test_classify_pricing_accepts_strings_and_floats():
    assert pricing_engine.classify_pricing("1,000", 750.0) == (PricingMode.DISCOUNT, 25)


@pytest.mark.parametrize("original", [0, 100, 1000, 1300])
@pytest.mark.parametrize("bundle", [0, 50, 100, 999, 1000, 1300, 1500])
def test_pricing_result_is_total_and_exclusive(original, bundle):
    items = [BundleLineItem(unit_price=Decimal(original), quantity=1)]
    result = pricing_engine.price_bundle(items, bundle)

    assert result.mode in (PricingMode.DISCOUNT, PricingMode.MARKUP, PricingMode.NEUTRAL)
    assert not (result.discount_percent > 0 and result.markup_percent > 0)
    assert (result.discount_percent > 0) == (result.mode == PricingMode.DISCOUNT)
    assert (result.markup_percent > 0) == (result.mode == PricingMode.MARKUP)


def test_sub_one_percent_difference_reads_as_neutral():
    items = [BundleLineItem(unit_price=Decimal("1000"))]
    result = pricing_engine.price_bundle(items, 999)
    assert result.mode == PricingMode.NEUTRAL
    assert result.discount_percent == 0
    assert result.savings == Decimal("1")


def test_price_bundle_discount_snapshot():
    result = pricing_engine.price_bundle(_items(), Decimal("1000"))

    assert result.original_price == Decimal("1300")
    assert result.mode == PricingMode.DISCOUNT
    assert result.discount_percent == 23
    assert result.markup_percent == 0
    assert result.savings == Decimal("300")
    assert result.to_dict() == {
        "original_price": 1300.0,
        "bundle_price": 1000.0,
        "mode": "discount",
        "discount_percent": 23,
        "markup_percent": 0,
        "signed_percent": 23,
        "savings": 300.0,
    }


def test_price_bundle_markup_snapshot():
    result = pricing_engine.price_bundle(_items(), Decimal("1625"))

    assert result.mode == PricingMode.MARKUP
    assert result.markup_percent == 25
    assert result.discount_percent == 0
    assert result.signed_percent == -25
    assert result.savings == Decimal("-325")


def test_signed_and_two_field_forms_convert_both_ways():
    markup = BundlePricingResult.from_signed_percent(Decimal("1000"), Decimal("1250"), -25)
    assert markup.mode == PricingMode.MARKUP
    assert (markup.discount_percent, markup.markup_percent) == (0, 25)
    assert markup.signed_percent == -25

    discount = BundlePricingResult.from_signed_percent(Decimal("1000"), Decimal("750"), 25)
    assert (discount.discount_percent, discount.markup_percent) == (25, 0)

    neutral = BundlePricingResult.from_signed_percent(Decimal("0"), Decimal("10"), None)
    assert neutral.mode == PricingMode.NEUTRAL
    assert neutral.signed_percent == 0


def test_describe_builds_badges_and_labels():
    engine = BundlePricingEngine()
    discount = engine.describe(engine.price_bundle(_items(), 1000))
    assert discount == {
        "original_price": "₹1,300",
        "bundle_price": "₹1,000",
        "savings": "Save ₹300",
        "badge": "23% OFF",
    }

    markup = engine.describe(engine.price_bundle(_items(), 1625))
    assert markup["badge"] == "+25% Markup"
    assert markup["savings"] == "+₹325 Margin"

    neutral = engine.describe(engine.price_bundle(_items(), 1300))
    assert neutral["badge"] == ""
    assert neutral["savings"] == ""


class TestFormatting:
    def test_format_price_uses_indian_grouping(self):
        assert format_price(Decimal("1234567.5")) == "₹12,34,567.5"
        assert format_price(999) == "₹999"
        assert format_price("100000") == "₹1,00,000"

    def test_format_price_negative(self):
        assert format_price(-250) == "-₹250"

    def test_round_currency_half_up(self):
        assert round_currency("10.005") == Decimal("10.01")
        assert round_currency(2.675) == Decimal("2.68")

    def test_to_decimal_blanks_and_garbage(self):
        assert to_decimal(None) == Decimal("0")
        assert to_decimal("null") == Decimal("0")
        assert to_decimal("abc", default=None) is None
        assert to_decimal(0.1) == Decimal("0.1")

    def test_savings_label_zero_is_empty(self):
        assert format_savings_label(0) == ""


class TestNormalization:
    def test_form_shape_prefers_variant_price(self):
        item = normalize_line_item({
            "product_id": "p1",
            "variant_id": "v1",
            "quantity": "2",
            "product": {"price": "500", "has_variants": True, "title": "Gold Ring"},
            "variant": {"price": "650"},
        })
        assert item.unit_price == Decimal("650")
        assert item.quantity == 2
        assert item.has_variants is True
        assert item.product_title == "Gold Ring"
        assert item.line_total == Decimal("1300")

    def test_form_shape_falls_back_to_product_price(self):
        item = normalize_line_item({"product_id": "p2", "product": {"price": 300}})
        assert item.unit_price == Decimal("300")
        assert item.variant_id is None

    def test_bundle_draft_from_multipart_style_fields(self):
        draft = normalize_bundle_draft({
            "title": "Festive Set",
            "price": "1000",
            "stock_limit": "5",
            "tags": '["gift", "festive"]',
            "items": '[{"product_id": "p1", "unit_price": 500, "quantity": 2},'
                     ' {"product_id": "p2", "unit_price": 300}]',
        })
        assert draft.bundle_price == Decimal("1000")
        assert draft.stock_limit == 5
        assert draft.tags == ["gift", "festive"]
        assert [i.product_id for i in draft.items] == ["p1", "p2"]
        assert draft.items_payload()[0] == {"product_id": "p1", "variant_id": None, "quantity": 2}

    def test_missing_price_stays_none(self):
        draft = normalize_bundle_draft({"title": "x", "tags": "a, b"})
        assert draft.bundle_price is None
        assert draft.tags == ["a", "b"]
