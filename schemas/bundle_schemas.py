"""
Bundle Schemas
==============

Canonical data structures for admin-built bundles.

A bundle is a fixed set of line items (product, optional variant, quantity)
sold together for a single ``bundle_price``. Its pricing is always derived
from the line items:

- original_price   = sum(unit_price * quantity)
- discount_percent / markup_percent
                   = two non-negative integers, at most one non-zero

The pair is frozen onto the stored bundle when it is saved, so later product
price changes never rewrite a saved bundle's discount or markup.

PAYLOAD SHAPES ACCEPTED BY THE NORMALIZERS:
-------------------------------------------
- Flat:   {"product_id", "variant_id", "quantity", "unit_price",
           "has_variants", "product_title"}
- Form:   {"product_id", "variant_id", "quantity",
           "product": {"price", "has_variants", "title"},
           "variant": {"price"} | None}
"""

import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, TypedDict

from services.formatting import round_currency, to_decimal

logger = logging.getLogger(__name__)


# =============================================================================
# TYPE DEFINITIONS
# =============================================================================

class BundleItemPayloadDict(TypedDict, total=False):
    """Line item as sent to the storefront backend."""
    product_id: str
    variant_id: Optional[str]
    quantity: int


class BundlePricingDict(TypedDict, total=False):
    """Serialized pricing snapshot."""
    original_price: float
    bundle_price: float
    mode: str                 # "discount" | "markup" | "neutral"
    discount_percent: int
    markup_percent: int
    signed_percent: int       # negative encodes markup magnitude
    savings: float            # original - bundle (negative for markup)


class PricingMode(str, Enum):
    DISCOUNT = "discount"
    MARKUP = "markup"
    NEUTRAL = "neutral"


# =============================================================================
# DATACLASS DEFINITIONS
# =============================================================================

@dataclass
class BundleLineItem:
    """One product (or variant) inside a bundle.

    ``unit_price`` is the variant price when a variant is selected, otherwise
    the base product price.
    """
    unit_price: Decimal
    quantity: int = 1
    product_id: str = ""
    variant_id: Optional[str] = None
    product_title: str = ""
    has_variants: bool = False

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    def to_payload(self) -> BundleItemPayloadDict:
        return {
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
        }


@dataclass
class BundlePricingResult:
    """Pricing snapshot for a bundle.

    Invariant: ``discount_percent`` and ``markup_percent`` are never both
    positive. ``mode`` is NEUTRAL when both are zero.
    """
    original_price: Decimal
    bundle_price: Decimal
    mode: PricingMode = PricingMode.NEUTRAL
    discount_percent: int = 0
    markup_percent: int = 0

    @property
    def savings(self) -> Decimal:
        return self.original_price - self.bundle_price

    @property
    def signed_percent(self) -> int:
        """Single-field view: positive for discount, negative for markup."""
        if self.markup_percent:
            return -self.markup_percent
        return self.discount_percent

    @classmethod
    def from_signed_percent(
        cls,
        original_price: Decimal,
        bundle_price: Decimal,
        signed_percent: int,
    ) -> "BundlePricingResult":
        """Build the two-field form from a legacy signed ``discount_percent``."""
        signed_percent = int(signed_percent or 0)
        if signed_percent > 0:
            return cls(original_price, bundle_price, PricingMode.DISCOUNT, signed_percent, 0)
        if signed_percent < 0:
            return cls(original_price, bundle_price, PricingMode.MARKUP, 0, -signed_percent)
        return cls(original_price, bundle_price, PricingMode.NEUTRAL, 0, 0)

    def to_dict(self) -> BundlePricingDict:
        return {
            "original_price": float(round_currency(self.original_price)),
            "bundle_price": float(round_currency(self.bundle_price)),
            "mode": self.mode.value,
            "discount_percent": self.discount_percent,
            "markup_percent": self.markup_percent,
            "signed_percent": self.signed_percent,
            "savings": float(round_currency(self.savings)),
        }


@dataclass
class BundleDraft:
    """Bundle form state prior to save."""
    title: str
    bundle_price: Optional[Decimal]
    items: List[BundleLineItem] = field(default_factory=list)
    description: str = ""
    stock_limit: Optional[int] = None
    tags: List[str] = field(default_factory=list)

    def items_payload(self) -> List[BundleItemPayloadDict]:
        return [item.to_payload() for item in self.items]


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def parse_tags(raw: Any) -> List[str]:
    """Accept tags as a list, a JSON array string, or a comma separated string."""
    if raw is None:
        return []
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return []
        if text.startswith("["):
            try:
                raw = json.loads(text)
            except json.JSONDecodeError:
                logger.warning(f"Unparseable tags payload: {text[:80]}")
                return []
        else:
            raw = text.split(",")
    if not isinstance(raw, (list, tuple)):
        return []
    return [str(tag).strip() for tag in raw if tag is not None and str(tag).strip()]


def _as_int(value: Any, default: int) -> int:
    if value in (None, ""):
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def normalize_line_item(raw: Dict[str, Any]) -> BundleLineItem:
    """
    Normalize a line item from either the flat or the form payload shape.

    The unit price resolves in order: explicit ``unit_price``, selected
    variant price, base product price.
    """
    product = raw.get("product") or {}
    variant = raw.get("variant") or {}

    if raw.get("unit_price") is not None:
        unit_price = to_decimal(raw.get("unit_price"))
    elif variant and variant.get("price") is not None:
        unit_price = to_decimal(variant.get("price"))
    else:
        unit_price = to_decimal(product.get("price", raw.get("price")))

    variant_id = raw.get("variant_id") or None
    return BundleLineItem(
        unit_price=unit_price,
        quantity=_as_int(raw.get("quantity"), 1),
        product_id=str(raw.get("product_id") or product.get("id") or ""),
        variant_id=str(variant_id) if variant_id else None,
        product_title=str(raw.get("product_title") or product.get("title") or ""),
        has_variants=bool(raw.get("has_variants", product.get("has_variants", False))),
    )


def normalize_bundle_draft(raw: Dict[str, Any]) -> BundleDraft:
    """Normalize a bundle form payload into a ``BundleDraft``."""
    items_raw = raw.get("items") or []
    if isinstance(items_raw, str):
        try:
            items_raw = json.loads(items_raw)
        except json.JSONDecodeError:
            logger.warning("Unparseable bundle items payload")
            items_raw = []

    stock_limit = raw.get("stock_limit")
    return BundleDraft(
        title=str(raw.get("title") or ""),
        description=str(raw.get("description") or ""),
        bundle_price=to_decimal(raw.get("price", raw.get("bundle_price")), default=None),
        items=[normalize_line_item(item) for item in items_raw if isinstance(item, dict)],
        stock_limit=_as_int(stock_limit, 0) if stock_limit not in (None, "") else None,
        tags=parse_tags(raw.get("tags")),
    )
