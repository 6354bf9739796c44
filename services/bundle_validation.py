"""
Bundle form validation.

Runs before any pricing is accepted or any save request is sent. Errors are
returned in the order the admin form reports them; the first one is the
message shown to the user.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from schemas.bundle_schemas import BundleDraft
from services.formatting import format_plain_number
from settings import BUNDLE_PRICE_CEILING, MIN_BUNDLE_ITEMS

logger = logging.getLogger(__name__)


class BundleValidationError(ValueError):
    """Raised when a bundle draft fails validation and must not be saved."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(self.errors[0] if self.errors else "Invalid bundle")


@dataclass
class BundleValidationResult:
    errors: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    @property
    def first_error(self) -> Optional[str]:
        return self.errors[0] if self.errors else None


def validate_bundle_draft(draft: BundleDraft) -> BundleValidationResult:
    """
    Validate a bundle draft against the admin form rules.

    Checks, in order: title, item count, duplicate items, quantities,
    item prices, variant selection, bundle price range, stock limit.
    """
    errors: List[str] = []

    if not draft.title.strip():
        errors.append("Bundle title is required")

    if len(draft.items) < MIN_BUNDLE_ITEMS:
        errors.append(f"Bundle must have at least {MIN_BUNDLE_ITEMS} products")

    seen = set()
    for index, item in enumerate(draft.items, start=1):
        key = (item.product_id, item.variant_id)
        if key in seen:
            errors.append(
                f"Duplicate item: product_id {item.product_id} "
                f"with variant_id {item.variant_id or 'none'}"
            )
        seen.add(key)

        if item.quantity < 1:
            errors.append(f"Item {index}: quantity must be at least 1")

        if item.unit_price < 0:
            errors.append(f"Item {index}: price cannot be negative")

        if item.has_variants and not item.variant_id:
            name = item.product_title or item.product_id or f"item {index}"
            errors.append(f'Please select a variant for "{name}"')

    if len(seen) < MIN_BUNDLE_ITEMS <= len(draft.items):
        errors.append(f"Bundle must have at least {MIN_BUNDLE_ITEMS} products")

    price = draft.bundle_price
    if price is None or price <= 0:
        errors.append("Bundle price is required")
    elif price > BUNDLE_PRICE_CEILING:
        errors.append(
            f"Bundle price must not exceed {format_plain_number(BUNDLE_PRICE_CEILING)}"
        )

    if draft.stock_limit is not None and draft.stock_limit < 0:
        errors.append("Stock limit cannot be negative")

    if errors:
        logger.info(f"Bundle draft rejected: {errors[0]} ({len(errors)} error(s))")
    return BundleValidationResult(errors=errors)


def ensure_valid_bundle(draft: BundleDraft) -> None:
    """Raise ``BundleValidationError`` unless the draft passes validation."""
    result = validate_bundle_draft(draft)
    if not result.valid:
        raise BundleValidationError(result.errors)
