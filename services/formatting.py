"""
Price and currency formatting helpers shared by the pricing and coupon engines.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

from settings import CURRENCY_SYMBOL

CENT = Decimal("0.01")
ONE = Decimal("1")


def to_decimal(value: Any, default: Optional[str] = "0") -> Optional[Decimal]:
    """Coerce numbers, numeric strings and ``None`` to ``Decimal``.

    Floats go through ``str`` so ``0.1`` stays ``Decimal("0.1")``.
    Returns ``Decimal(default)`` (or ``None`` when ``default`` is ``None``)
    for blanks and unparseable input.
    """
    if isinstance(value, Decimal):
        return value
    if value is None or isinstance(value, bool):
        return Decimal(default) if default is not None else None
    if isinstance(value, str):
        value = value.strip().replace(",", "")
        if value.lower() in ("", "null", "none", "nan"):
            return Decimal(default) if default is not None else None
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal(default) if default is not None else None
    if not result.is_finite():
        return Decimal(default) if default is not None else None
    return result


def round_half_up(value: Decimal, quantum: Decimal = ONE) -> Decimal:
    return value.quantize(quantum, rounding=ROUND_HALF_UP)


def round_currency(value: Any) -> Decimal:
    """Round a money amount to 2 decimal places (half-up)."""
    return round_half_up(to_decimal(value), CENT)


def round_rupee(value: Any) -> int:
    """Round a money amount to the nearest whole rupee (half-up)."""
    return int(round_half_up(to_decimal(value)))


def format_plain_number(value: Any) -> str:
    """Render a number without trailing zeros ("10.00" -> "10", "12.50" -> "12.5")."""
    amount = to_decimal(value)
    if amount == amount.to_integral_value():
        return str(int(amount))
    return format(amount.normalize(), "f")


def _group_indian(digits: str) -> str:
    # 1234567 -> 12,34,567
    if len(digits) <= 3:
        return digits
    head, tail = digits[:-3], digits[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return ",".join(groups + [tail])


def format_price(value: Any) -> str:
    """Format an amount as rupees with Indian digit grouping (₹1,23,456.5)."""
    amount = to_decimal(value)
    sign = "-" if amount < 0 else ""
    text = format_plain_number(round_currency(abs(amount)))
    whole, _, fraction = text.partition(".")
    grouped = _group_indian(whole)
    if fraction:
        grouped = f"{grouped}.{fraction}"
    return f"{sign}{CURRENCY_SYMBOL}{grouped}"


def format_savings_label(savings: Any) -> str:
    """Badge text for a bundle: "Save ₹X" for discounts, "+₹X Margin" for markups."""
    amount = to_decimal(savings)
    if amount > 0:
        return f"Save {format_price(amount)}"
    if amount < 0:
        return f"+{format_price(-amount)} Margin"
    return ""
