"""
Line and document totals.

Amounts are stored as floats. Two values are rounded, both half-up through Decimal so
0.125 -> 0.13 and 2.5 -> 3 regardless of binary float noise:
- tax, to cents
- the default deposit, to a whole amount
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Tuple


def _money(x: Decimal) -> Decimal:
    return x.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def line_total(quantity, unit_price) -> float:
    """total_price = quantity × unit_price (missing values count as 0)."""
    return float(quantity or 0) * float(unit_price or 0)


def compute_tax(subtotal: float, tax_rate: float) -> float:
    if not tax_rate:
        return 0.0
    raw = Decimal(str(subtotal)) * Decimal(str(tax_rate)) / Decimal("100")
    return float(_money(raw))


def deposit_amount(total: float, deposit_percent: float) -> float:
    """Default deposit: total × percent / 100, rounded half-up to a whole amount."""
    raw = Decimal(str(total or 0)) * Decimal(str(deposit_percent or 0)) / Decimal("100")
    return float(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def document_totals(items: Iterable, apply_tax: bool, tax_rate: float) -> Tuple[float, float, float]:
    """
    Return (subtotal, tax, total) for a set of line items.

    Items may be model instances or dicts; each must expose quantity and unit_price.
    """
    subtotal = 0.0
    for item in items:
        if isinstance(item, dict):
            subtotal += line_total(item.get("quantity"), item.get("unit_price"))
        else:
            subtotal += line_total(item.quantity, item.unit_price)

    tax = compute_tax(subtotal, tax_rate) if apply_tax else 0.0
    return subtotal, tax, subtotal + tax
