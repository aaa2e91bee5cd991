"""
Input helpers shared by the engine and the JSON blueprints.

- parse_float / parse_optional_int / parse_date: lenient parsing of form/JSON values
  (comma or dot decimals, blank -> None).
- parse_number: parse_float for money and quantities. Blank means "not given", anything
  else that is not a finite number raises ValidationFailed.
- normalize_item: line item dict -> clean column dict (total_price computed, foreign
  keys kept only for the item type that uses them).
"""

from __future__ import annotations

import math
from datetime import date, datetime
from typing import Any, Dict, Optional

from .errors import ValidationFailed
from .models import ITEM_REFERENCE_FIELDS, ITEM_TYPE_REFERENCES
from .totals import line_total


def parse_float(value: Any) -> Optional[float]:
    """Parse float from user input (accepts comma or dot)."""
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    raw = str(value).strip().replace(",", ".")
    if raw == "":
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def parse_number(value: Any, label: str) -> Optional[float]:
    """Optional number from user input; None only when the value is missing or blank."""
    if value is None or (isinstance(value, str) and value.strip() == ""):
        return None
    parsed = None if isinstance(value, bool) else parse_float(value)
    if parsed is None or not math.isfinite(parsed):
        raise ValidationFailed(f"{label} must be a number (got {value!r}).")
    return parsed


def parse_optional_int(value: Any) -> Optional[int]:
    """Parse optional int from form/query."""
    if value is None:
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    raw = str(value).strip()
    if raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def parse_date(value: Any) -> Optional[date]:
    """Parse YYYY-MM-DD (dates and datetimes pass through)."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = str(value).strip()
    if raw == "":
        return None
    try:
        return datetime.strptime(raw, "%Y-%m-%d").date()
    except ValueError as exc:
        raise ValidationFailed(f"Invalid date: {raw!r} (expected YYYY-MM-DD).") from exc


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


def normalize_item(raw: Dict[str, Any], index: int) -> Dict[str, Any]:
    """Turn one submitted line item into column values."""
    item_type = (raw.get("item_type") or "service").strip()
    if item_type not in ITEM_TYPE_REFERENCES:
        raise ValidationFailed(f"Item {index + 1}: unknown item type {item_type!r}.")

    quantity = parse_number(raw.get("quantity"), f"Item {index + 1}: quantity")
    unit_price = parse_number(raw.get("unit_price"), f"Item {index + 1}: unit price")
    quantity = 1.0 if quantity is None else quantity
    unit_price = 0.0 if unit_price is None else unit_price

    item = {
        "item_type": item_type,
        "description": (raw.get("description") or "").strip(),
        "quantity": quantity,
        "unit": (raw.get("unit") or "unit").strip(),
        "unit_price": unit_price,
        "total_price": line_total(quantity, unit_price),
        "sort_order": index,
    }

    kept = ITEM_TYPE_REFERENCES[item_type]
    for name in ITEM_REFERENCE_FIELDS:
        if name not in kept:
            item[name] = None
        elif name == "material_type":
            item[name] = (raw.get(name) or "").strip() or None
        else:
            item[name] = parse_optional_int(raw.get(name))

    return item
