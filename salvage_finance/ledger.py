"""
Ledger adjuster: equipment stock and land tonnage deltas for invoice line items.

apply   -> goods leave (sale recorded)
reverse -> goods come back (refund / paid invoice deleted)

Writes are compare-and-swap: the UPDATE only matches if the value read a moment
earlier is still there. A concurrent writer makes the update hit zero rows, which
raises StaleRecordError instead of silently overwriting the other change.

Not idempotent. Applying the same items twice decrements twice.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List

from sqlalchemy import update

from .errors import StaleRecordError
from .extensions import db
from .models import LandEquipment, LandPurchase

logger = logging.getLogger(__name__)

APPLY = "apply"
REVERSE = "reverse"


@dataclass
class Adjustment:
    kind: str
    row_id: int
    before: dict = field(default_factory=dict)
    after: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "id": self.row_id, "before": self.before, "after": self.after}


def _matches(column, value):
    return column.is_(None) if value is None else column == value


def _compare_and_swap(model, row_id: int, guard: str, guard_value, values: dict) -> None:
    table = model.__table__
    stmt = (
        update(table)
        .where(table.c.id == row_id, _matches(table.c[guard], guard_value))
        .values(**values)
    )
    result = db.session.execute(stmt)
    if result.rowcount == 0:
        logger.warning("Stale %s#%s: %s is no longer %r, update skipped", table.name, row_id, guard, guard_value)
        raise StaleRecordError(table.name, row_id, guard)


def _adjust_equipment(item, direction: str) -> Adjustment | None:
    equipment = db.session.get(LandEquipment, item.land_equipment_id, populate_existing=True)
    if equipment is None:
        return None

    qty = equipment.quantity or 0
    sold = item.quantity or 1

    if direction == APPLY:
        remaining = qty - sold
        new_qty = max(remaining, 0)
        new_status = "sold" if remaining <= 0 else (equipment.status or "available")
    else:
        new_qty = qty + sold
        new_status = "in_warehouse" if equipment.warehouse_id else "available"

    before = {"quantity": equipment.quantity, "status": equipment.status}
    _compare_and_swap(
        LandEquipment,
        equipment.id,
        "quantity",
        equipment.quantity,
        {"quantity": new_qty, "status": new_status},
    )
    return Adjustment("equipment", equipment.id, before, {"quantity": new_qty, "status": new_status})


def _adjust_land(item, direction: str) -> Adjustment | None:
    land = db.session.get(LandPurchase, item.land_id, populate_existing=True)
    if land is None:
        return None

    tons = item.quantity or 0
    remaining = land.remaining_tonnage or 0
    sold = land.scrap_tonnage_sold or 0

    if direction == APPLY:
        new_remaining = max(remaining - tons, 0)
        new_sold = sold + tons
    else:
        new_remaining = remaining + tons
        new_sold = max(sold - tons, 0)

    before = {"remaining_tonnage": land.remaining_tonnage, "scrap_tonnage_sold": land.scrap_tonnage_sold}
    after = {"remaining_tonnage": new_remaining, "scrap_tonnage_sold": new_sold}
    _compare_and_swap(
        LandPurchase,
        land.id,
        "remaining_tonnage",
        land.remaining_tonnage,
        after,
    )
    return Adjustment("land", land.id, before, after)


def adjust(items: Iterable, direction: str) -> List[Adjustment]:
    """
    Apply or reverse the stock/tonnage effect of each line item.

    equipment_sale needs land_equipment_id, scrap_sale needs land_id; anything else,
    or a reference to a row that no longer exists, is skipped.
    """
    if direction not in (APPLY, REVERSE):
        raise ValueError(f"Unknown ledger direction: {direction!r}")

    adjustments: List[Adjustment] = []
    for item in items:
        result = None
        if item.item_type == "equipment_sale" and item.land_equipment_id:
            result = _adjust_equipment(item, direction)
        elif item.item_type == "scrap_sale" and item.land_id:
            result = _adjust_land(item, direction)

        if result is not None:
            adjustments.append(result)

    return adjustments
