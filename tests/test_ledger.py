"""Equipment stock and land tonnage adjustments."""

import pytest
from sqlalchemy import text

from salvage_finance import ledger
from salvage_finance.errors import StaleRecordError
from salvage_finance.extensions import db
from salvage_finance.models import InvoiceItem, LandEquipment, LandPurchase


def _equipment_sale(equipment, quantity):
    return InvoiceItem(
        item_type="equipment_sale",
        quantity=quantity,
        land_equipment_id=equipment.id,
        warehouse_id=equipment.warehouse_id,
    )


def _scrap_sale(land, tons):
    return InvoiceItem(item_type="scrap_sale", quantity=tons, land_id=land.id)


def _reload(model, row_id):
    db.session.expire_all()
    return db.session.get(model, row_id)


@pytest.mark.parametrize("start, sold", [(5, 2), (3, 3), (1, 1), (10.5, 0.5)])
def test_apply_then_reverse_restores_equipment(make_equipment, start, sold):
    equipment = make_equipment(quantity=start, status="in_warehouse")
    items = [_equipment_sale(equipment, sold)]

    ledger.adjust(items, ledger.APPLY)
    ledger.adjust(items, ledger.REVERSE)
    db.session.commit()

    equipment = _reload(LandEquipment, equipment.id)
    assert equipment.quantity == start
    assert equipment.status == "in_warehouse"


def test_partial_sale_keeps_status(make_equipment):
    equipment = make_equipment(quantity=5, status="in_warehouse")

    adjustments = ledger.adjust([_equipment_sale(equipment, 2)], ledger.APPLY)
    db.session.commit()

    equipment = _reload(LandEquipment, equipment.id)
    assert equipment.quantity == 3
    assert equipment.status == "in_warehouse"
    assert adjustments[0].before == {"quantity": 5, "status": "in_warehouse"}
    assert adjustments[0].after == {"quantity": 3, "status": "in_warehouse"}


def test_selling_everything_marks_sold_and_never_goes_negative(make_equipment):
    equipment = make_equipment(quantity=2)

    ledger.adjust([_equipment_sale(equipment, 5)], ledger.APPLY)
    db.session.commit()

    equipment = _reload(LandEquipment, equipment.id)
    assert equipment.quantity == 0
    assert equipment.status == "sold"


def test_missing_quantity_sells_one_unit(make_equipment):
    equipment = make_equipment(quantity=4)

    ledger.adjust([_equipment_sale(equipment, 0)], ledger.APPLY)
    db.session.commit()

    assert _reload(LandEquipment, equipment.id).quantity == 3


def test_reverse_without_warehouse_restores_available(make_equipment):
    equipment = make_equipment(quantity=1, status="available", in_warehouse=False)
    items = [_equipment_sale(equipment, 1)]

    ledger.adjust(items, ledger.APPLY)
    db.session.commit()
    assert _reload(LandEquipment, equipment.id).status == "sold"

    ledger.adjust(items, ledger.REVERSE)
    db.session.commit()
    equipment = _reload(LandEquipment, equipment.id)
    assert equipment.quantity == 1
    assert equipment.status == "available"


def test_applying_twice_double_decrements(make_equipment, make_land):
    equipment = make_equipment(quantity=5)
    land = make_land(remaining=100, sold=20)
    items = [_equipment_sale(equipment, 2), _scrap_sale(land, 30)]

    ledger.adjust(items, ledger.APPLY)
    ledger.adjust(items, ledger.APPLY)
    db.session.commit()

    assert _reload(LandEquipment, equipment.id).quantity == 1
    land = _reload(LandPurchase, land.id)
    assert land.remaining_tonnage == 40
    assert land.scrap_tonnage_sold == 80


def test_scrap_sale_moves_tonnage(make_land):
    land = make_land(remaining=100, sold=20)
    items = [_scrap_sale(land, 30)]

    ledger.adjust(items, ledger.APPLY)
    db.session.commit()
    land = _reload(LandPurchase, land.id)
    assert (land.remaining_tonnage, land.scrap_tonnage_sold) == (70, 50)

    ledger.adjust(items, ledger.REVERSE)
    db.session.commit()
    land = _reload(LandPurchase, land.id)
    assert (land.remaining_tonnage, land.scrap_tonnage_sold) == (100, 20)


def test_tonnage_is_clamped_at_zero(make_land):
    land = make_land(remaining=10, sold=0)

    ledger.adjust([_scrap_sale(land, 25)], ledger.APPLY)
    ledger.adjust([_scrap_sale(land, 40)], ledger.REVERSE)
    db.session.commit()

    land = _reload(LandPurchase, land.id)
    assert land.remaining_tonnage == 40
    assert land.scrap_tonnage_sold == 0


def test_items_without_stock_effect_are_skipped(app):
    items = [
        InvoiceItem(item_type="vessel_rental", quantity=3, vessel_id=1),
        InvoiceItem(item_type="service", quantity=1),
        InvoiceItem(item_type="equipment_sale", quantity=1, land_equipment_id=None),
        InvoiceItem(item_type="equipment_sale", quantity=1, land_equipment_id=999),
        InvoiceItem(item_type="scrap_sale", quantity=5, land_id=999),
    ]

    assert ledger.adjust(items, ledger.APPLY) == []


def test_unknown_direction_is_rejected(app):
    with pytest.raises(ValueError):
        ledger.adjust([], "sideways")


def test_concurrent_change_is_detected(make_equipment, monkeypatch):
    equipment = make_equipment(quantity=5)
    real_get = db.session.get

    def racing_get(model, ident, **kwargs):
        row = real_get(model, ident, **kwargs)
        # another writer sells stock between our read and our write
        db.session.execute(text("UPDATE land_equipment SET quantity = 4 WHERE id = :id"), {"id": ident})
        return row

    monkeypatch.setattr(db.session, "get", racing_get)

    with pytest.raises(StaleRecordError) as excinfo:
        ledger.adjust([_equipment_sale(equipment, 2)], ledger.APPLY)

    assert excinfo.value.table == "land_equipment"
    assert excinfo.value.field == "quantity"
