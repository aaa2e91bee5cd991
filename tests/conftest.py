"""Shared pytest fixtures for the Salvage Finance test suite."""

from __future__ import annotations

from typing import Callable, Iterator

import pytest
from flask import Flask

from salvage_finance import create_app
from salvage_finance import invoices as invoice_ops
from salvage_finance import quotations as quotation_ops
from salvage_finance.extensions import db
from salvage_finance.models import (
    BankAccount,
    Company,
    Invoice,
    LandEquipment,
    LandPurchase,
    Quotation,
    User,
    Warehouse,
)
from salvage_finance.security import Actor


@pytest.fixture
def app() -> Iterator[Flask]:
    """Fresh application with an empty in-memory database, inside an app context."""

    app = create_app("config.TestingConfig")
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def _make_user(username: str, role: str) -> User:
    user = User(username=username, role=role)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def admin_user(app) -> User:
    return _make_user("admin", "admin")


@pytest.fixture
def admin(admin_user) -> Actor:
    """Actor with full access to quotations and invoices."""

    return Actor.from_user(admin_user)


@pytest.fixture
def accountant(app) -> Actor:
    return Actor.from_user(_make_user("accountant", "accountant"))


@pytest.fixture
def storekeeper(app) -> Actor:
    return Actor.from_user(_make_user("storekeeper", "storekeeper"))


@pytest.fixture
def login(client) -> Callable[[User], None]:
    """Log a user in for the test client by seeding the Flask-Login session."""

    def _login(user: User) -> None:
        with client.session_transaction() as sess:
            sess["_user_id"] = str(user.id)
            sess["_fresh"] = True

    return _login


@pytest.fixture
def bank_account(app) -> BankAccount:
    account = BankAccount(account_name="Operating", bank_name="Harbour Bank")
    db.session.add(account)
    db.session.commit()
    return account


@pytest.fixture
def company(app) -> Company:
    record = Company(name="Blue Anchor Metals")
    db.session.add(record)
    db.session.commit()
    return record


@pytest.fixture
def make_equipment(app) -> Callable[..., LandEquipment]:
    """Factory: equipment record, optionally stored in a warehouse."""

    def _make(quantity: float = 3, status: str = "in_warehouse", in_warehouse: bool = True) -> LandEquipment:
        warehouse = None
        if in_warehouse:
            warehouse = Warehouse(location="Yard A")
            db.session.add(warehouse)
            db.session.flush()
        equipment = LandEquipment(
            equipment_name="Winch",
            quantity=quantity,
            status=status,
            warehouse_id=warehouse.id if warehouse else None,
        )
        db.session.add(equipment)
        db.session.commit()
        return equipment

    return _make


@pytest.fixture
def make_land(app) -> Callable[..., LandPurchase]:
    def _make(remaining: float = 100, sold: float = 20) -> LandPurchase:
        land = LandPurchase(land_name="North Plot", remaining_tonnage=remaining, scrap_tonnage_sold=sold)
        db.session.add(land)
        db.session.commit()
        return land

    return _make


def equipment_item(equipment: LandEquipment, quantity: float, unit_price: float = 100) -> dict:
    return {
        "item_type": "equipment_sale",
        "description": equipment.equipment_name,
        "quantity": quantity,
        "unit_price": unit_price,
        "land_equipment_id": equipment.id,
        "warehouse_id": equipment.warehouse_id,
    }


def scrap_item(land: LandPurchase, tons: float, unit_price: float = 10) -> dict:
    return {
        "item_type": "scrap_sale",
        "description": "HMS 1&2",
        "quantity": tons,
        "unit_price": unit_price,
        "land_id": land.id,
        "material_type": "steel",
    }


def service_item(quantity: float = 1, unit_price: float = 100) -> dict:
    return {"item_type": "service", "description": "Cutting crew", "quantity": quantity, "unit_price": unit_price}


@pytest.fixture
def make_invoice(admin) -> Callable[..., Invoice]:
    """Factory: invoice created through the engine (draft, numbered, totals computed)."""

    def _make(items=None, **fields) -> Invoice:
        data = {"client_name": "Blue Anchor", "apply_tax": False, "items": items or [service_item()]}
        data.update(fields)
        return invoice_ops.create_invoice(data, admin)

    return _make


@pytest.fixture
def make_quotation(admin) -> Callable[..., Quotation]:
    def _make(items=None, **fields) -> Quotation:
        data = {"client_name": "Blue Anchor", "apply_tax": False, "items": items or [service_item()]}
        data.update(fields)
        return quotation_ops.create_quotation(data, admin)

    return _make
