"""
Helpers shared by the quotation and invoice operations.

- load_locked: fresh SELECT ... FOR UPDATE of one document (raises DocumentNotFound)
- parse_header / parse_items: form payload -> column values
- apply_items: replace the whole item set and recompute subtotal/tax/total
"""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, List

from flask import current_app
from sqlalchemy.orm import selectinload

from .errors import DocumentNotFound, ValidationFailed
from .extensions import db
from .totals import document_totals
from .utils import normalize_item, parse_bool, parse_date, parse_number, parse_optional_int


def today() -> date:
    return date.today()


def load_locked(model, document_id: int, label: str):
    """Re-read the document from the database and lock its row for this transaction."""
    stmt = (
        db.select(model)
        .where(model.id == document_id)
        .options(selectinload(model.items))
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    document = db.session.execute(stmt).scalar_one_or_none()
    if document is None:
        raise DocumentNotFound(f"{label} #{document_id} not found.")
    return document


def get_or_404(model, document_id: int, label: str):
    document = db.session.get(model, document_id)
    if document is None:
        raise DocumentNotFound(f"{label} #{document_id} not found.")
    return document


def parse_header(data: Dict[str, Any]) -> Dict[str, Any]:
    """Header fields common to quotations and invoices."""
    deposit_percent = parse_number(data.get("deposit_percent"), "Deposit percent")
    if deposit_percent is not None and not (0 <= deposit_percent <= 100):
        raise ValidationFailed("Deposit percent must be between 0 and 100.")

    return {
        "company_id": parse_optional_int(data.get("company_id")),
        "client_name": (data.get("client_name") or "").strip() or None,
        "date": parse_date(data.get("date")) or today(),
        "payment_terms": (data.get("payment_terms") or "").strip() or None,
        "deposit_percent": deposit_percent,
        "notes": (data.get("notes") or "").strip() or None,
    }


def parse_items(data: Dict[str, Any], require_items: bool) -> List[Dict[str, Any]]:
    raw_items = data.get("items") or []
    if not isinstance(raw_items, list):
        raise ValidationFailed("Items must be a list.")
    if require_items and not raw_items:
        raise ValidationFailed("Please add at least one item.")
    return [normalize_item(raw, index) for index, raw in enumerate(raw_items)]


def tax_settings(data: Dict[str, Any]) -> tuple:
    """(apply_tax, tax_rate): tax is on unless apply_tax is explicitly false."""
    apply_tax = parse_bool(data["apply_tax"]) if "apply_tax" in data else True
    tax_rate = parse_number(data.get("tax_rate"), "Tax rate")
    if tax_rate is None:
        tax_rate = float(current_app.config.get("DEFAULT_TAX_RATE", 5.0))
    if tax_rate < 0:
        raise ValidationFailed("Tax rate cannot be negative.")
    return apply_tax, tax_rate


def apply_items(document, item_model, items: List[Dict[str, Any]], apply_tax: bool, tax_rate: float) -> None:
    """Replace every line item (ids are not preserved) and recompute totals."""
    document.items = [item_model(**item) for item in items]
    document.subtotal, document.tax, document.total = document_totals(items, apply_tax, tax_rate)
