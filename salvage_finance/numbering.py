"""
Document numbering: QUO-<year>-<seq> / INV-<year>-<seq>.

The next number is derived from the greatest existing number for the year. Numbers are
ordered by length first, then as strings, so INV-2025-1000 follows INV-2025-999 once the
zero-padded range runs out. Two writers can read the same "last" number; the unique
constraint on the number column catches that and allocate_and_insert() retries.
"""

from __future__ import annotations

import logging
from typing import Callable

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from .extensions import db
from .models import Invoice, Quotation

logger = logging.getLogger(__name__)

NUMBER_COLUMNS = {
    "QUO": Quotation.quotation_number,
    "INV": Invoice.invoice_number,
}


def next_number(kind: str, year: int) -> str:
    """Return the next free number for kind ('QUO' or 'INV') in the given year."""
    column = NUMBER_COLUMNS.get(kind)
    if column is None:
        raise ValueError(f"Unknown document kind: {kind!r}")

    prefix = f"{kind}-{year}-"
    last = db.session.execute(
        db.select(column)
        .where(column.like(f"{prefix}%"))
        .order_by(func.length(column).desc(), column.desc())
        .limit(1)
    ).scalar()

    seq = 1
    if last:
        suffix = last.rsplit("-", 1)[-1]
        try:
            seq = int(suffix) + 1
        except ValueError:
            seq = 1

    return f"{prefix}{seq:03d}"


def allocate_and_insert(kind: str, year: int, build: Callable[[str], object]):
    """
    Allocate a number and flush the document built by build(number).

    Each attempt runs in a savepoint; on a unique-number collision the savepoint is
    rolled back and a fresh number is scanned.
    """
    retries = int(current_app.config.get("NUMBER_ALLOCATION_RETRIES", 3))
    last_error = None

    for attempt in range(retries + 1):
        number = next_number(kind, year)
        try:
            with db.session.begin_nested():
                document = build(number)
                db.session.add(document)
                db.session.flush()
            return document
        except IntegrityError as exc:
            last_error = exc
            logger.warning("Number %s already taken (attempt %s), rescanning", number, attempt + 1)

    raise last_error
