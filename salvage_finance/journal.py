"""
Journal writer: income / expense entries linked to a document by reference_id.

Two journal shapes exist in the wild:
- full:   income_records / expenses carry bank_account_id + reference_id
- legacy: neither column exists (databases created before that migration)

The shape is resolved once per app (JOURNAL_SCHEMA = auto/full/legacy) and stored in
app.extensions. If a full insert still hits a missing column, the entry is written
once more with the legacy payload and the app is downgraded to legacy.

IMPORTANT:
- reference_id is one-to-many. remove*() always deletes every match.
- Legacy entries cannot be found again by document, so removal is a logged no-op.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from flask import current_app
from sqlalchemy import delete, insert, inspect
from sqlalchemy.exc import OperationalError, ProgrammingError

from .extensions import db
from .models import Expense, IncomeRecord

logger = logging.getLogger(__name__)

FULL = "full"
LEGACY = "legacy"
AUTO = "auto"

EXTENSION_KEY = "salvage_finance.journal_schema"

LINK_COLUMNS = ("bank_account_id", "reference_id")


# ---------------------------------------------------------------------
# Capability
# ---------------------------------------------------------------------
def detect_schema(engine) -> str:
    """Inspect the journal tables; missing tables count as full (create_all will add them)."""
    inspector = inspect(engine)
    for table in (IncomeRecord.__tablename__, Expense.__tablename__):
        if not inspector.has_table(table):
            continue
        columns = {c["name"] for c in inspector.get_columns(table)}
        if not set(LINK_COLUMNS) <= columns:
            return LEGACY
    return FULL


def init_journal(app) -> str:
    """Resolve JOURNAL_SCHEMA for this app and cache it in app.extensions."""
    setting = (app.config.get("JOURNAL_SCHEMA") or AUTO).lower()
    if setting not in (AUTO, FULL, LEGACY):
        raise ValueError(f"JOURNAL_SCHEMA must be auto, full or legacy (got {setting!r})")

    if setting == AUTO:
        with app.app_context():
            setting = detect_schema(db.engine)

    app.extensions[EXTENSION_KEY] = setting
    app.logger.info("Journal schema: %s", setting)
    return setting


def journal_schema() -> str:
    return current_app.extensions.get(EXTENSION_KEY, FULL)


def _downgrade() -> None:
    current_app.extensions[EXTENSION_KEY] = LEGACY


def _is_schema_mismatch(exc: Exception) -> bool:
    message = str(getattr(exc, "orig", exc)).lower()
    return "column" in message and any(name in message for name in LINK_COLUMNS)


# ---------------------------------------------------------------------
# Writer
# ---------------------------------------------------------------------
class JournalWriter:
    """Posts and removes journal entries inside the caller's transaction."""

    def __init__(self, session=None):
        self.session = session or db.session

    @property
    def schema(self) -> str:
        return journal_schema()

    def _payload(self, fields: Dict[str, Any], schema: str) -> Dict[str, Any]:
        if schema == LEGACY:
            return {k: v for k, v in fields.items() if k not in LINK_COLUMNS}
        return dict(fields)

    def _execute_insert(self, model, payload: Dict[str, Any]) -> int:
        with self.session.begin_nested():
            result = self.session.execute(insert(model.__table__).values(**payload))
        return result.inserted_primary_key[0]

    def _post(self, model, fields: Dict[str, Any]) -> int:
        schema = self.schema
        try:
            return self._execute_insert(model, self._payload(fields, schema))
        except (OperationalError, ProgrammingError) as exc:
            if schema != FULL or not _is_schema_mismatch(exc):
                raise
            logger.warning(
                "Journal table %s rejected bank_account_id/reference_id (%s); "
                "retrying with the legacy payload and switching to legacy mode",
                model.__tablename__, exc.orig,
            )
            _downgrade()
            return self._execute_insert(model, self._payload(fields, LEGACY))

    def post_income(self, **fields) -> int:
        """Insert one income_records row and return its id."""
        fields.setdefault("income_type", "invoice")
        fields.setdefault("source_type", "other")
        return self._post(IncomeRecord, fields)

    def post_expense(self, **fields) -> int:
        """Insert one expenses row and return its id."""
        fields.setdefault("category", "other")
        fields.setdefault("status", "paid")
        return self._post(Expense, fields)

    def _remove(self, model, reference_id: int) -> int:
        if self.schema == LEGACY:
            logger.warning(
                "Legacy journal: cannot remove %s entries for reference %s", model.__tablename__, reference_id
            )
            return 0
        table = model.__table__
        result = self.session.execute(delete(table).where(table.c.reference_id == reference_id))
        return result.rowcount or 0

    def remove_income(self, reference_id: int) -> int:
        return self._remove(IncomeRecord, reference_id)

    def remove_expenses(self, reference_id: int) -> int:
        return self._remove(Expense, reference_id)

    def remove(self, reference_id: int) -> Dict[str, int]:
        """Delete every income and expense row for the document."""
        return {
            "income": self.remove_income(reference_id),
            "expenses": self.remove_expenses(reference_id),
        }

    def entries_for(self, reference_id: int) -> Dict[str, list]:
        if self.schema == LEGACY:
            return {"income": [], "expenses": []}
        income = (
            IncomeRecord.query.filter_by(reference_id=reference_id)
            .order_by(IncomeRecord.id.asc())
            .all()
        )
        expenses = (
            Expense.query.filter_by(reference_id=reference_id)
            .order_by(Expense.id.asc())
            .all()
        )
        return {"income": income, "expenses": expenses}
