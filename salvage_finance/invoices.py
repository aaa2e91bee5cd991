"""
Invoice operations.

Lifecycle:
    draft -> sent -> overdue -> partial
    draft|sent|overdue -> paid            (income only; journal + stock/tonnage)
    draft|sent|overdue -> deposit_paid    (journal)
    deposit_paid -> cancelled_refunded    (refund deposit: expense entry)
    deposit_paid -> cancelled_deposit_kept (keep deposit: income entry dated today)
    paid -> cancelled_refunded            (refund sale: income removed, expense posted, stock restored)

Each transition runs as named steps through steps.StepRunner, so a failure reports
which effects were written. Validation always happens before the first step.

IMPORTANT:
- Journal entries link back by reference_id = invoice id (one-to-many, see journal.py).
- delete reverses whatever the invoice already posted; which statuses may be deleted
  is the DELETE_POLICY setting.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from flask import current_app

from . import ledger
from .audit import log_action, serialize_model
from .documents import (
    apply_items,
    get_or_404,
    load_locked,
    parse_header,
    parse_items,
    tax_settings,
    today,
)
from .errors import IllegalTransition, ValidationFailed
from .extensions import db
from .journal import JournalWriter
from .models import INVOICE_TYPES, Invoice, InvoiceItem, Quotation
from .numbering import allocate_and_insert
from .security import CREATE, DELETE, EDIT, SYSTEM_ACTOR, VIEW, Actor, require_permission
from .steps import Step, StepRunner
from .totals import deposit_amount
from .utils import parse_bool, parse_date, parse_number, parse_optional_int
from .workflows import INVOICE_WORKFLOW, SIMPLE_INVOICE_ACTIONS

logger = logging.getLogger(__name__)

MODULE = "invoices"

DEFAULT_METHOD = "cash"


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def _describe(prefix: str, invoice: Invoice, notes: Optional[str] = None, suffix: Optional[str] = None) -> str:
    """'<prefix> - Invoice INV-2025-001 (Client)[ - notes]'"""
    text = f"{prefix} - Invoice {invoice.invoice_number}"
    if invoice.client_name:
        text += f" ({invoice.client_name})"
    if notes:
        text += f" - {notes}"
    if suffix:
        text += f" - {suffix}"
    return text


def _require_bank_account(payload: Dict[str, Any], key: str = "bank_account_id") -> int:
    bank_account_id = parse_optional_int(payload.get(key))
    if not bank_account_id:
        raise ValidationFailed("Please select a bank account.")
    return bank_account_id


def _run(invoice: Invoice, action: str, actor: Actor, steps: List[Step], before: Dict[str, Any]):
    """Append the audit step and execute; returns the step report."""
    from_state = before.get("status")

    def audit():
        log_action(invoice, action, actor, before=before, after=serialize_model(invoice))

    report = StepRunner().run(f"{invoice.invoice_number} {action}", steps + [Step("audit", audit)])
    logger.info("Invoice %s: %s -> %s (%s by %s)", invoice.invoice_number, from_state, invoice.status, action,
                actor.username)
    return report


# ---------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------
def list_invoices(actor: Actor, status: Optional[str] = None, invoice_type: Optional[str] = None) -> List[Invoice]:
    require_permission(actor, MODULE, VIEW)
    q = Invoice.query
    if status:
        q = q.filter(Invoice.status == status)
    if invoice_type:
        q = q.filter(Invoice.invoice_type == invoice_type)
    return q.order_by(Invoice.created_at.desc(), Invoice.id.desc()).all()


def get_invoice(invoice_id: int, actor: Actor) -> Invoice:
    require_permission(actor, MODULE, VIEW)
    return get_or_404(Invoice, invoice_id, "Invoice")


def invoice_summary(actor: Actor) -> Dict[str, Any]:
    """
    Dashboard totals.

    - total_invoiced: income invoices except fully refunded ones
    - total_collected: paid totals + kept deposits + deposits received on open deals
    - unpaid_count: sent, overdue or deposit received but not closed
    """
    require_permission(actor, MODULE, VIEW)

    total_invoiced = 0.0
    total_collected = 0.0
    unpaid_count = 0

    for invoice in Invoice.query.all():
        if invoice.status in ("sent", "overdue", "deposit_paid"):
            unpaid_count += 1
        if not invoice.is_income:
            continue
        if invoice.status != "cancelled_refunded":
            total_invoiced += invoice.total or 0
        if invoice.status == "paid":
            total_collected += invoice.total or 0
        elif invoice.status == "cancelled_deposit_kept":
            total_collected += invoice.deposit_paid_amount or 0
        elif invoice.deposit_paid and invoice.deposit_paid_amount:
            total_collected += invoice.deposit_paid_amount

    return {
        "total_invoiced": total_invoiced,
        "total_collected": total_collected,
        "unpaid_count": unpaid_count,
    }


# ---------------------------------------------------------------------
# Form actions
# ---------------------------------------------------------------------
def _parse_invoice_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    header = parse_header(data)
    invoice_type = (data.get("invoice_type") or "income").strip()
    if invoice_type not in INVOICE_TYPES:
        raise ValidationFailed(f"Unknown invoice type {invoice_type!r}.")
    header["invoice_type"] = invoice_type
    header["due_date"] = parse_date(data.get("due_date"))
    header["payment_method"] = (data.get("payment_method") or "").strip() or None
    return header


def create_invoice(data: Dict[str, Any], actor: Actor) -> Invoice:
    """Create a draft invoice numbered INV-<year>-<seq>."""
    require_permission(actor, MODULE, CREATE)

    header = _parse_invoice_fields(data)
    items = parse_items(data, require_items=False)
    apply_tax, tax_rate = tax_settings(data)

    def build(number: str) -> Invoice:
        invoice = Invoice(invoice_number=number, status="draft", **header)
        apply_items(invoice, InvoiceItem, items, apply_tax, tax_rate)
        return invoice

    invoice = allocate_and_insert("INV", header["date"].year, build)
    log_action(invoice, "CREATE", actor, before=None, after=serialize_model(invoice))
    db.session.commit()

    logger.info("Invoice %s (%s) created by %s (total=%s)", invoice.invoice_number, invoice.invoice_type,
                actor.username, invoice.total)
    return invoice


def edit_invoice(invoice_id: int, data: Dict[str, Any], actor: Actor) -> Invoice:
    """Replace header fields and the whole item set (item ids are not preserved)."""
    require_permission(actor, MODULE, EDIT)

    invoice = load_locked(Invoice, invoice_id, "Invoice")
    INVOICE_WORKFLOW.target(invoice.status, "edit")

    header = _parse_invoice_fields(data)
    items = parse_items(data, require_items=False)
    apply_tax, tax_rate = tax_settings(data)

    before_snapshot = serialize_model(invoice)
    for field_name, value in header.items():
        setattr(invoice, field_name, value)
    apply_items(invoice, InvoiceItem, items, apply_tax, tax_rate)
    db.session.flush()

    log_action(invoice, "UPDATE", actor, before=before_snapshot, after=serialize_model(invoice))
    db.session.commit()

    logger.info("Invoice %s edited by %s", invoice.invoice_number, actor.username)
    return invoice


# ---------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------
def set_status(invoice_id: int, action: str, actor: Actor) -> Invoice:
    """send / mark_overdue / mark_partial / cancel: a bare status write."""
    require_permission(actor, MODULE, EDIT)
    if action not in SIMPLE_INVOICE_ACTIONS:
        raise ValueError(f"{action!r} is not a status-only invoice action")

    invoice = load_locked(Invoice, invoice_id, "Invoice")
    to_state = INVOICE_WORKFLOW.target(invoice.status, action)
    before = serialize_model(invoice)

    def write_status():
        invoice.status = to_state

    _run(invoice, action, actor, [Step("status", write_status)], before)
    return invoice


def mark_paid(invoice_id: int, payload: Dict[str, Any], actor: Actor) -> Invoice:
    """
    draft|sent|overdue -> paid (income invoices only).

    Steps: status + receiving account, income entry for the total (non-blocking),
    stock/tonnage applied for every item.
    """
    require_permission(actor, MODULE, EDIT)

    invoice = load_locked(Invoice, invoice_id, "Invoice")
    if not invoice.is_income:
        raise IllegalTransition("expense invoice", invoice.status, "mark_paid")
    to_state = INVOICE_WORKFLOW.target(invoice.status, "mark_paid")
    bank_account_id = _require_bank_account(payload)

    before = serialize_model(invoice)
    journal = JournalWriter()

    def write_status():
        invoice.status = to_state
        invoice.payment_bank_account_id = bank_account_id

    def post_income():
        return journal.post_income(
            income_date=invoice.date,
            amount=invoice.total or 0,
            description=_describe("Payment", invoice),
            customer_company_id=invoice.company_id,
            payment_method=invoice.payment_method,
            bank_account_id=bank_account_id,
            reference_id=invoice.id,
        )

    def apply_stock():
        return [a.to_dict() for a in ledger.adjust(invoice.items, ledger.APPLY)]

    _run(
        invoice,
        "mark_paid",
        actor,
        [
            Step("status", write_status),
            Step("journal", post_income, blocking=False),
            Step("ledger", apply_stock),
        ],
        before,
    )
    return invoice


def record_deposit(invoice_id: int, payload: Dict[str, Any], actor: Actor) -> Invoice:
    """
    draft|sent|overdue -> deposit_paid.

    payload: amount (default total × deposit_percent / 100, rounded half-up), date (default today),
    payment_method (default cash), bank_account_id (required).
    """
    require_permission(actor, MODULE, EDIT)

    invoice = load_locked(Invoice, invoice_id, "Invoice")
    to_state = INVOICE_WORKFLOW.target(invoice.status, "record_deposit")
    if not invoice.deposit_percent or invoice.deposit_percent <= 0:
        raise ValidationFailed("This invoice has no deposit percent.")

    amount = parse_number(payload.get("amount"), "Deposit amount")
    if amount is None:
        amount = deposit_amount(invoice.total, invoice.deposit_percent)
    if amount <= 0:
        raise ValidationFailed("Deposit amount must be greater than zero.")
    deposit_date = parse_date(payload.get("date")) or today()
    method = (payload.get("payment_method") or "").strip() or DEFAULT_METHOD
    bank_account_id = _require_bank_account(payload)

    before = serialize_model(invoice)
    journal = JournalWriter()

    def write_deposit():
        invoice.deposit_paid = True
        invoice.deposit_paid_amount = amount
        invoice.deposit_paid_date = deposit_date
        invoice.deposit_payment_method = method
        invoice.deposit_bank_account_id = bank_account_id
        invoice.status = to_state

    def post_income():
        return journal.post_income(
            income_date=deposit_date,
            amount=amount,
            description=_describe("Deposit received", invoice),
            customer_company_id=invoice.company_id,
            payment_method=method,
            bank_account_id=bank_account_id,
            reference_id=invoice.id,
        )

    _run(invoice, "record_deposit", actor, [Step("deposit", write_deposit), Step("journal", post_income)], before)
    return invoice


def _require_open_deposit(invoice: Invoice, action: str) -> str:
    to_state = INVOICE_WORKFLOW.target(invoice.status, action)
    if not invoice.deposit_paid:
        raise IllegalTransition("invoice without a recorded deposit", invoice.status, action)
    return to_state


def refund_deposit(invoice_id: int, payload: Dict[str, Any], actor: Actor) -> Invoice:
    """deposit_paid -> cancelled_refunded; expense entry for the deposit received."""
    require_permission(actor, MODULE, EDIT)

    invoice = load_locked(Invoice, invoice_id, "Invoice")
    to_state = _require_open_deposit(invoice, "refund_deposit")
    bank_account_id = _require_bank_account(payload)
    refund_date = parse_date(payload.get("date")) or today()
    method = (payload.get("method") or payload.get("payment_method") or "").strip() or DEFAULT_METHOD
    notes = (payload.get("notes") or "").strip() or None
    source = (payload.get("source") or "").strip() or None

    before = serialize_model(invoice)
    journal = JournalWriter()

    def write_refund():
        invoice.deposit_refunded = True
        invoice.deposit_refund_date = refund_date
        invoice.deposit_refund_method = method
        invoice.deposit_refund_bank_account_id = bank_account_id
        invoice.deposit_refund_notes = notes
        invoice.deposit_refund_source = source
        invoice.status = to_state

    def post_expense():
        return journal.post_expense(
            date=refund_date,
            description=_describe("Deposit refunded", invoice, notes),
            amount=invoice.deposit_paid_amount or 0,
            payment_method=method,
            bank_account_id=bank_account_id,
            reference_id=invoice.id,
        )

    _run(invoice, "refund_deposit", actor, [Step("refund", write_refund), Step("journal", post_expense)], before)
    return invoice


def keep_deposit(invoice_id: int, payload: Dict[str, Any], actor: Actor) -> Invoice:
    """
    deposit_paid -> cancelled_deposit_kept.

    The deposit is recognized as income today, on the account and method it was paid with.
    """
    require_permission(actor, MODULE, EDIT)

    invoice = load_locked(Invoice, invoice_id, "Invoice")
    to_state = _require_open_deposit(invoice, "keep_deposit")

    before = serialize_model(invoice)
    journal = JournalWriter()

    def write_kept():
        invoice.deposit_kept_as_income = True
        invoice.status = to_state

    def post_income():
        return journal.post_income(
            income_date=today(),
            amount=invoice.deposit_paid_amount,
            description=_describe("Deposit kept", invoice, suffix="deal cancelled"),
            customer_company_id=invoice.company_id,
            payment_method=invoice.deposit_payment_method,
            bank_account_id=invoice.deposit_bank_account_id,
            reference_id=invoice.id,
        )

    steps = [Step("status", write_kept)]
    if invoice.deposit_paid_amount:
        steps.append(Step("journal", post_income))

    _run(invoice, "keep_deposit", actor, steps, before)
    return invoice


def refund_sale(invoice_id: int, payload: Dict[str, Any], actor: Actor) -> Invoice:
    """
    paid -> cancelled_refunded. Requires confirmed=True.

    Steps: remove income entries, post one expense for the total, restock equipment /
    restore tonnage, write status.
    """
    require_permission(actor, MODULE, EDIT)

    invoice = load_locked(Invoice, invoice_id, "Invoice")
    if not invoice.is_income:
        raise IllegalTransition("expense invoice", invoice.status, "refund_sale")
    to_state = INVOICE_WORKFLOW.target(invoice.status, "refund_sale")
    if not parse_bool(payload.get("confirmed")):
        raise ValidationFailed("Refunding a paid sale must be confirmed.")
    bank_account_id = _require_bank_account(payload)
    refund_date = parse_date(payload.get("date")) or today()
    notes = (payload.get("notes") or "").strip() or None

    before = serialize_model(invoice)
    journal = JournalWriter()

    def remove_income():
        return journal.remove_income(invoice.id)

    def post_expense():
        return journal.post_expense(
            date=refund_date,
            description=_describe("Sale refunded", invoice, notes),
            amount=invoice.total or 0,
            payment_method=invoice.payment_method or DEFAULT_METHOD,
            bank_account_id=bank_account_id,
            reference_id=invoice.id,
        )

    def restock():
        return [a.to_dict() for a in ledger.adjust(invoice.items, ledger.REVERSE)]

    def write_status():
        invoice.status = to_state

    _run(
        invoice,
        "refund_sale",
        actor,
        [
            Step("remove_income", remove_income),
            Step("journal", post_expense),
            Step("ledger", restock),
            Step("status", write_status),
        ],
        before,
    )
    return invoice


def delete_invoice(invoice_id: int, actor: Actor) -> None:
    """
    Delete the invoice and undo what it posted.

    - paid: income entries removed, stock/tonnage reversed
    - deposit received but never paid: income entries removed
    - always: expense entries removed (earlier refunds)
    - a quotation converted into this invoice goes back to approved
    """
    require_permission(actor, MODULE, DELETE)

    invoice = load_locked(Invoice, invoice_id, "Invoice")
    INVOICE_WORKFLOW.check_delete(invoice.status, current_app.config.get("DELETE_POLICY", "restricted"))

    number = invoice.invoice_number
    was_paid = invoice.status == "paid"
    had_deposit = bool(invoice.deposit_paid) and not was_paid
    before = serialize_model(invoice)
    journal = JournalWriter()

    steps: List[Step] = []
    if was_paid or had_deposit:
        steps.append(Step("remove_income", lambda: journal.remove_income(invoice_id)))
    if was_paid:
        steps.append(Step("ledger", lambda: [a.to_dict() for a in ledger.adjust(invoice.items, ledger.REVERSE)]))
    steps.append(Step("remove_expenses", lambda: journal.remove_expenses(invoice_id)))

    def reset_quotation():
        linked = Quotation.query.filter_by(converted_to_invoice_id=invoice_id).all()
        for quotation in linked:
            quotation.status = "approved"
            quotation.converted_to_invoice_id = None
        return [q.quotation_number for q in linked]

    def audit():
        log_action(None, "DELETE", actor, before=before, entity_type="Invoice", entity_id=invoice_id)

    def delete_row():
        db.session.delete(invoice)

    steps += [
        Step("reset_quotation", reset_quotation),
        Step("audit", audit),
        Step("delete", delete_row),
    ]

    StepRunner().run(f"{number} delete", steps)
    logger.info("Invoice %s (%s) deleted by %s", number, before.get("status"), actor.username)


# ---------------------------------------------------------------------
# Single entry point
# ---------------------------------------------------------------------
PAYLOAD_ACTIONS = {
    "mark_paid": mark_paid,
    "record_deposit": record_deposit,
    "refund_deposit": refund_deposit,
    "keep_deposit": keep_deposit,
    "refund_sale": refund_sale,
}


def transition(invoice_id: int, action: str, payload: Optional[Dict[str, Any]] = None,
               actor: Optional[Actor] = None):
    """Apply action to the invoice or raise IllegalTransition."""
    payload = payload or {}
    action = (action or "").replace("-", "_")

    if action in SIMPLE_INVOICE_ACTIONS:
        return set_status(invoice_id, action, actor)
    if action in PAYLOAD_ACTIONS:
        return PAYLOAD_ACTIONS[action](invoice_id, payload, actor)
    if action == "edit":
        return edit_invoice(invoice_id, payload, actor)
    if action == "delete":
        return delete_invoice(invoice_id, actor)

    invoice = get_or_404(Invoice, invoice_id, "Invoice")
    raise IllegalTransition("invoice", invoice.status, action)


# ---------------------------------------------------------------------
# Scheduled job
# ---------------------------------------------------------------------
def mark_overdue_invoices(as_of: Optional[date] = None, actor: Actor = SYSTEM_ACTOR) -> List[str]:
    """Move every sent invoice whose due_date is before as_of (default today) to overdue."""
    as_of = as_of or today()
    due = (
        Invoice.query
        .filter(Invoice.status == "sent")
        .filter(Invoice.due_date.isnot(None), Invoice.due_date < as_of)
        .order_by(Invoice.id.asc())
        .all()
    )

    marked = []
    for invoice in due:
        set_status(invoice.id, "mark_overdue", actor)
        marked.append(invoice.invoice_number)
    return marked
