"""
Quotation operations.

Lifecycle:
    draft -> sent -> approved -> converted
    draft|sent -> approved / rejected / expired

- Editable (header + items) while draft or sent.
- convert materializes a draft income Invoice with the items copied verbatim.
  No stock, tonnage or journal effect: those fire when the invoice is paid.
- delete is a plain row delete (nothing was ever posted for a quotation).

Every operation takes the acting user (security.Actor) and checks the role first.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from flask import current_app
from sqlalchemy import func

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
from .errors import IllegalTransition
from .extensions import db
from .models import Invoice, InvoiceItem, Quotation, QuotationItem
from .numbering import allocate_and_insert
from .security import CREATE, DELETE, EDIT, SYSTEM_ACTOR, VIEW, Actor, require_permission
from .steps import Step, StepRunner
from .utils import parse_date
from .workflows import QUOTATION_WORKFLOW, SIMPLE_QUOTATION_ACTIONS

logger = logging.getLogger(__name__)

MODULE = "quotations"


# ---------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------
def list_quotations(actor: Actor, status: Optional[str] = None) -> List[Quotation]:
    require_permission(actor, MODULE, VIEW)
    q = Quotation.query
    if status:
        q = q.filter(Quotation.status == status)
    return q.order_by(Quotation.created_at.desc(), Quotation.id.desc()).all()


def get_quotation(quotation_id: int, actor: Actor) -> Quotation:
    require_permission(actor, MODULE, VIEW)
    return get_or_404(Quotation, quotation_id, "Quotation")


def quotation_summary(actor: Actor) -> Dict[str, Any]:
    """Dashboard counters: approved, pending (sent) and the value already converted."""
    require_permission(actor, MODULE, VIEW)

    counts = dict(
        db.session.execute(
            db.select(Quotation.status, func.count(Quotation.id)).group_by(Quotation.status)
        ).all()
    )
    converted_value = db.session.execute(
        db.select(func.coalesce(func.sum(Quotation.total), 0.0)).where(Quotation.status == "converted")
    ).scalar()

    return {
        "total_count": sum(counts.values()),
        "approved_count": counts.get("approved", 0),
        "pending_count": counts.get("sent", 0),
        "converted_count": counts.get("converted", 0),
        "converted_value": float(converted_value or 0),
    }


# ---------------------------------------------------------------------
# Form actions
# ---------------------------------------------------------------------
def create_quotation(data: Dict[str, Any], actor: Actor) -> Quotation:
    """Create a draft quotation numbered QUO-<year>-<seq>. At least one item is required."""
    require_permission(actor, MODULE, CREATE)

    header = parse_header(data)
    header["valid_until"] = parse_date(data.get("valid_until"))
    items = parse_items(data, require_items=True)
    apply_tax, tax_rate = tax_settings(data)

    def build(number: str) -> Quotation:
        quotation = Quotation(quotation_number=number, status="draft", **header)
        apply_items(quotation, QuotationItem, items, apply_tax, tax_rate)
        return quotation

    quotation = allocate_and_insert("QUO", header["date"].year, build)
    log_action(quotation, "CREATE", actor, before=None, after=serialize_model(quotation))
    db.session.commit()

    logger.info("Quotation %s created by %s (total=%s)", quotation.quotation_number, actor.username, quotation.total)
    return quotation


def edit_quotation(quotation_id: int, data: Dict[str, Any], actor: Actor) -> Quotation:
    """Replace header fields and the whole item set. Status is unchanged."""
    require_permission(actor, MODULE, EDIT)

    quotation = load_locked(Quotation, quotation_id, "Quotation")
    QUOTATION_WORKFLOW.target(quotation.status, "edit")

    header = parse_header(data)
    header["valid_until"] = parse_date(data.get("valid_until"))
    items = parse_items(data, require_items=True)
    apply_tax, tax_rate = tax_settings(data)

    before_snapshot = serialize_model(quotation)
    for field_name, value in header.items():
        setattr(quotation, field_name, value)
    apply_items(quotation, QuotationItem, items, apply_tax, tax_rate)
    db.session.flush()

    log_action(quotation, "UPDATE", actor, before=before_snapshot, after=serialize_model(quotation))
    db.session.commit()

    logger.info("Quotation %s edited by %s", quotation.quotation_number, actor.username)
    return quotation


# ---------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------
def set_status(quotation_id: int, action: str, actor: Actor) -> Quotation:
    """send / approve / reject / expire: a bare status write."""
    require_permission(actor, MODULE, EDIT)
    if action not in SIMPLE_QUOTATION_ACTIONS:
        raise ValueError(f"{action!r} is not a status-only quotation action")

    quotation = load_locked(Quotation, quotation_id, "Quotation")
    from_state = quotation.status
    to_state = QUOTATION_WORKFLOW.target(from_state, action)
    before = serialize_model(quotation)

    def write_status():
        quotation.status = to_state

    def audit():
        log_action(quotation, action, actor, before=before, after=serialize_model(quotation))

    StepRunner().run(
        f"{quotation.quotation_number} {action}",
        [Step("status", write_status), Step("audit", audit)],
    )
    logger.info("Quotation %s: %s -> %s (%s by %s)", quotation.quotation_number, from_state, to_state, action,
                actor.username)
    return quotation


def convert_quotation(quotation_id: int, actor: Actor) -> Invoice:
    """
    approved -> converted.

    The quotation and its items are re-read inside the transaction; the new invoice is
    a draft income invoice dated today carrying the quotation's header and items.
    """
    require_permission(actor, MODULE, CREATE)

    quotation = load_locked(Quotation, quotation_id, "Quotation")
    to_state = QUOTATION_WORKFLOW.target(quotation.status, "convert")
    before = serialize_model(quotation)
    issue_date = today()
    created: Dict[str, Invoice] = {}

    def create_invoice():
        def build(number: str) -> Invoice:
            return Invoice(
                invoice_number=number,
                invoice_type="income",
                status="draft",
                company_id=quotation.company_id,
                client_name=quotation.client_name,
                date=issue_date,
                subtotal=quotation.subtotal,
                tax=quotation.tax,
                total=quotation.total,
                notes=quotation.notes,
                payment_terms=quotation.payment_terms,
                deposit_percent=quotation.deposit_percent,
            )

        created["invoice"] = allocate_and_insert("INV", issue_date.year, build)
        return created["invoice"].invoice_number

    def copy_items():
        invoice = created["invoice"]
        for item in quotation.items:
            invoice.items.append(InvoiceItem(quotation_item_id=item.id, **item.line_fields()))
        db.session.flush()
        return len(invoice.items)

    def mark_converted():
        quotation.status = to_state
        quotation.converted_to_invoice_id = created["invoice"].id

    def audit():
        log_action(quotation, "convert", actor, before=before, after=serialize_model(quotation))
        log_action(created["invoice"], "CREATE", actor, after=serialize_model(created["invoice"]))

    StepRunner().run(
        f"{quotation.quotation_number} convert",
        [
            Step("create_invoice", create_invoice),
            Step("copy_items", copy_items),
            Step("mark_converted", mark_converted),
            Step("audit", audit),
        ],
    )

    invoice = created["invoice"]
    logger.info("Quotation %s converted to invoice %s by %s", quotation.quotation_number, invoice.invoice_number,
                actor.username)
    return invoice


def delete_quotation(quotation_id: int, actor: Actor) -> None:
    """Delete the quotation row and its items. Allowed states depend on DELETE_POLICY."""
    require_permission(actor, MODULE, DELETE)

    quotation = load_locked(Quotation, quotation_id, "Quotation")
    QUOTATION_WORKFLOW.check_delete(quotation.status, current_app.config.get("DELETE_POLICY", "restricted"))

    number = quotation.quotation_number
    before = serialize_model(quotation)

    def audit():
        log_action(None, "DELETE", actor, before=before, entity_type="Quotation", entity_id=quotation_id)

    def delete_row():
        db.session.delete(quotation)

    StepRunner().run(f"{number} delete", [Step("audit", audit), Step("delete", delete_row)])
    logger.info("Quotation %s deleted by %s", number, actor.username)


def transition(quotation_id: int, action: str, payload: Optional[Dict[str, Any]] = None,
               actor: Optional[Actor] = None):
    """Single entry point: apply action to the quotation or raise IllegalTransition."""
    payload = payload or {}
    action = (action or "").replace("-", "_")

    if action in SIMPLE_QUOTATION_ACTIONS:
        return set_status(quotation_id, action, actor)
    if action == "convert":
        return convert_quotation(quotation_id, actor)
    if action == "edit":
        return edit_quotation(quotation_id, payload, actor)
    if action == "delete":
        return delete_quotation(quotation_id, actor)

    quotation = get_or_404(Quotation, quotation_id, "Quotation")
    raise IllegalTransition("quotation", quotation.status, action)


# ---------------------------------------------------------------------
# Scheduled job
# ---------------------------------------------------------------------
def expire_quotations(as_of: Optional[date] = None, actor: Actor = SYSTEM_ACTOR) -> List[str]:
    """Expire every draft/sent quotation whose valid_until is before as_of (default today)."""
    as_of = as_of or today()
    due = (
        Quotation.query
        .filter(Quotation.status.in_(("draft", "sent")))
        .filter(Quotation.valid_until.isnot(None), Quotation.valid_until < as_of)
        .order_by(Quotation.id.asc())
        .all()
    )

    expired = []
    for quotation in due:
        set_status(quotation.id, "expire", actor)
        expired.append(quotation.quotation_number)
    return expired
