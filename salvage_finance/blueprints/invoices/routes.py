"""
salvage_finance/blueprints/invoices/routes.py

Invoice JSON routes.

Includes:
- List (status / type filters) / summary / detail / journal entries of one invoice
- Create / edit
- Status-only transitions: send, mark-overdue, mark-partial, cancel
- Money transitions: mark-paid, record-deposit, refund-deposit, keep-deposit, refund-sale
- Delete

Money transitions answer 500 with {"steps": {"completed": [...], "failed": [...]}} when
only part of the work was saved, so the operator knows what to reconcile.
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import login_required

from ... import invoices as engine
from ...journal import JournalWriter
from ...security import current_actor, permission_required

invoices_bp = Blueprint("invoices", __name__, url_prefix="/invoices")


def _payload() -> dict:
    """JSON body, or the submitted form as a flat dict."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


@invoices_bp.route("/", methods=["GET"])
@login_required
@permission_required("invoices", "view")
def list_invoices():
    status = (request.args.get("status") or "").strip() or None
    invoice_type = (request.args.get("type") or "").strip() or None
    invoices = engine.list_invoices(current_actor(), status=status, invoice_type=invoice_type)
    return jsonify([i.to_dict(with_items=False) for i in invoices])


@invoices_bp.route("/summary", methods=["GET"])
@login_required
@permission_required("invoices", "view")
def invoice_summary():
    return jsonify(engine.invoice_summary(current_actor()))


@invoices_bp.route("/<int:invoice_id>", methods=["GET"])
@login_required
@permission_required("invoices", "view")
def get_invoice(invoice_id: int):
    return jsonify(engine.get_invoice(invoice_id, current_actor()).to_dict())


@invoices_bp.route("/<int:invoice_id>/journal", methods=["GET"])
@login_required
@permission_required("invoices", "view")
def invoice_journal(invoice_id: int):
    invoice = engine.get_invoice(invoice_id, current_actor())
    entries = JournalWriter().entries_for(invoice.id)
    return jsonify({side: [e.to_dict() for e in rows] for side, rows in entries.items()})


@invoices_bp.route("/", methods=["POST"])
@login_required
def create_invoice():
    invoice = engine.create_invoice(_payload(), current_actor())
    return jsonify(invoice.to_dict()), 201


@invoices_bp.route("/<int:invoice_id>/edit", methods=["POST"])
@login_required
def edit_invoice(invoice_id: int):
    invoice = engine.edit_invoice(invoice_id, _payload(), current_actor())
    return jsonify(invoice.to_dict())


@invoices_bp.route("/<int:invoice_id>/delete", methods=["POST"])
@login_required
def delete_invoice(invoice_id: int):
    engine.delete_invoice(invoice_id, current_actor())
    return jsonify({"deleted": invoice_id})


@invoices_bp.route("/<int:invoice_id>/<action>", methods=["POST"])
@login_required
def invoice_transition(invoice_id: int, action: str):
    """
    send / mark-overdue / mark-partial / cancel /
    mark-paid / record-deposit / refund-deposit / keep-deposit / refund-sale
    """
    invoice = engine.transition(invoice_id, action, _payload(), current_actor())
    return jsonify(invoice.to_dict())
