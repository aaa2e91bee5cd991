"""
salvage_finance/blueprints/quotations/routes.py

Quotation JSON routes.

Includes:
- List (status filter) / summary / detail
- Create / edit
- Transitions: send, approve, reject, expire, convert
- Delete

IMPORTANT:
- UI is never trusted. Routes only parse input and call the engine, which checks
  permissions and transition legality itself. Engine errors become JSON through the
  app-level LifecycleError handler.
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import login_required

from ... import quotations as engine
from ...security import current_actor, permission_required

quotations_bp = Blueprint("quotations", __name__, url_prefix="/quotations")


def _payload() -> dict:
    """JSON body, or the submitted form as a flat dict."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


@quotations_bp.route("/", methods=["GET"])
@login_required
@permission_required("quotations", "view")
def list_quotations():
    status = (request.args.get("status") or "").strip() or None
    quotations = engine.list_quotations(current_actor(), status=status)
    return jsonify([q.to_dict(with_items=False) for q in quotations])


@quotations_bp.route("/summary", methods=["GET"])
@login_required
@permission_required("quotations", "view")
def quotation_summary():
    return jsonify(engine.quotation_summary(current_actor()))


@quotations_bp.route("/<int:quotation_id>", methods=["GET"])
@login_required
@permission_required("quotations", "view")
def get_quotation(quotation_id: int):
    return jsonify(engine.get_quotation(quotation_id, current_actor()).to_dict())


@quotations_bp.route("/", methods=["POST"])
@login_required
def create_quotation():
    quotation = engine.create_quotation(_payload(), current_actor())
    return jsonify(quotation.to_dict()), 201


@quotations_bp.route("/<int:quotation_id>/edit", methods=["POST"])
@login_required
def edit_quotation(quotation_id: int):
    quotation = engine.edit_quotation(quotation_id, _payload(), current_actor())
    return jsonify(quotation.to_dict())


@quotations_bp.route("/<int:quotation_id>/convert", methods=["POST"])
@login_required
def convert_quotation(quotation_id: int):
    invoice = engine.convert_quotation(quotation_id, current_actor())
    return jsonify({"quotation_id": quotation_id, "invoice": invoice.to_dict()}), 201


@quotations_bp.route("/<int:quotation_id>/delete", methods=["POST"])
@login_required
def delete_quotation(quotation_id: int):
    engine.delete_quotation(quotation_id, current_actor())
    return jsonify({"deleted": quotation_id})


@quotations_bp.route("/<int:quotation_id>/<action>", methods=["POST"])
@login_required
def quotation_transition(quotation_id: int, action: str):
    """send / approve / reject / expire (anything else is answered as an illegal transition)."""
    quotation = engine.transition(quotation_id, action, _payload(), current_actor())
    return jsonify(quotation.to_dict())
