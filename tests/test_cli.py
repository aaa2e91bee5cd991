"""Scheduled jobs exposed as flask CLI commands."""

from conftest import service_item
from salvage_finance import invoices, quotations
from salvage_finance.extensions import db
from salvage_finance.models import AuditLog, Invoice, Quotation


def test_expire_quotations_command(app, make_quotation, admin):
    stale = make_quotation(valid_until="2025-05-31")
    sent = make_quotation(valid_until="2025-05-01")
    fresh = make_quotation(valid_until="2025-06-30")
    approved = make_quotation(valid_until="2025-05-01")
    open_ended = make_quotation()
    quotations.transition(sent.id, "send", {}, admin)
    quotations.transition(approved.id, "approve", {}, admin)

    result = app.test_cli_runner().invoke(args=["expire-quotations", "--today", "2025-06-01"])

    assert result.exit_code == 0, result.output
    assert result.output.splitlines() == [stale.quotation_number, sent.quotation_number, "2 quotation(s) expired."]
    db.session.expire_all()
    statuses = {q.id: q.status for q in Quotation.query.all()}
    assert statuses == {stale.id: "expired", sent.id: "expired", fresh.id: "draft", approved.id: "approved",
                        open_ended.id: "draft"}
    entry = AuditLog.query.filter_by(entity_type="Quotation", entity_id=stale.id, action="expire").one()
    assert entry.username_snapshot == "system"


def test_mark_overdue_command(app, make_invoice, admin):
    late = make_invoice(items=[service_item()], due_date="2025-01-10")
    on_time = make_invoice(due_date="2025-02-10")
    invoices.transition(late.id, "send", {}, admin)
    invoices.transition(on_time.id, "send", {}, admin)

    result = app.test_cli_runner().invoke(args=["mark-overdue", "--today", "2025-02-01"])

    assert result.exit_code == 0, result.output
    assert result.output.splitlines() == [late.invoice_number, "1 invoice(s) marked overdue."]
    db.session.expire_all()
    assert db.session.get(Invoice, late.id).status == "overdue"
    assert db.session.get(Invoice, on_time.id).status == "sent"


def test_commands_with_nothing_to_do(app):
    runner = app.test_cli_runner()

    assert runner.invoke(args=["expire-quotations"]).output.strip() == "0 quotation(s) expired."
    assert runner.invoke(args=["mark-overdue"]).output.strip() == "0 invoice(s) marked overdue."
