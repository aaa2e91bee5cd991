"""HTTP surface: JSON blueprints, permission checks and error mapping."""

import pytest
from sqlalchemy import text

from conftest import _make_user, service_item
from salvage_finance import invoices
from salvage_finance.extensions import db
from salvage_finance.journal import JournalWriter


@pytest.fixture
def as_admin(client, login, admin_user):
    login(admin_user)
    return client


def test_login_is_required(client):
    assert client.get("/quotations/").status_code == 401
    assert client.post("/invoices/", json={}).status_code == 401


def test_quotation_to_paid_invoice_flow(as_admin, bank_account):
    resp = as_admin.post("/quotations/", json={"client_name": "Harbour Works", "apply_tax": False,
                                                "items": [service_item(2, 250)]})
    assert resp.status_code == 201
    quotation = resp.get_json()
    assert quotation["status"] == "draft"
    assert quotation["total"] == 500

    resp = as_admin.post(f"/quotations/{quotation['id']}/approve")
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "approved"

    resp = as_admin.post(f"/quotations/{quotation['id']}/convert")
    assert resp.status_code == 201
    invoice = resp.get_json()["invoice"]
    assert invoice["items"][0]["quotation_item_id"] == quotation["items"][0]["id"]
    assert len(invoice["items"]) == 1

    resp = as_admin.post(f"/invoices/{invoice['id']}/mark-paid", json={})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "validation_failed"

    resp = as_admin.post(f"/invoices/{invoice['id']}/mark-paid", json={"bank_account_id": bank_account.id})
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "paid"

    journal = as_admin.get(f"/invoices/{invoice['id']}/journal").get_json()
    assert [e["amount"] for e in journal["income"]] == [500]
    assert journal["expenses"] == []

    detail = as_admin.get(f"/quotations/{quotation['id']}").get_json()
    assert detail["status"] == "converted"
    assert detail["converted_to_invoice_id"] == invoice["id"]


def test_form_posts_are_accepted(as_admin):
    resp = as_admin.post("/invoices/", data={"client_name": "Dock 4", "invoice_type": "expense"})

    assert resp.status_code == 201
    assert resp.get_json()["invoice_type"] == "expense"


def test_illegal_transition_is_a_conflict(as_admin, make_quotation):
    quotation = make_quotation()

    resp = as_admin.post(f"/quotations/{quotation.id}/convert")

    assert resp.status_code == 409
    body = resp.get_json()
    assert body["error"] == "illegal_transition"
    assert "convert" in body["message"]


def test_unknown_document_is_not_found(as_admin):
    resp = as_admin.get("/invoices/999")

    assert resp.status_code == 404
    assert resp.get_json()["error"] == "not_found"


def test_roles_without_access_are_forbidden(app, client, login, make_invoice):
    invoice = make_invoice()
    login(_make_user("yard", "storekeeper"))

    assert client.get("/invoices/").status_code == 403
    resp = client.post(f"/invoices/{invoice.id}/send")
    assert resp.status_code == 403
    assert resp.get_json()["error"] == "permission_denied"


def test_accountant_cannot_delete(app, client, login, make_invoice):
    invoice = make_invoice()
    login(_make_user("books", "accountant"))

    assert client.post(f"/invoices/{invoice.id}/send").status_code == 200
    assert client.post(f"/invoices/{invoice.id}/delete").status_code == 403


def test_list_filters_and_summary(as_admin, make_invoice):
    make_invoice()
    make_invoice(invoice_type="expense")

    listed = as_admin.get("/invoices/?type=expense").get_json()
    assert [i["invoice_type"] for i in listed] == ["expense"]
    assert "items" not in listed[0]

    summary = as_admin.get("/quotations/summary").get_json()
    assert summary["total_count"] == 0


def test_partial_failure_reports_steps(as_admin, make_invoice, bank_account, monkeypatch):
    invoice = make_invoice()

    def broken_post_income(self, **fields):
        raise RuntimeError("income store unavailable")

    monkeypatch.setattr(JournalWriter, "post_income", broken_post_income)

    resp = as_admin.post(f"/invoices/{invoice.id}/mark-paid", json={"bank_account_id": bank_account.id})

    assert resp.status_code == 500
    body = resp.get_json()
    assert body["error"] == "partially_applied"
    assert body["steps"]["failed"] == ["journal"]
    assert "status" in body["steps"]["completed"]


def test_delete_route(as_admin, make_invoice):
    invoice = make_invoice()

    resp = as_admin.post(f"/invoices/{invoice.id}/delete")

    assert resp.status_code == 200
    assert resp.get_json() == {"deleted": invoice.id}
    assert as_admin.get(f"/invoices/{invoice.id}").status_code == 404


def test_concurrent_save_is_a_conflict(as_admin, make_invoice, monkeypatch):
    invoice = make_invoice()
    real_load_locked = invoices.load_locked

    def load_then_saved_elsewhere(model, document_id, label):
        document = real_load_locked(model, document_id, label)
        db.session.execute(text("UPDATE invoices SET version_id = version_id + 1 WHERE id = :id"),
                           {"id": document_id})
        return document

    monkeypatch.setattr(invoices, "load_locked", load_then_saved_elsewhere)

    resp = as_admin.post(f"/invoices/{invoice.id}/send")

    assert resp.status_code == 409
    assert resp.get_json()["error"] == "stale_record"
    monkeypatch.undo()
    assert as_admin.get(f"/invoices/{invoice.id}").get_json()["status"] == "draft"
