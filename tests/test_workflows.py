"""Transition tables."""

import pytest

from salvage_finance.errors import IllegalTransition
from salvage_finance.workflows import INVOICE_WORKFLOW, QUOTATION_WORKFLOW

QUOTATION_STATES = ("draft", "sent", "approved", "rejected", "converted", "expired")
INVOICE_STATES = (
    "draft", "sent", "overdue", "partial", "paid", "deposit_paid",
    "cancelled", "cancelled_deposit_kept", "cancelled_refunded",
)


@pytest.mark.parametrize(
    "status, action, expected",
    [
        ("draft", "send", "sent"),
        ("draft", "approve", "approved"),
        ("sent", "approve", "approved"),
        ("sent", "reject", "rejected"),
        ("sent", "expire", "expired"),
        ("approved", "convert", "converted"),
        ("sent", "edit", "sent"),
    ],
)
def test_quotation_transitions(status, action, expected):
    assert QUOTATION_WORKFLOW.target(status, action) == expected


@pytest.mark.parametrize("status", [s for s in QUOTATION_STATES if s != "approved"])
def test_conversion_only_from_approved(status):
    with pytest.raises(IllegalTransition) as excinfo:
        QUOTATION_WORKFLOW.target(status, "convert")

    assert excinfo.value.status == status
    assert excinfo.value.action == "convert"


@pytest.mark.parametrize("status", ["approved", "rejected", "converted", "expired"])
def test_closed_quotations_are_not_editable(status):
    with pytest.raises(IllegalTransition):
        QUOTATION_WORKFLOW.target(status, "edit")


@pytest.mark.parametrize(
    "status, action, expected",
    [
        ("draft", "send", "sent"),
        ("sent", "mark_overdue", "overdue"),
        ("overdue", "mark_partial", "partial"),
        ("partial", "cancel", "cancelled"),
        ("draft", "mark_paid", "paid"),
        ("sent", "mark_paid", "paid"),
        ("overdue", "mark_paid", "paid"),
        ("sent", "record_deposit", "deposit_paid"),
        ("deposit_paid", "refund_deposit", "cancelled_refunded"),
        ("deposit_paid", "keep_deposit", "cancelled_deposit_kept"),
        ("paid", "refund_sale", "cancelled_refunded"),
        ("partial", "edit", "partial"),
    ],
)
def test_invoice_transitions(status, action, expected):
    assert INVOICE_WORKFLOW.target(status, action) == expected


@pytest.mark.parametrize("status", [s for s in INVOICE_STATES if s not in ("draft", "sent", "overdue")])
def test_paid_only_from_draft_sent_or_overdue(status):
    with pytest.raises(IllegalTransition):
        INVOICE_WORKFLOW.target(status, "mark_paid")


def test_unknown_action_is_illegal_everywhere():
    for status in INVOICE_STATES:
        assert not INVOICE_WORKFLOW.allows(status, "teleport")
    for status in QUOTATION_STATES:
        assert not QUOTATION_WORKFLOW.allows(status, "teleport")


def test_delete_policy():
    INVOICE_WORKFLOW.check_delete("draft", "restricted")
    with pytest.raises(IllegalTransition):
        INVOICE_WORKFLOW.check_delete("paid", "restricted")
    INVOICE_WORKFLOW.check_delete("paid", "permissive")

    for status in ("draft", "rejected", "expired"):
        QUOTATION_WORKFLOW.check_delete(status, "restricted")
    with pytest.raises(IllegalTransition):
        QUOTATION_WORKFLOW.check_delete("approved", "restricted")
