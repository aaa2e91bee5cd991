"""
Transition tables for quotations and invoices.

Every allowed (status, action) pair is listed here and nowhere else. Operations ask
Workflow.target() for the destination status; any pair missing from the table raises
IllegalTransition.

"edit" keeps the status and "delete" removes the row, so they are listed as
permissions (allowed_in / delete states) rather than transitions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Tuple

from .errors import IllegalTransition

KEEP_STATUS = None


@dataclass(frozen=True)
class Transition:
    action: str
    from_states: FrozenSet[str]
    to_state: str | None


def _t(action: str, from_states: Iterable[str], to_state: str | None) -> Transition:
    return Transition(action=action, from_states=frozenset(from_states), to_state=to_state)


@dataclass(frozen=True)
class Workflow:
    kind: str
    transitions: Tuple[Transition, ...]
    delete_restricted_to: FrozenSet[str]

    @property
    def by_action(self) -> Dict[str, Transition]:
        return {t.action: t for t in self.transitions}

    @property
    def actions(self) -> Tuple[str, ...]:
        return tuple(t.action for t in self.transitions)

    def allows(self, status: str, action: str) -> bool:
        transition = self.by_action.get(action)
        return transition is not None and status in transition.from_states

    def target(self, status: str, action: str) -> str:
        """
        Destination status for (status, action).

        Returns the current status for status-preserving actions (edit).
        """
        if not self.allows(status, action):
            raise IllegalTransition(self.kind, status, action)
        to_state = self.by_action[action].to_state
        return status if to_state is KEEP_STATUS else to_state

    def check_delete(self, status: str, policy: str) -> None:
        if policy == "permissive":
            return
        if status not in self.delete_restricted_to:
            raise IllegalTransition(self.kind, status, "delete")


OPEN_QUOTATION = ("draft", "sent")

QUOTATION_WORKFLOW = Workflow(
    kind="quotation",
    transitions=(
        _t("edit", OPEN_QUOTATION, KEEP_STATUS),
        _t("send", ("draft",), "sent"),
        _t("approve", OPEN_QUOTATION, "approved"),
        _t("reject", OPEN_QUOTATION, "rejected"),
        _t("expire", OPEN_QUOTATION, "expired"),
        _t("convert", ("approved",), "converted"),
    ),
    delete_restricted_to=frozenset(("draft", "rejected", "expired")),
)

PAYABLE_INVOICE = ("draft", "sent", "overdue")

INVOICE_WORKFLOW = Workflow(
    kind="invoice",
    transitions=(
        _t("edit", ("draft", "sent", "overdue", "partial"), KEEP_STATUS),
        _t("send", ("draft",), "sent"),
        _t("mark_overdue", ("sent",), "overdue"),
        _t("mark_partial", ("sent", "overdue"), "partial"),
        _t("cancel", ("draft", "sent", "overdue", "partial"), "cancelled"),
        _t("mark_paid", PAYABLE_INVOICE, "paid"),
        _t("record_deposit", PAYABLE_INVOICE, "deposit_paid"),
        _t("refund_deposit", ("deposit_paid",), "cancelled_refunded"),
        _t("keep_deposit", ("deposit_paid",), "cancelled_deposit_kept"),
        _t("refund_sale", ("paid",), "cancelled_refunded"),
    ),
    delete_restricted_to=frozenset(("draft",)),
)

# Actions that only write the status column
SIMPLE_QUOTATION_ACTIONS = ("send", "approve", "reject", "expire")
SIMPLE_INVOICE_ACTIONS = ("send", "mark_overdue", "mark_partial", "cancel")
