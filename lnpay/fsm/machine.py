"""
FSM Machine - invoice status transition rules.

This module is the only place that decides whether a status change is
legal. Writers call `can_transition` (through the lifecycle manager's
guarded update); nothing else compares statuses.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet

from lnpay.fsm.states import InvoiceStatus, TERMINAL_STATUSES

_ALLOWED: Dict[InvoiceStatus, FrozenSet[InvoiceStatus]] = {
    InvoiceStatus.PENDING: frozenset({
        InvoiceStatus.PROCESSING,
        InvoiceStatus.PAID,
        InvoiceStatus.EXPIRED,
        InvoiceStatus.FAILED,
        InvoiceStatus.CANCELLED,
    }),
    InvoiceStatus.PROCESSING: frozenset({
        InvoiceStatus.PAID,
        InvoiceStatus.EXPIRED,
        InvoiceStatus.FAILED,
        InvoiceStatus.CANCELLED,
    }),
}

# Terminal states are absorbing
for _terminal in TERMINAL_STATUSES:
    _ALLOWED[_terminal] = frozenset()


def allowed_transitions(current: InvoiceStatus) -> FrozenSet[InvoiceStatus]:
    """Statuses reachable in one step from `current`."""
    return _ALLOWED[InvoiceStatus(current)]


def can_transition(current: InvoiceStatus, new: InvoiceStatus) -> bool:
    """True if `current -> new` is a legal forward move."""
    return InvoiceStatus(new) in allowed_transitions(current)


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a guarded status update."""

    invoice_id: str
    previous: InvoiceStatus
    status: InvoiceStatus
    changed: bool

    @property
    def became_paid(self) -> bool:
        return self.changed and self.status is InvoiceStatus.PAID
