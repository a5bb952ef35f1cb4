"""
Invoice value objects, totals and the invoice state machine.

Responsibility:
    Line and tax-component specs for issuing an invoice, the gross / net /
    tax totals posted to the ledger, and the table of admissible invoice
    state moves that InvoiceService checks before appending an event.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from domos_kernel.exceptions import InvalidTransitionError


class InvoiceState(str, Enum):
    ISSUED = "issued"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELED = "canceled"


INVOICE_TRANSITIONS: dict[InvoiceState, frozenset[InvoiceState]] = {
    InvoiceState.ISSUED: frozenset({
        InvoiceState.PARTIALLY_PAID, InvoiceState.PAID,
        InvoiceState.OVERDUE, InvoiceState.CANCELED,
    }),
    InvoiceState.PARTIALLY_PAID: frozenset({
        InvoiceState.PARTIALLY_PAID, InvoiceState.PAID, InvoiceState.OVERDUE,
    }),
    InvoiceState.OVERDUE: frozenset({
        InvoiceState.PARTIALLY_PAID, InvoiceState.PAID, InvoiceState.CANCELED,
    }),
    # Terminal states -- no transitions allowed
    InvoiceState.PAID: frozenset(),
    InvoiceState.CANCELED: frozenset(),
}


def validate_invoice_transition(current: InvoiceState | str, target: InvoiceState | str) -> InvoiceState:
    """
    Check that ``current -> target`` is admissible and return the target.

    Raises:
        InvalidTransitionError: If the move is not in INVOICE_TRANSITIONS.
    """
    current = InvoiceState(current)
    try:
        target = InvoiceState(target)
    except ValueError:
        raise InvalidTransitionError(
            f"Unknown invoice state '{target}'",
            current_state=current.value,
        ) from None
    if target not in INVOICE_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Invoice cannot move from '{current.value}' to '{target.value}'",
            current_state=current.value,
        )
    return target


def fold_invoice_states(states) -> InvoiceState:
    """Replay recorded event states from ISSUED."""
    current = InvoiceState.ISSUED
    for state in states:
        current = validate_invoice_transition(current, state)
    return current


@dataclass(frozen=True)
class InvoiceLineSpec:
    """One billable line.  ``amount`` defaults to quantity * unit_amount."""

    description: str
    quantity: Decimal
    unit_amount: Decimal
    amount: Decimal | None = None

    @property
    def net_amount(self) -> Decimal:
        if self.amount is not None:
            return self.amount
        return self.quantity * self.unit_amount


@dataclass(frozen=True)
class TaxComponentSpec:
    """Tax on the line at position ``line_index`` of the same invoice."""

    line_index: int
    tax_code: str
    rate: Decimal
    amount: Decimal


@dataclass(frozen=True)
class InvoiceTotals:
    net: Decimal
    tax: Decimal

    @property
    def gross(self) -> Decimal:
        return self.net + self.tax


def invoice_totals(line_amounts, tax_amounts) -> InvoiceTotals:
    """Net is the sum of line amounts; tax the sum of all tax components."""
    return InvoiceTotals(
        net=sum(line_amounts, Decimal("0")),
        tax=sum(tax_amounts, Decimal("0")),
    )
