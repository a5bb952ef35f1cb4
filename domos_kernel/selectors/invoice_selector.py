"""
Module: domos_kernel.selectors.invoice_selector
Responsibility: Read-only invoice queries -- totals, event history, linked
    funds-transfer requests, the due-date window and the state check
    against the event fold.
Architecture position: Kernel > Selectors.
"""

from dataclasses import dataclass
from datetime import date, datetime
from uuid import UUID

from sqlalchemy import select

from domos_kernel.domain.invoice import (
    InvoiceState,
    InvoiceTotals,
    fold_invoice_states,
    invoice_totals,
)
from domos_kernel.exceptions import EntityNotFoundError
from domos_kernel.models.invoice import Invoice, InvoiceEvent
from domos_kernel.selectors.base import BaseSelector
from domos_kernel.selectors.funds_transfer_selector import RequestView, request_view


@dataclass(frozen=True)
class InvoiceEventView:
    sequence: int
    state: str
    occurred_at: datetime


@dataclass(frozen=True)
class InvoiceStateCheck:
    """Stored invoice state next to the fold of its events."""

    invoice_id: UUID
    stored_state: str
    folded_state: str

    @property
    def consistent(self) -> bool:
        return self.stored_state == self.folded_state


class InvoiceSelector(BaseSelector[Invoice]):

    def invoice(self, invoice_id: UUID) -> Invoice:
        invoice = self.session.get(Invoice, invoice_id)
        if invoice is None:
            raise EntityNotFoundError("Invoice", str(invoice_id))
        return invoice

    def invoice_totals(self, invoice_id: UUID) -> InvoiceTotals:
        invoice = self.invoice(invoice_id)
        return invoice_totals(
            (line.amount for line in invoice.lines),
            (c.amount for line in invoice.lines for c in line.tax_components),
        )

    def events_for(self, invoice_id: UUID) -> list[InvoiceEventView]:
        self.invoice(invoice_id)
        rows = self.session.execute(
            select(InvoiceEvent)
            .where(InvoiceEvent.invoice_id == invoice_id)
            .order_by(InvoiceEvent.sequence)
        ).scalars()
        return [InvoiceEventView(e.sequence, e.state, e.occurred_at) for e in rows]

    def verify_invoice_state(self, invoice_id: UUID) -> InvoiceStateCheck:
        invoice = self.invoice(invoice_id)
        folded = fold_invoice_states(e.state for e in self.events_for(invoice_id))
        return InvoiceStateCheck(invoice_id, invoice.state, folded.value)

    def requests_for_invoice(self, invoice_id: UUID) -> list[RequestView]:
        return [request_view(r) for r in self.invoice(invoice_id).funds_transfer_requests]

    def invoices_due_between(
        self,
        start: date,
        end: date,
        states: tuple[InvoiceState | str, ...] | None = None,
    ) -> list[Invoice]:
        """Invoices with ``start <= due_date <= end``, earliest due first."""
        stmt = select(Invoice).where(Invoice.due_date >= start, Invoice.due_date <= end)
        if states is not None:
            stmt = stmt.where(Invoice.state.in_([InvoiceState(s).value for s in states]))
        return list(
            self.session.execute(stmt.order_by(Invoice.due_date, Invoice.id)).scalars()
        )
