"""
InvoiceService -- invoices on top of the ledger.

Responsibility:
    Issues invoices with their lines and tax components, appends invoice
    events while keeping the denormalized state equal to their fold, links
    settling funds-transfer requests, posts an invoice to the ledger, and
    deletes invoices that have not yet entered any history.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.  Ledger writes go
    through LedgerService so that the double-entry rules apply unchanged.

Invariants enforced:
    - invoice.state == fold of its events; the event and the new state are
      flushed together.
    - Event times never go backwards within one invoice.
    - Linked funds-transfer requests never change invoice state.
    - An invoice is posted to the ledger at most once.

Failure modes:
    - ValidationError: no lines, due date before issue date, tax component
      naming a missing line, event time before the previous event.
    - InvalidTransitionError: state move not in INVOICE_TRANSITIONS.
    - ImmutabilityViolationError: deleting an invoice with events or a journal.
    - DuplicateEntityError: posting an already-posted invoice.
"""

from datetime import date, datetime
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from domos_kernel.db.types import to_money, validate_currency
from domos_kernel.domain.clock import Clock
from domos_kernel.domain.invoice import (
    InvoiceLineSpec,
    InvoiceState,
    TaxComponentSpec,
    fold_invoice_states,
    invoice_totals,
    validate_invoice_transition,
)
from domos_kernel.domain.ledger import PostingSpec
from domos_kernel.exceptions import (
    ConflictError,
    DuplicateEntityError,
    ImmutabilityViolationError,
    ValidationError,
)
from domos_kernel.logging_config import get_logger
from domos_kernel.models.funds_transfer import FundsTransferRequest
from domos_kernel.models.invoice import (
    Invoice,
    InvoiceEvent,
    InvoiceLine,
    InvoiceLineTaxComponent,
)
from domos_kernel.models.ledger import Journal
from domos_kernel.services.base import BaseService
from domos_kernel.services.ledger_service import LedgerService

logger = get_logger("services.invoice")

INVOICE_JOURNAL_TYPE = "invoice"


class InvoiceService(BaseService[Invoice]):

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        ledger: LedgerService | None = None,
    ):
        super().__init__(session, clock)
        self._ledger = ledger or LedgerService(session, self.clock)

    def issue_invoice(
        self,
        issue_date: date,
        due_date: date,
        currency: str,
        lines: Sequence[InvoiceLineSpec],
        tax_components: Sequence[TaxComponentSpec] = (),
        description: str | None = None,
    ) -> Invoice:
        """
        Create an invoice in state ``issued``.  No event is recorded.

        Tax components reference lines by their position in ``lines``.
        """
        if not lines:
            raise ValidationError("An invoice needs at least one line", field="lines")
        if due_date < issue_date:
            raise ValidationError("due_date is before issue_date", field="due_date")

        invoice = Invoice(
            issue_date=issue_date,
            due_date=due_date,
            currency=validate_currency(currency),
            description=description,
            state=InvoiceState.ISSUED.value,
            created_at=self.clock.now(),
        )
        for index, spec in enumerate(lines):
            invoice.lines.append(
                InvoiceLine(
                    line_index=index,
                    description=spec.description,
                    quantity=to_money(spec.quantity),
                    unit_amount=to_money(spec.unit_amount),
                    amount=to_money(spec.net_amount),
                )
            )
        for component in tax_components:
            if not 0 <= component.line_index < len(invoice.lines):
                raise ValidationError(
                    f"Tax component {component.tax_code} names missing line {component.line_index}",
                    field="tax_components",
                )
            invoice.lines[component.line_index].tax_components.append(
                InvoiceLineTaxComponent(
                    tax_code=component.tax_code,
                    rate=to_money(component.rate),
                    amount=to_money(component.amount),
                )
            )

        self.session.add(invoice)
        self.session.flush()
        logger.info(
            "invoice_issued",
            extra={
                "invoice_id": str(invoice.id),
                "line_count": len(invoice.lines),
                "currency": invoice.currency,
            },
        )
        return invoice

    def record_invoice_event(
        self,
        invoice_id: UUID,
        state: InvoiceState | str,
        occurred_at: datetime,
    ) -> InvoiceEvent:
        """
        Append an invoice event and move the invoice to ``state``.

        Raises:
            InvalidTransitionError: If the move is not admissible.
            ValidationError: If occurred_at is naive or precedes the previous event.
            ConflictError: If the stored state disagrees with the event log, or
                a concurrent append took the same sequence.
        """
        invoice = self._require(Invoice, invoice_id, for_update=True)
        history = list(
            self.session.execute(
                select(InvoiceEvent)
                .where(InvoiceEvent.invoice_id == invoice_id)
                .order_by(InvoiceEvent.sequence)
            ).scalars()
        )
        folded = fold_invoice_states(e.state for e in history)
        if folded.value != invoice.state:
            logger.error(
                "invoice_state_diverged",
                extra={
                    "invoice_id": str(invoice_id),
                    "stored_state": invoice.state,
                    "folded_state": folded.value,
                },
            )
            raise ConflictError(
                "Invoice",
                f"Stored state '{invoice.state}' disagrees with event log '{folded.value}'",
            )

        target = validate_invoice_transition(folded, state)
        if occurred_at.tzinfo is None:
            raise ValidationError("Invoice event time must be timezone-aware", field="occurred_at")
        last = history[-1] if history else None
        if last is not None and occurred_at < last.occurred_at:
            raise ValidationError(
                "Invoice event time precedes the previous event",
                field="occurred_at",
            )

        event = InvoiceEvent(
            invoice_id=invoice_id,
            sequence=len(history) + 1,
            state=target.value,
            occurred_at=occurred_at,
        )
        self.session.add(event)
        previous_state = folded.value
        invoice.state = target.value
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise ConflictError(
                "InvoiceEvent",
                f"Event #{event.sequence} of invoice {invoice_id} was appended concurrently",
            ) from exc

        logger.info(
            "invoice_event_recorded",
            extra={
                "invoice_id": str(invoice_id),
                "from_state": previous_state,
                "to_state": target.value,
                "sequence": event.sequence,
            },
        )
        return event

    def delete_invoice(self, invoice_id: UUID) -> None:
        """
        Delete an invoice with its lines and tax components.

        Only invoices without history can go: once an event is recorded or
        a journal is posted, the invoice is part of the audit trail.
        """
        invoice = self._require(Invoice, invoice_id, for_update=True)
        has_events = self.session.execute(
            select(InvoiceEvent.id).where(InvoiceEvent.invoice_id == invoice_id).limit(1)
        ).first()
        if has_events is not None:
            raise ImmutabilityViolationError("Invoice", str(invoice_id), "invoice has recorded events")
        if invoice.journal_id is not None:
            raise ImmutabilityViolationError("Invoice", str(invoice_id), "invoice is posted to the ledger")

        self.session.delete(invoice)
        self.session.flush()
        logger.info("invoice_deleted", extra={"invoice_id": str(invoice_id)})

    def link_funds_transfer_request(self, invoice_id: UUID, request_id: UUID) -> Invoice:
        """Record that a funds-transfer request services this invoice.  State is untouched."""
        invoice = self._require(Invoice, invoice_id)
        request = self._require(FundsTransferRequest, request_id)
        if request not in invoice.funds_transfer_requests:
            invoice.funds_transfer_requests.append(request)
            self.session.flush()
        return invoice

    def post_invoice_to_ledger(
        self,
        invoice_id: UUID,
        receivable_account_id: UUID,
        revenue_account_id: UUID,
        tax_account_id: UUID | None = None,
        owners: Iterable[UUID] = (),
    ) -> Journal:
        """
        Commit the invoice's journal: debit receivable with the gross amount,
        credit revenue with the net amount and tax with the tax amount.
        """
        invoice = self._require(Invoice, invoice_id, for_update=True)
        if invoice.journal_id is not None:
            raise DuplicateEntityError("Journal", f"invoice {invoice_id}")
        if invoice.state == InvoiceState.CANCELED.value:
            raise ValidationError("A canceled invoice cannot be posted", field="invoice_id")

        totals = invoice_totals(
            (line.amount for line in invoice.lines),
            (c.amount for line in invoice.lines for c in line.tax_components),
        )
        postings = [
            PostingSpec(receivable_account_id, totals.gross, invoice.currency),
            PostingSpec(revenue_account_id, -totals.net, invoice.currency),
        ]
        if totals.tax:
            if tax_account_id is None:
                raise ValidationError("Invoice carries tax but no tax account was given", field="tax_account_id")
            postings.append(PostingSpec(tax_account_id, -totals.tax, invoice.currency))

        journal = self._ledger.commit_journal(
            INVOICE_JOURNAL_TYPE,
            postings=postings,
            owners=owners,
            description=f"Invoice {invoice_id}",
        )
        invoice.journal_id = journal.id
        self.session.flush()
        logger.info(
            "invoice_posted",
            extra={
                "invoice_id": str(invoice_id),
                "journal_id": str(journal.id),
                "gross": str(totals.gross),
            },
        )
        return journal
