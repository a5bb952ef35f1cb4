"""
Invoices: issuing, the event log, deletion rules, funds-transfer links and
posting to the ledger.
"""

from datetime import date, datetime, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from domos_kernel.domain.invoice import InvoiceLineSpec, TaxComponentSpec
from domos_kernel.exceptions import (
    ConflictError,
    DuplicateEntityError,
    EntityNotFoundError,
    ImmutabilityViolationError,
    InvalidTransitionError,
    ValidationError,
)
from domos_kernel.models.invoice import InvoiceLine, InvoiceLineTaxComponent
from domos_kernel.selectors.invoice_selector import InvoiceSelector
from domos_kernel.selectors.ledger_selector import LedgerSelector

ISSUED_ON = date(2024, 1, 1)


@pytest.fixture
def receivables(session):
    return InvoiceSelector(session)


@pytest.fixture
def taxed_invoice(invoices):
    """Two lines, 150.00 net, with 15.00 of tax on the first line."""
    return invoices.issue_invoice(
        ISSUED_ON,
        ISSUED_ON + timedelta(days=30),
        "USD",
        [
            InvoiceLineSpec("Consulting", Decimal("2"), Decimal("50.00")),
            InvoiceLineSpec("Travel", Decimal("1"), Decimal("50.00")),
        ],
        [TaxComponentSpec(0, "VAT", Decimal("0.15"), Decimal("15.00"))],
        description="January services",
    )


class TestIssue:

    def test_lines_and_totals(self, receivables, taxed_invoice):
        invoice = receivables.invoice(taxed_invoice.id)
        assert invoice.state == "issued"
        assert [line.line_index for line in invoice.lines] == [0, 1]
        assert [c.tax_code for c in invoice.lines[0].tax_components] == ["VAT"]

        totals = receivables.invoice_totals(taxed_invoice.id)
        assert (totals.net, totals.tax, totals.gross) == (
            Decimal("150.00"),
            Decimal("15.00"),
            Decimal("165.00"),
        )

    def test_no_lines(self, invoices):
        with pytest.raises(ValidationError) as exc_info:
            invoices.issue_invoice(ISSUED_ON, ISSUED_ON, "USD", [])
        assert exc_info.value.field == "lines"

    def test_due_before_issue(self, invoices):
        with pytest.raises(ValidationError) as exc_info:
            invoices.issue_invoice(
                ISSUED_ON,
                ISSUED_ON - timedelta(days=1),
                "USD",
                [InvoiceLineSpec("Widget", Decimal("1"), Decimal("5"))],
            )
        assert exc_info.value.field == "due_date"

    def test_tax_on_missing_line(self, invoices):
        with pytest.raises(ValidationError) as exc_info:
            invoices.issue_invoice(
                ISSUED_ON,
                ISSUED_ON,
                "USD",
                [InvoiceLineSpec("Widget", Decimal("1"), Decimal("5"))],
                [TaxComponentSpec(3, "VAT", Decimal("0.2"), Decimal("1"))],
            )
        assert exc_info.value.field == "tax_components"

    def test_unknown_invoice(self, receivables):
        with pytest.raises(EntityNotFoundError):
            receivables.invoice(uuid4())


class TestEvents:

    def test_partial_then_full_payment(self, invoices, receivables, taxed_invoice, clock):
        invoices.record_invoice_event(taxed_invoice.id, "partially_paid", clock.now())
        invoices.record_invoice_event(taxed_invoice.id, "paid", clock.tick())

        assert taxed_invoice.state == "paid"
        events = receivables.events_for(taxed_invoice.id)
        assert [(e.sequence, e.state) for e in events] == [(1, "partially_paid"), (2, "paid")]

    def test_inadmissible_transition(self, invoices, taxed_invoice, clock):
        invoices.record_invoice_event(taxed_invoice.id, "paid", clock.now())
        with pytest.raises(InvalidTransitionError):
            invoices.record_invoice_event(taxed_invoice.id, "overdue", clock.tick())

    def test_time_never_goes_backwards(self, invoices, taxed_invoice, clock):
        invoices.record_invoice_event(taxed_invoice.id, "overdue", clock.now())
        with pytest.raises(ValidationError) as exc_info:
            invoices.record_invoice_event(
                taxed_invoice.id, "partially_paid", clock.now() - timedelta(minutes=1)
            )
        assert exc_info.value.field == "occurred_at"
        assert taxed_invoice.state == "overdue"

    def test_same_instant_is_allowed(self, invoices, taxed_invoice, clock):
        invoices.record_invoice_event(taxed_invoice.id, "overdue", clock.now())
        invoices.record_invoice_event(taxed_invoice.id, "partially_paid", clock.now())
        assert taxed_invoice.state == "partially_paid"

    def test_naive_time_is_refused(self, invoices, taxed_invoice):
        with pytest.raises(ValidationError) as exc_info:
            invoices.record_invoice_event(taxed_invoice.id, "overdue", datetime(2024, 1, 2, 9, 0))
        assert exc_info.value.field == "occurred_at"

    def test_stored_state_matches_event_fold(self, invoices, receivables, taxed_invoice, clock):
        invoices.record_invoice_event(taxed_invoice.id, "overdue", clock.now())
        invoices.record_invoice_event(taxed_invoice.id, "partially_paid", clock.tick())
        check = receivables.verify_invoice_state(taxed_invoice.id)
        assert check.consistent
        assert check.folded_state == "partially_paid"

    def test_divergence_is_detected(self, invoices, receivables, session, taxed_invoice, clock, captured_logs):
        invoices.record_invoice_event(taxed_invoice.id, "overdue", clock.now())
        taxed_invoice.state = "partially_paid"
        session.flush()

        check = receivables.verify_invoice_state(taxed_invoice.id)
        assert not check.consistent
        assert check.folded_state == "overdue"
        with pytest.raises(ConflictError):
            invoices.record_invoice_event(taxed_invoice.id, "canceled", clock.tick())
        assert [e.state for e in receivables.events_for(taxed_invoice.id)] == ["overdue"]
        (record,) = [r for r in captured_logs() if r["message"] == "invoice_state_diverged"]
        assert (record["stored_state"], record["folded_state"]) == ("partially_paid", "overdue")

    def test_due_between(self, invoices, receivables, taxed_invoice, clock):
        later = invoices.issue_invoice(
            ISSUED_ON,
            ISSUED_ON + timedelta(days=60),
            "USD",
            [InvoiceLineSpec("Widget", Decimal("1"), Decimal("5"))],
        )
        window = (ISSUED_ON, ISSUED_ON + timedelta(days=90))
        assert [i.id for i in receivables.invoices_due_between(*window)] == [taxed_invoice.id, later.id]

        invoices.record_invoice_event(taxed_invoice.id, "overdue", clock.now())
        assert [i.id for i in receivables.invoices_due_between(*window, states=("overdue",))] == [
            taxed_invoice.id
        ]


class TestDelete:

    def test_fresh_invoice_can_be_deleted(self, invoices, receivables, session, taxed_invoice):
        invoice_id = taxed_invoice.id
        line_ids = [line.id for line in taxed_invoice.lines]
        invoices.delete_invoice(invoice_id)
        with pytest.raises(EntityNotFoundError):
            receivables.invoice(invoice_id)

        remaining_lines = session.scalar(
            select(func.count()).select_from(InvoiceLine).where(InvoiceLine.invoice_id == invoice_id)
        )
        remaining_taxes = session.scalar(
            select(func.count())
            .select_from(InvoiceLineTaxComponent)
            .where(InvoiceLineTaxComponent.line_id.in_(line_ids))
        )
        assert (remaining_lines, remaining_taxes) == (0, 0)

    def test_invoice_with_events_is_kept(self, invoices, taxed_invoice, clock):
        invoices.record_invoice_event(taxed_invoice.id, "overdue", clock.now())
        with pytest.raises(ImmutabilityViolationError, match="recorded events"):
            invoices.delete_invoice(taxed_invoice.id)

    def test_posted_invoice_is_kept(self, invoices, taxed_invoice, accounts, seed):
        invoices.post_invoice_to_ledger(
            taxed_invoice.id, accounts.receivable, accounts.revenue, accounts.tax, owners=[seed.alice]
        )
        with pytest.raises(ImmutabilityViolationError, match="posted"):
            invoices.delete_invoice(taxed_invoice.id)


class TestFundsTransferLinks:

    def test_link_leaves_state_alone(self, invoices, receivables, funds_transfer, taxed_invoice, credit_system):
        request = funds_transfer.create_request(
            "R1", credit_system.id, Decimal("165.00"), "USD", "deposit", "tx-inv"
        )
        invoices.link_funds_transfer_request(taxed_invoice.id, request.id)
        invoices.link_funds_transfer_request(taxed_invoice.id, request.id)

        assert [r.guid for r in receivables.requests_for_invoice(taxed_invoice.id)] == ["R1"]
        assert taxed_invoice.state == "issued"


class TestPostToLedger:

    def test_debits_gross_and_credits_net_and_tax(self, invoices, session, taxed_invoice, accounts, seed):
        journal = invoices.post_invoice_to_ledger(
            taxed_invoice.id, accounts.receivable, accounts.revenue, accounts.tax, owners=[seed.alice]
        )

        books = LedgerSelector(session)
        assert taxed_invoice.journal_id == journal.id
        assert books.journal(journal.id).journal_type == "invoice"
        assert books.account_balance(accounts.receivable) == Decimal("165.00")
        assert books.account_balance(accounts.revenue) == Decimal("-150.00")
        assert books.account_balance(accounts.tax) == Decimal("-15.00")

    def test_posted_once(self, invoices, taxed_invoice, accounts, seed):
        args = (taxed_invoice.id, accounts.receivable, accounts.revenue, accounts.tax)
        invoices.post_invoice_to_ledger(*args, owners=[seed.alice])
        with pytest.raises(DuplicateEntityError):
            invoices.post_invoice_to_ledger(*args, owners=[seed.alice])

    def test_tax_needs_an_account(self, invoices, taxed_invoice, accounts, seed):
        with pytest.raises(ValidationError) as exc_info:
            invoices.post_invoice_to_ledger(
                taxed_invoice.id, accounts.receivable, accounts.revenue, owners=[seed.alice]
            )
        assert exc_info.value.field == "tax_account_id"

    def test_canceled_invoice(self, invoices, taxed_invoice, accounts, seed, clock):
        invoices.record_invoice_event(taxed_invoice.id, "canceled", clock.now())
        with pytest.raises(ValidationError):
            invoices.post_invoice_to_ledger(
                taxed_invoice.id, accounts.receivable, accounts.revenue, accounts.tax, owners=[seed.alice]
            )

    def test_currency_rules_still_apply(self, invoices, taxed_invoice, accounts, seed):
        with pytest.raises(ValidationError) as exc_info:
            invoices.post_invoice_to_ledger(
                taxed_invoice.id, accounts.euro, accounts.revenue, accounts.tax, owners=[seed.alice]
            )
        assert exc_info.value.field == "currency"
        assert taxed_invoice.journal_id is None
