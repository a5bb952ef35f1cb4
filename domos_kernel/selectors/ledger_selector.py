"""
Module: domos_kernel.selectors.ledger_selector
Responsibility: Read-only ledger queries -- journal views, balances
    recomputed from postings, the account change feed, and remittance
    lookup by key.
Architecture position: Kernel > Selectors.  May import from db/, models/,
    domain/ and selectors/base.py.  MUST NOT import from services/.

Invariants enforced:
    - account_balance() derives from posted rows only, so it can be compared
      with the stored Account.balance to detect drift.
    - journal_balance_by_currency() of any committed journal is all zeros.

Failure modes:
    - EntityNotFoundError for an unknown journal or account id.
    - Returns None / empty lists when nothing matches.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from domos_kernel.db.types import ZERO
from domos_kernel.exceptions import EntityNotFoundError
from domos_kernel.models.ledger import Account, Journal, Posting, Remittance
from domos_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class PostingView:
    line_number: int
    account_id: UUID
    amount: Decimal
    currency: str


@dataclass(frozen=True)
class RemittanceView:
    remittance_id: UUID
    journal_id: UUID
    account_id: UUID
    credit_system_id: UUID
    transaction_id: str
    line_id: str | None
    key_discriminator: str
    amount: Decimal
    currency: str


@dataclass(frozen=True)
class JournalView:
    """A committed journal as read back from the store."""

    journal_id: UUID
    journal_type: str
    description: str | None
    is_closed: bool
    state_transition_id: UUID | None
    reversal_of_id: UUID | None
    created_at: datetime
    postings: tuple[PostingView, ...]
    remittances: tuple[RemittanceView, ...]


@dataclass(frozen=True)
class AccountChange:
    account_id: UUID
    name: str
    currency: str
    balance: Decimal
    last_modified_at: datetime


def _remittance_view(r: Remittance) -> RemittanceView:
    return RemittanceView(
        remittance_id=r.id,
        journal_id=r.journal_id,
        account_id=r.account_id,
        credit_system_id=r.credit_system_id,
        transaction_id=r.transaction_id,
        line_id=r.line_id,
        key_discriminator=r.key_discriminator,
        amount=r.amount,
        currency=r.currency,
    )


class LedgerSelector(BaseSelector[Journal]):
    """
    Read path for the ledger.

    Balances are summed in Python over Decimal column values so that the
    result is exact on every backend.
    """

    def journal(self, journal_id: UUID) -> JournalView:
        journal = self.session.get(Journal, journal_id)
        if journal is None:
            raise EntityNotFoundError("Journal", str(journal_id))
        return JournalView(
            journal_id=journal.id,
            journal_type=journal.journal_type,
            description=journal.description,
            is_closed=journal.is_closed,
            state_transition_id=journal.state_transition_id,
            reversal_of_id=journal.reversal_of_id,
            created_at=journal.created_at,
            postings=tuple(
                PostingView(p.line_number, p.account_id, p.amount, p.currency)
                for p in journal.postings
            ),
            remittances=tuple(_remittance_view(r) for r in journal.remittances),
        )

    def journals_for_transition(self, state_transition_id: UUID) -> list[JournalView]:
        ids = self.session.execute(
            select(Journal.id)
            .where(Journal.state_transition_id == state_transition_id)
            .order_by(Journal.created_at, Journal.id)
        ).scalars()
        return [self.journal(journal_id) for journal_id in ids]

    def reversal_of(self, journal_id: UUID) -> UUID | None:
        """Id of the journal that reverses ``journal_id``, if any."""
        return self.session.execute(
            select(Journal.id).where(Journal.reversal_of_id == journal_id)
        ).scalar_one_or_none()

    def account_balance(self, account_id: UUID) -> Decimal:
        """Sum of all postings against the account."""
        if self.session.get(Account, account_id) is None:
            raise EntityNotFoundError("Account", str(account_id))
        amounts = self.session.execute(
            select(Posting.amount).where(Posting.account_id == account_id)
        ).scalars()
        return sum(amounts, ZERO)

    def journal_balance_by_currency(self, journal_id: UUID) -> dict[str, Decimal]:
        """Signed posting sums per currency; every value is zero for a committed journal."""
        if self.session.get(Journal, journal_id) is None:
            raise EntityNotFoundError("Journal", str(journal_id))
        totals: dict[str, Decimal] = defaultdict(lambda: ZERO)
        rows = self.session.execute(
            select(Posting.currency, Posting.amount).where(Posting.journal_id == journal_id)
        )
        for currency, amount in rows:
            totals[currency] += amount
        return dict(totals)

    def accounts_modified_since(self, since: datetime) -> list[AccountChange]:
        """
        The account change feed: accounts whose balance moved strictly after
        ``since``, oldest change first.
        """
        accounts = self.session.execute(
            select(Account)
            .where(Account.last_modified_at > since)
            .order_by(Account.last_modified_at, Account.id)
        ).scalars()
        return [
            AccountChange(a.id, a.name, a.currency, a.balance, a.last_modified_at)
            for a in accounts
        ]

    def remittance_by_key(self, transaction_id: str, key_discriminator: str) -> RemittanceView | None:
        remittance = self.session.execute(
            select(Remittance).where(
                Remittance.transaction_id == transaction_id,
                Remittance.key_discriminator == key_discriminator,
            )
        ).scalar_one_or_none()
        return _remittance_view(remittance) if remittance is not None else None

    def remittances_for_transaction(self, transaction_id: str) -> list[RemittanceView]:
        rows = self.session.execute(
            select(Remittance)
            .where(Remittance.transaction_id == transaction_id)
            .order_by(Remittance.key_discriminator)
        ).scalars()
        return [_remittance_view(r) for r in rows]
