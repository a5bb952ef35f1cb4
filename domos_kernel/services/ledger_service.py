"""
LedgerService -- the double-entry ledger write path.

Responsibility:
    Creates credit systems and accounts, commits balanced journals of
    postings and remittances, and reverses committed journals with an
    offsetting journal.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.

Invariants enforced:
    - Double-entry balance: postings are grouped by currency and every
      group sums to zero before anything is flushed.
    - A posting's or remittance's currency equals its account's currency.
    - Remittance key uniqueness: duplicate keys inside one call are refused,
      the store is pre-checked, and the (transaction_id, key_discriminator)
      unique constraint settles concurrent writers.
    - Journals are written closed, so postings and remittances are immutable
      from their first flush.  Corrections are reversals.
    - Account balances move in the same flush as the journal that moves them.

Failure modes:
    - ValidationError: empty journal, zero amount, currency mismatch, no owners,
      unknown linked state transition (EntityNotFoundError).
    - UnbalancedJournalError: a currency group does not sum to zero.
    - DuplicateRemittanceError: remittance key already recorded.
    - ReversalError: journal already reversed, or has no postings to offset.
    - ConflictError: an account balance or key was changed concurrently.
"""

from collections import defaultdict
from decimal import Decimal
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from domos_kernel.db.types import to_money, validate_currency
from domos_kernel.domain.clock import Clock
from domos_kernel.domain.ledger import (
    JournalSpec,
    PostingSpec,
    RemittanceKeyScheme,
    RemittanceSpec,
    imbalances_by_currency,
    key_discriminator,
    negate_postings,
)
from domos_kernel.exceptions import (
    ConflictError,
    DuplicateEntityError,
    DuplicateRemittanceError,
    ReversalError,
    UnbalancedJournalError,
    ValidationError,
)
from domos_kernel.logging_config import LogContext, get_logger
from domos_kernel.models.ledger import Account, CreditSystem, Journal, Posting, Remittance
from domos_kernel.models.workflow import StateTransition
from domos_kernel.services.base import BaseService
from domos_kernel.services.ownership_service import OwnershipService

logger = get_logger("services.ledger")

REVERSAL_JOURNAL_TYPE = "reversal"


class LedgerService(BaseService[Journal]):
    """
    Contract:
        commit_journal() flushes one closed Journal with all of its postings
        and remittances and the resulting account balances, or raises and
        leaves the session without any of them.

    The remittance key scheme is fixed per deployment and injected here.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        key_scheme: RemittanceKeyScheme | str = RemittanceKeyScheme.CREDIT_SYSTEM,
    ):
        super().__init__(session, clock)
        self.key_scheme = RemittanceKeyScheme(key_scheme)
        self._ownership = OwnershipService(session, self.clock)

    # -- setup ----------------------------------------------------------------

    def create_credit_system(self, codename: str, name: str) -> CreditSystem:
        exists = self.session.execute(
            select(CreditSystem.id).where(CreditSystem.codename == codename)
        ).first()
        if exists is not None:
            raise DuplicateEntityError("CreditSystem", codename)
        credit_system = CreditSystem(codename=codename, name=name)
        self.session.add(credit_system)
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise DuplicateEntityError("CreditSystem", codename) from exc
        return credit_system

    def create_account(self, name: str, currency: str, owners: Iterable[UUID] = ()) -> Account:
        now = self.clock.now()
        account = Account(
            name=name,
            currency=validate_currency(currency),
            balance=Decimal("0"),
            last_modified_at=now,
            created_at=now,
        )
        self._ownership.add_owners(account, owners)
        self.session.add(account)
        self.session.flush()
        logger.info(
            "account_created",
            extra={"account_id": str(account.id), "currency": account.currency},
        )
        return account

    # -- journals -------------------------------------------------------------

    def commit_journal(
        self,
        journal_type: str,
        postings: Sequence[PostingSpec] = (),
        remittances: Sequence[RemittanceSpec] = (),
        owners: Iterable[UUID] = (),
        state_transition_id: UUID | None = None,
        description: str | None = None,
    ) -> Journal:
        """
        Validate and write one closed journal.

        Raises:
            ValidationError, UnbalancedJournalError, DuplicateRemittanceError,
            ConflictError.
        """
        return self._write_journal(
            journal_type=journal_type,
            postings=tuple(postings),
            remittances=tuple(remittances),
            owners=list(owners),
            state_transition_id=state_transition_id,
            description=description,
        )

    def commit_spec(self, spec: JournalSpec, state_transition_id: UUID | None = None) -> Journal:
        return self.commit_journal(
            journal_type=spec.journal_type,
            postings=spec.postings,
            remittances=spec.remittances,
            owners=spec.owners,
            state_transition_id=state_transition_id,
            description=spec.description,
        )

    def reverse_journal(
        self,
        journal_id: UUID,
        owners: Iterable[UUID] = (),
        description: str | None = None,
    ) -> Journal:
        """
        Offset a committed journal with negated postings.

        Remittances are not copied: the settlement they record happened and
        stays recorded.  Without explicit owners, the reversal is owned by
        the original journal's owners.

        Raises:
            ReversalError: If already reversed, or the journal has no postings.
        """
        original = self._require(Journal, journal_id, for_update=True)
        existing = self.session.execute(
            select(Journal.id).where(Journal.reversal_of_id == journal_id)
        ).first()
        if existing is not None:
            raise ReversalError(str(journal_id), "journal has already been reversed")
        if not original.postings:
            raise ReversalError(str(journal_id), "journal has no postings to offset")

        owners = list(owners) or [user.id for user in original.owning_users]
        originals = [
            PostingSpec(account_id=p.account_id, amount=p.amount, currency=p.currency)
            for p in original.postings
        ]
        reversal = self._write_journal(
            journal_type=REVERSAL_JOURNAL_TYPE,
            postings=negate_postings(originals),
            remittances=(),
            owners=owners,
            state_transition_id=None,
            description=description or f"Reversal of journal {journal_id}",
            reversal_of_id=journal_id,
        )
        logger.info(
            "journal_reversed",
            extra={"original_journal_id": str(journal_id), "reversal_journal_id": str(reversal.id)},
        )
        return reversal

    # -- internals ------------------------------------------------------------

    def _find_remittance(self, transaction_id: str, discriminator: str) -> Remittance | None:
        stmt = select(Remittance).where(
            Remittance.transaction_id == transaction_id,
            Remittance.key_discriminator == discriminator,
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def _key_recorded(self, transaction_id: str, discriminator: str) -> bool:
        stmt = select(Remittance.id).where(
            Remittance.transaction_id == transaction_id,
            Remittance.key_discriminator == discriminator,
        )
        return self.session.execute(stmt).first() is not None

    def _lock_accounts(self, account_ids: Iterable[UUID]) -> dict[UUID, Account]:
        # Sorted to take row locks in a stable order across writers.
        return {
            account_id: self._require(Account, account_id, for_update=True)
            for account_id in sorted(set(account_ids), key=str)
        }

    def _write_journal(
        self,
        journal_type: str,
        postings: tuple[PostingSpec, ...],
        remittances: tuple[RemittanceSpec, ...],
        owners: list[UUID],
        state_transition_id: UUID | None,
        description: str | None,
        reversal_of_id: UUID | None = None,
    ) -> Journal:
        if not postings and not remittances:
            raise ValidationError("A journal needs at least one posting or remittance")
        if not owners:
            raise ValidationError("A journal must be owned by at least one user", field="owners")
        if state_transition_id is not None:
            self._require(StateTransition, state_transition_id)
        owning_users = self._ownership.resolve_users(owners)

        normalized: list[PostingSpec] = []
        for spec in postings:
            amount = to_money(spec.amount)
            if amount == 0:
                raise ValidationError("Posting amounts must be non-zero", field="amount")
            normalized.append(
                PostingSpec(
                    account_id=spec.account_id,
                    amount=amount,
                    currency=validate_currency(spec.currency),
                )
            )

        accounts = self._lock_accounts(p.account_id for p in normalized)
        for spec in normalized:
            account = accounts[spec.account_id]
            if spec.currency != account.currency:
                raise ValidationError(
                    f"Posting currency {spec.currency} does not match account "
                    f"{account.id} currency {account.currency}",
                    field="currency",
                )

        imbalances = imbalances_by_currency(normalized)
        if imbalances:
            currency, imbalance = next(iter(imbalances.items()))
            logger.warning(
                "unbalanced_journal",
                extra={
                    "journal_type": journal_type,
                    "currency": currency,
                    "imbalance": str(imbalance),
                },
            )
            raise UnbalancedJournalError(currency, imbalance)

        keyed = self._validate_remittances(remittances)

        now = self.clock.now()
        journal = Journal(
            journal_type=journal_type,
            description=description,
            created_at=now,
            last_modified_at=now,
            is_closed=True,
            state_transition_id=state_transition_id,
            reversal_of_id=reversal_of_id,
        )
        journal.owning_users.extend(owning_users)

        for line_number, spec in enumerate(normalized, start=1):
            posting = Posting(
                account_id=spec.account_id,
                line_number=line_number,
                amount=spec.amount,
                currency=spec.currency,
                created_at=now,
            )
            posting.owning_users.extend(owning_users)
            journal.postings.append(posting)

        for spec, discriminator in keyed:
            remittance = Remittance(
                account_id=spec.account_id,
                credit_system_id=spec.credit_system_id,
                transaction_id=spec.transaction_id,
                line_id=spec.line_id,
                key_discriminator=discriminator,
                amount=spec.amount,
                currency=spec.currency,
                created_at=now,
            )
            remittance.owning_users.extend(owning_users)
            journal.remittances.append(remittance)

        deltas: dict[UUID, Decimal] = defaultdict(Decimal)
        for spec in normalized:
            deltas[spec.account_id] += spec.amount
        for account_id, delta in deltas.items():
            account = accounts[account_id]
            account.balance = account.balance + delta
            account.last_modified_at = now

        self.session.add(journal)
        self._flush_journal(journal, keyed, reversal_of_id)

        with LogContext.bind(journal_id=str(journal.id)):
            logger.info(
                "journal_committed",
                extra={
                    "journal_type": journal_type,
                    "posting_count": len(normalized),
                    "remittance_count": len(keyed),
                    "currencies": sorted({p.currency for p in normalized}),
                },
            )
        return journal

    def _validate_remittances(
        self,
        remittances: tuple[RemittanceSpec, ...],
    ) -> list[tuple[RemittanceSpec, str]]:
        keyed: list[tuple[RemittanceSpec, str]] = []
        seen: set[tuple[str, str]] = set()
        for spec in remittances:
            if not spec.transaction_id:
                raise ValidationError("Remittance transaction_id is required", field="transaction_id")
            normalized = RemittanceSpec(
                account_id=spec.account_id,
                credit_system_id=spec.credit_system_id,
                transaction_id=spec.transaction_id,
                amount=to_money(spec.amount),
                currency=validate_currency(spec.currency),
                line_id=spec.line_id,
            )
            account = self._require(Account, spec.account_id)
            if normalized.currency != account.currency:
                raise ValidationError(
                    f"Remittance currency {normalized.currency} does not match account "
                    f"{account.id} currency {account.currency}",
                    field="currency",
                )
            self._require(CreditSystem, spec.credit_system_id)

            discriminator = key_discriminator(self.key_scheme, normalized)
            key = (normalized.transaction_id, discriminator)
            if key in seen:
                raise DuplicateRemittanceError(*key)
            seen.add(key)

            if self._find_remittance(*key) is not None:
                logger.warning(
                    "duplicate_remittance_rejected",
                    extra={"transaction_id": key[0], "discriminator": key[1]},
                )
                raise DuplicateRemittanceError(*key)
            keyed.append((normalized, discriminator))
        return keyed

    def _flush_journal(
        self,
        journal: Journal,
        keyed: list[tuple[RemittanceSpec, str]],
        reversal_of_id: UUID | None,
    ) -> None:
        try:
            self.session.flush()
        except StaleDataError as exc:
            raise ConflictError(
                "Account",
                "An account balance was modified concurrently",
            ) from exc
        except IntegrityError as exc:
            # The failed flush leaves the session unusable; roll back before
            # re-reading which key lost the race.
            self.session.rollback()
            logger.warning("journal_insert_conflict", extra={"journal_type": journal.journal_type})
            for spec, discriminator in keyed:
                if self._key_recorded(spec.transaction_id, discriminator):
                    raise DuplicateRemittanceError(spec.transaction_id, discriminator) from exc
            if reversal_of_id is not None:
                reversed_already = self.session.execute(
                    select(Journal.id).where(Journal.reversal_of_id == reversal_of_id)
                ).first()
                if reversed_already is not None:
                    raise ReversalError(
                        str(reversal_of_id),
                        "journal has already been reversed",
                    ) from exc
            raise ConflictError("Journal", "Journal insert conflicted with a concurrent write") from exc
