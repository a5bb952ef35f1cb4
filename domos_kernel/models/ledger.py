"""
Module: domos_kernel.models.ledger
Responsibility: ORM persistence for the double-entry ledger -- credit
    systems, accounts, journals, postings and remittances.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - (transaction_id, key_discriminator) is unique on remittances.  This
      constraint, not the service's pre-check, is the arbiter when two
      writers race on the same key.
    - reversal_of_id is unique: a journal is reversed at most once.
    - Journals are written closed; closed journals, their postings and their
      remittances are immutable (db/immutability.py).
    - Posting and Remittance FKs to Journal do not cascade.
    - Account.version is an optimistic version counter, so concurrent
      balance updates cannot silently overwrite each other.

Failure modes:
    - IntegrityError on a duplicate remittance key or a second reversal;
      LedgerService classifies it into DuplicateRemittanceError /
      ReversalError / ConflictError.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    ForeignKey,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from domos_kernel.db.base import Base, TrackedBase, UTCDateTime, UUIDString
from domos_kernel.db.ownership import Owned


class CreditSystem(Base):
    """An external settlement network (bank rail, card processor, ...)."""

    __tablename__ = "credit_systems"

    codename: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    def __repr__(self) -> str:
        return f"<CreditSystem {self.codename}>"


class Account(Owned, TrackedBase):
    """
    A single-currency ledger account.

    Contract:
        balance is maintained by LedgerService from postings, in the same
        flush as the journal that moves it.  last_modified_at is indexed as
        the change feed for downstream consumers.
    """

    __tablename__ = "accounts"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    balance: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
        default=Decimal("0"),
    )
    last_modified_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        index=True,
    )
    version: Mapped[int] = mapped_column(BigInteger, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Account {self.name} ({self.currency})>"


class Journal(Owned, TrackedBase):
    """
    A unit of accounting work grouping postings and remittances.

    Contract:
        journal_type is a free-form discriminator ('invoice', 'payout',
        'reversal', ...).  state_transition_id links the journal to the
        workflow transition that produced it, when there is one.
    """

    __tablename__ = "journals"

    journal_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    last_modified_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        index=True,
    )
    is_closed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    state_transition_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("state_transitions.id"),
        nullable=True,
        index=True,
    )
    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journals.id"),
        nullable=True,
        unique=True,
    )

    postings: Mapped[list["Posting"]] = relationship(
        back_populates="journal",
        lazy="selectin",
        order_by="Posting.line_number",
    )
    remittances: Mapped[list["Remittance"]] = relationship(
        back_populates="journal",
        lazy="selectin",
        order_by="Remittance.transaction_id",
    )
    reversal_of: Mapped["Journal | None"] = relationship(
        remote_side="Journal.id",
        foreign_keys=[reversal_of_id],
    )

    def __repr__(self) -> str:
        return f"<Journal {self.id} type={self.journal_type}>"


class Posting(Owned, TrackedBase):
    """A signed amount against one account.  Positive debits, negative credits."""

    __tablename__ = "postings"

    journal_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journals.id"),
        nullable=False,
        index=True,
    )
    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
        index=True,
    )
    line_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    journal: Mapped["Journal"] = relationship(back_populates="postings")
    account: Mapped["Account"] = relationship()


class Remittance(Owned, TrackedBase):
    """
    Settlement record of an external transaction inside a journal.

    ``key_discriminator`` is derived from the deployment's remittance key
    scheme: ``cs:<credit system id>`` or ``line:<line id>``.
    """

    __tablename__ = "remittances"

    __table_args__ = (UniqueConstraint("transaction_id", "key_discriminator"),)

    journal_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journals.id"),
        nullable=False,
        index=True,
    )
    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )
    credit_system_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("credit_systems.id"),
        nullable=False,
    )
    transaction_id: Mapped[str] = mapped_column(String(100), nullable=False)
    line_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    key_discriminator: Mapped[str] = mapped_column(String(150), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    journal: Mapped["Journal"] = relationship(back_populates="remittances")
    account: Mapped["Account"] = relationship()
    credit_system: Mapped["CreditSystem"] = relationship()
