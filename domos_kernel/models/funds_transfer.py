"""
Module: domos_kernel.models.funds_transfer
Responsibility: ORM persistence for the funds-transfer lifecycle -- request
    groups (opaque banking details), requests, their append-only event log,
    batches, batch messages and write-once event collations.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - guid is unique on requests, batches, batch messages and collations.
    - (request_id, sequence) is unique on events: two concurrent appends
      cannot both claim the same position in a request's log.
    - Request.state / Batch.state are denormalized folds, written only by
      FundsTransferService together with the event that changes them.
    - Events, batch messages and collations are never updated or deleted
      (db/immutability.py).

Failure modes:
    - IntegrityError on a duplicate guid or sequence; the service raises
      DuplicateRequestError or ConflictError.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, BigInteger, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from domos_kernel.db.base import Base, TrackedBase, UUIDString
from domos_kernel.db.ownership import Owned
from domos_kernel.models.ledger import CreditSystem


class FundsTransferRequestGroup(TrackedBase):
    """
    Banking details shared by a set of requests.

    The encrypted_* columns hold ciphertext supplied by the caller.  The core
    stores and returns it verbatim and never decrypts it.
    """

    __tablename__ = "funds_transfer_request_groups"

    account_holder_name: Mapped[str] = mapped_column(String(255), nullable=False)
    encrypted_account_number: Mapped[str] = mapped_column(String(512), nullable=False)
    encrypted_transit_number: Mapped[str | None] = mapped_column(String(512), nullable=True)
    encrypted_bank_number: Mapped[str | None] = mapped_column(String(512), nullable=True)
    encrypted_account_code: Mapped[str | None] = mapped_column(String(512), nullable=True)

    requests: Mapped[list["FundsTransferRequest"]] = relationship(back_populates="group")


class FundsTransferBatch(Owned, TrackedBase):
    __tablename__ = "funds_transfer_batches"

    guid: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    credit_system_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("credit_systems.id"),
        nullable=False,
    )
    state: Mapped[str] = mapped_column(String(20), nullable=False, index=True)

    credit_system: Mapped["CreditSystem"] = relationship()
    requests: Mapped[list["FundsTransferRequest"]] = relationship(
        back_populates="batch",
        order_by="FundsTransferRequest.guid",
    )
    messages: Mapped[list["FundsTransferBatchMessage"]] = relationship(
        back_populates="batch",
        order_by="FundsTransferBatchMessage.created_at",
    )

    def __repr__(self) -> str:
        return f"<FundsTransferBatch {self.guid} state={self.state}>"


class FundsTransferRequest(TrackedBase):
    """
    One deposit or withdrawal against a credit system.

    Contract:
        ``state`` always equals fold_request_events() over this request's
        events ordered by sequence.
    """

    __tablename__ = "funds_transfer_requests"

    guid: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    direction: Mapped[str] = mapped_column(String(20), nullable=False)
    transaction_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    credit_system_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("credit_systems.id"),
        nullable=False,
    )
    group_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("funds_transfer_request_groups.id"),
        nullable=True,
    )
    batch_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("funds_transfer_batches.id"),
        nullable=True,
        index=True,
    )
    state: Mapped[str] = mapped_column(String(20), nullable=False, index=True)

    credit_system: Mapped["CreditSystem"] = relationship()
    group: Mapped["FundsTransferRequestGroup | None"] = relationship(back_populates="requests")
    batch: Mapped["FundsTransferBatch | None"] = relationship(back_populates="requests")
    events: Mapped[list["FundsTransferEvent"]] = relationship(
        back_populates="request",
        order_by="FundsTransferEvent.sequence",
    )

    def __repr__(self) -> str:
        return f"<FundsTransferRequest {self.guid} state={self.state}>"


class FundsTransferBatchMessage(TrackedBase):
    """A message exchanged with the credit system about a batch (file sent, response received)."""

    __tablename__ = "funds_transfer_batch_messages"

    guid: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    batch_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("funds_transfer_batches.id"),
        nullable=False,
        index=True,
    )
    message_type: Mapped[str] = mapped_column(String(50), nullable=False)
    comments: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    batch: Mapped["FundsTransferBatch"] = relationship(back_populates="messages")


class FundsTransferEventCollation(TrackedBase):
    """
    Write-once snapshot aggregating the events digested from one response.

    ``summary`` maps event type to count at the time of collation and is
    never recomputed.
    """

    __tablename__ = "funds_transfer_event_collations"

    guid: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    batch_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("funds_transfer_batches.id"),
        nullable=False,
        index=True,
    )
    batch_message_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("funds_transfer_batch_messages.id"),
        nullable=True,
    )
    event_count: Mapped[int] = mapped_column(BigInteger, nullable=False)
    summary: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    batch: Mapped["FundsTransferBatch"] = relationship()
    batch_message: Mapped["FundsTransferBatchMessage | None"] = relationship()


class FundsTransferEvent(TrackedBase):
    """Append-only log entry for a request, numbered by ``sequence`` from 1."""

    __tablename__ = "funds_transfer_events"

    __table_args__ = (UniqueConstraint("request_id", "sequence"),)

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("funds_transfer_requests.id"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(BigInteger, nullable=False)
    event_type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    trace_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    response_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    comments: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    collation_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("funds_transfer_event_collations.id"),
        nullable=True,
        index=True,
    )

    request: Mapped["FundsTransferRequest"] = relationship(back_populates="events")
    collation: Mapped["FundsTransferEventCollation | None"] = relationship()

    def __repr__(self) -> str:
        return f"<FundsTransferEvent {self.request_id} #{self.sequence} {self.event_type}>"
