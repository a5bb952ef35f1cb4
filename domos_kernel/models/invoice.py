"""
Module: domos_kernel.models.invoice
Responsibility: ORM persistence for invoices, their cascade-owned lines and
    tax components, the append-only invoice event log, and the informational
    link to the funds-transfer requests that settle an invoice.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Invoice -> InvoiceLine -> InvoiceLineTaxComponent is the only cascade
      in the schema; deleting an invoice removes its lines and their tax
      components in the same flush.
    - (invoice_id, sequence) is unique on invoice events.
    - Invoice.state is the fold of its events, written by InvoiceService
      together with each event.  Linked funds-transfer requests never
      change it.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Column,
    Date,
    ForeignKey,
    Numeric,
    String,
    Table,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from domos_kernel.db.base import Base, TrackedBase, UTCDateTime, UUIDString
from domos_kernel.models.funds_transfer import FundsTransferRequest
from domos_kernel.models.ledger import Journal

invoice_funds_transfer_requests = Table(
    "invoices_to_funds_transfer_requests",
    Base.metadata,
    Column("invoice_id", UUIDString(), ForeignKey("invoices.id"), primary_key=True),
    Column(
        "funds_transfer_request_id",
        UUIDString(),
        ForeignKey("funds_transfer_requests.id"),
        primary_key=True,
    ),
)


class Invoice(TrackedBase):
    __tablename__ = "invoices"

    issue_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    due_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    state: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    journal_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journals.id"),
        nullable=True,
    )

    lines: Mapped[list["InvoiceLine"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="InvoiceLine.line_index",
    )
    events: Mapped[list["InvoiceEvent"]] = relationship(
        back_populates="invoice",
        order_by="InvoiceEvent.sequence",
    )
    journal: Mapped["Journal | None"] = relationship()
    funds_transfer_requests: Mapped[list["FundsTransferRequest"]] = relationship(
        secondary=invoice_funds_transfer_requests,
        order_by="FundsTransferRequest.guid",
    )

    def __repr__(self) -> str:
        return f"<Invoice {self.id} state={self.state}>"


class InvoiceLine(Base):
    __tablename__ = "invoice_lines"

    __table_args__ = (UniqueConstraint("invoice_id", "line_index"),)

    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
    )
    line_index: Mapped[int] = mapped_column(BigInteger, nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    unit_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    invoice: Mapped["Invoice"] = relationship(back_populates="lines")
    tax_components: Mapped[list["InvoiceLineTaxComponent"]] = relationship(
        back_populates="line",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="InvoiceLineTaxComponent.tax_code",
    )


class InvoiceLineTaxComponent(Base):
    __tablename__ = "invoice_line_tax_components"

    line_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("invoice_lines.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tax_code: Mapped[str] = mapped_column(String(50), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    line: Mapped["InvoiceLine"] = relationship(back_populates="tax_components")


class InvoiceEvent(Base):
    """Append-only record that an invoice entered ``state`` at ``occurred_at``."""

    __tablename__ = "invoice_events"

    __table_args__ = (UniqueConstraint("invoice_id", "sequence"),)

    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("invoices.id"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(BigInteger, nullable=False)
    state: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    occurred_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        index=True,
    )

    invoice: Mapped["Invoice"] = relationship(back_populates="events")
