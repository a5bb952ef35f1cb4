"""
Module: domos_kernel.selectors.funds_transfer_selector
Responsibility: Read-only funds-transfer queries -- requests by state, a
    request's ordered event log, fold verification, and batch summaries.
Architecture position: Kernel > Selectors.  May import from domain/ and
    models/.  MUST NOT import from services/.

Invariants enforced:
    - verify_request_state() re-derives a request's state from its event
      log with the same fold the service uses on append.
"""

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from domos_kernel.db.types import ZERO
from domos_kernel.domain.funds_transfer import RequestState, fold_batch_state, fold_request_events
from domos_kernel.exceptions import EntityNotFoundError
from domos_kernel.models.funds_transfer import (
    FundsTransferBatch,
    FundsTransferEvent,
    FundsTransferEventCollation,
    FundsTransferRequest,
)
from domos_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class RequestView:
    request_id: UUID
    guid: str
    amount: Decimal
    currency: str
    direction: str
    transaction_id: str
    state: str
    batch_id: UUID | None


@dataclass(frozen=True)
class EventView:
    sequence: int
    event_type: str
    trace_code: str | None
    response_code: str | None
    comments: str | None
    collation_id: UUID | None
    created_at: datetime


@dataclass(frozen=True)
class RequestStateCheck:
    """Stored request state next to the fold of its event log."""

    request_id: UUID
    stored_state: str
    folded_state: str

    @property
    def consistent(self) -> bool:
        return self.stored_state == self.folded_state


@dataclass(frozen=True)
class BatchSummary:
    batch_id: UUID
    guid: str
    state: str
    derived_state: str
    request_count: int
    requests_by_state: dict[str, int] = field(default_factory=dict)
    totals_by_currency: dict[str, Decimal] = field(default_factory=dict)


def request_view(r: FundsTransferRequest) -> RequestView:
    return RequestView(
        request_id=r.id,
        guid=r.guid,
        amount=r.amount,
        currency=r.currency,
        direction=r.direction,
        transaction_id=r.transaction_id,
        state=r.state,
        batch_id=r.batch_id,
    )


class FundsTransferSelector(BaseSelector[FundsTransferRequest]):

    def request_by_guid(self, guid: str) -> RequestView | None:
        request = self.session.execute(
            select(FundsTransferRequest).where(FundsTransferRequest.guid == guid)
        ).scalar_one_or_none()
        return request_view(request) if request is not None else None

    def requests_by_state(
        self,
        state: RequestState | str,
        credit_system_id: UUID | None = None,
    ) -> list[RequestView]:
        stmt = select(FundsTransferRequest).where(
            FundsTransferRequest.state == RequestState(state).value
        )
        if credit_system_id is not None:
            stmt = stmt.where(FundsTransferRequest.credit_system_id == credit_system_id)
        rows = self.session.execute(
            stmt.order_by(FundsTransferRequest.created_at, FundsTransferRequest.guid)
        ).scalars()
        return [request_view(r) for r in rows]

    def events_for(self, request_id: UUID) -> list[EventView]:
        """The request's event log in sequence order."""
        self._request(request_id)
        rows = self.session.execute(
            select(FundsTransferEvent)
            .where(FundsTransferEvent.request_id == request_id)
            .order_by(FundsTransferEvent.sequence)
        ).scalars()
        return [
            EventView(
                sequence=e.sequence,
                event_type=e.event_type,
                trace_code=e.trace_code,
                response_code=e.response_code,
                comments=e.comments,
                collation_id=e.collation_id,
                created_at=e.created_at,
            )
            for e in rows
        ]

    def verify_request_state(self, request_id: UUID) -> RequestStateCheck:
        request = self._request(request_id)
        folded = fold_request_events(e.event_type for e in self.events_for(request_id))
        return RequestStateCheck(request_id, request.state, folded.value)

    def batch_summary(self, batch_id: UUID) -> BatchSummary:
        batch = self.session.get(FundsTransferBatch, batch_id)
        if batch is None:
            raise EntityNotFoundError("FundsTransferBatch", str(batch_id))
        members = list(
            self.session.execute(
                select(FundsTransferRequest).where(FundsTransferRequest.batch_id == batch_id)
            ).scalars()
        )
        totals: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for member in members:
            totals[member.currency] += member.amount
        return BatchSummary(
            batch_id=batch.id,
            guid=batch.guid,
            state=batch.state,
            derived_state=fold_batch_state(m.state for m in members).value,
            request_count=len(members),
            requests_by_state=dict(sorted(Counter(m.state for m in members).items())),
            totals_by_currency=dict(totals),
        )

    def collations_for_batch(self, batch_id: UUID) -> list[FundsTransferEventCollation]:
        return list(
            self.session.execute(
                select(FundsTransferEventCollation)
                .where(FundsTransferEventCollation.batch_id == batch_id)
                .order_by(FundsTransferEventCollation.created_at, FundsTransferEventCollation.id)
            ).scalars()
        )

    def _request(self, request_id: UUID) -> FundsTransferRequest:
        request = self.session.get(FundsTransferRequest, request_id)
        if request is None:
            raise EntityNotFoundError("FundsTransferRequest", str(request_id))
        return request
