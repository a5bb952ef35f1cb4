"""
FundsTransferService -- the funds-transfer lifecycle tracker.

Responsibility:
    Creates request groups, requests and batches; appends events to a
    request's log while keeping the denormalized request and batch states
    equal to the folds of that log; records batch messages; digests credit
    system responses into write-once collations.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.

Invariants enforced:
    - request.state == fold_request_events(events) after every append.  The
      event and the new state are flushed together, under a row lock on the
      request.
    - batch.state == fold_batch_state(member request states) after every
      append to a batched request.
    - Event sequences are gap-free per request; (request_id, sequence) is
      unique, so a concurrent append loses with ConflictError.

Failure modes:
    - DuplicateRequestError: request or batch guid already taken.
    - InvalidTransitionError: event not admissible from the folded state.
    - ValidationError: bad amount/direction, or a request not eligible for
      a batch.
    - ConflictError: lost an append race, or the stored state disagrees with
      the event log.
"""

from typing import Iterable, Sequence
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from domos_kernel.db.types import to_money, validate_currency
from domos_kernel.domain.clock import Clock
from domos_kernel.domain.funds_transfer import (
    EventType,
    RequestState,
    TransferDirection,
    TransferResponse,
    fold_batch_state,
    fold_request_events,
    next_request_state,
    summarize_events,
)
from domos_kernel.exceptions import (
    ConflictError,
    DuplicateRequestError,
    InvalidTransitionError,
    ValidationError,
)
from domos_kernel.logging_config import LogContext, get_logger
from domos_kernel.models.funds_transfer import (
    FundsTransferBatch,
    FundsTransferBatchMessage,
    FundsTransferEvent,
    FundsTransferEventCollation,
    FundsTransferRequest,
    FundsTransferRequestGroup,
)
from domos_kernel.models.ledger import CreditSystem
from domos_kernel.services.base import BaseService
from domos_kernel.services.ownership_service import OwnershipService

logger = get_logger("services.funds_transfer")


class FundsTransferService(BaseService[FundsTransferRequest]):

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)
        self._ownership = OwnershipService(session, self.clock)

    # -- requests and groups --------------------------------------------------

    def create_request_group(
        self,
        account_holder_name: str,
        encrypted_account_number: str,
        encrypted_transit_number: str | None = None,
        encrypted_bank_number: str | None = None,
        encrypted_account_code: str | None = None,
    ) -> FundsTransferRequestGroup:
        """Store banking details as opaque ciphertext supplied by the caller."""
        group = FundsTransferRequestGroup(
            account_holder_name=account_holder_name,
            encrypted_account_number=encrypted_account_number,
            encrypted_transit_number=encrypted_transit_number,
            encrypted_bank_number=encrypted_bank_number,
            encrypted_account_code=encrypted_account_code,
            created_at=self.clock.now(),
        )
        self.session.add(group)
        self.session.flush()
        return group

    def create_request(
        self,
        guid: str,
        credit_system_id: UUID,
        amount,
        currency: str,
        direction: TransferDirection | str,
        transaction_id: str,
        group_id: UUID | None = None,
    ) -> FundsTransferRequest:
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationError("Transfer amount must be positive", field="amount")
        try:
            direction = TransferDirection(direction)
        except ValueError:
            raise ValidationError(f"Unknown transfer direction '{direction}'", field="direction") from None
        self._require(CreditSystem, credit_system_id)
        if group_id is not None:
            self._require(FundsTransferRequestGroup, group_id)

        if self._guid_taken(FundsTransferRequest, guid):
            raise DuplicateRequestError("FundsTransferRequest", guid)

        request = FundsTransferRequest(
            guid=guid,
            amount=amount,
            currency=validate_currency(currency),
            direction=direction.value,
            transaction_id=transaction_id,
            credit_system_id=credit_system_id,
            group_id=group_id,
            state=RequestState.PENDING.value,
            created_at=self.clock.now(),
        )
        self.session.add(request)
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise DuplicateRequestError("FundsTransferRequest", guid) from exc

        logger.info(
            "funds_transfer_request_created",
            extra={"guid": guid, "direction": direction.value, "currency": request.currency},
        )
        return request

    # -- batches --------------------------------------------------------------

    def create_batch(
        self,
        guid: str,
        credit_system_id: UUID,
        request_ids: Iterable[UUID],
        owners: Iterable[UUID] = (),
    ) -> FundsTransferBatch:
        """
        Group pending, unbatched requests of one credit system.

        Raises:
            ValidationError: If a request is not pending, already batched,
                or belongs to another credit system.
            DuplicateRequestError: If the batch guid is taken.
        """
        self._require(CreditSystem, credit_system_id)
        if self._guid_taken(FundsTransferBatch, guid):
            raise DuplicateRequestError("FundsTransferBatch", guid)

        requests = [
            self._require(FundsTransferRequest, request_id, for_update=True)
            for request_id in dict.fromkeys(request_ids)
        ]
        for request in requests:
            if request.state != RequestState.PENDING.value:
                raise ValidationError(
                    f"Request {request.guid} is '{request.state}', only pending requests can be batched",
                    field="request_ids",
                )
            if request.batch_id is not None:
                raise ValidationError(
                    f"Request {request.guid} already belongs to a batch",
                    field="request_ids",
                )
            if request.credit_system_id != credit_system_id:
                raise ValidationError(
                    f"Request {request.guid} targets a different credit system",
                    field="request_ids",
                )

        batch = FundsTransferBatch(
            guid=guid,
            credit_system_id=credit_system_id,
            state=fold_batch_state(r.state for r in requests).value,
            created_at=self.clock.now(),
        )
        self._ownership.add_owners(batch, owners)
        self.session.add(batch)
        for request in requests:
            request.batch = batch

        try:
            self.session.flush()
        except IntegrityError as exc:
            raise DuplicateRequestError("FundsTransferBatch", guid) from exc

        logger.info(
            "funds_transfer_batch_created",
            extra={"guid": guid, "request_count": len(requests)},
        )
        return batch

    def record_batch_message(
        self,
        batch_id: UUID,
        message_type: str,
        comments: str | None = None,
        guid: str | None = None,
    ) -> FundsTransferBatchMessage:
        self._require(FundsTransferBatch, batch_id)
        message = FundsTransferBatchMessage(
            guid=guid or uuid4().hex,
            batch_id=batch_id,
            message_type=message_type,
            comments=comments,
            created_at=self.clock.now(),
        )
        self.session.add(message)
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise DuplicateRequestError("FundsTransferBatchMessage", message.guid) from exc
        return message

    # -- events ---------------------------------------------------------------

    def append_event(
        self,
        request_id: UUID,
        event_type: EventType | str,
        trace_code: str | None = None,
        response_code: str | None = None,
        comments: str | None = None,
        collation_id: UUID | None = None,
    ) -> FundsTransferEvent:
        """
        Append one event and move the request (and its batch) to the folded state.

        Preconditions:
            - The request's stored state equals the fold of its events.

        Postconditions:
            - The new event has sequence = previous count + 1.
            - request.state and batch.state equal their folds.

        Raises:
            InvalidTransitionError, ConflictError.
        """
        request = self._require(FundsTransferRequest, request_id, for_update=True)

        with LogContext.bind(request_id=str(request_id), trace_id=trace_code):
            history = list(
                self.session.execute(
                    select(FundsTransferEvent.event_type)
                    .where(FundsTransferEvent.request_id == request_id)
                    .order_by(FundsTransferEvent.sequence)
                ).scalars()
            )
            folded = fold_request_events(history)
            if folded.value != request.state:
                logger.error(
                    "funds_transfer_state_diverged",
                    extra={"stored_state": request.state, "folded_state": folded.value},
                )
                raise ConflictError(
                    "FundsTransferRequest",
                    f"Stored state '{request.state}' disagrees with event log '{folded.value}'",
                )

            new_state = next_request_state(folded, event_type)
            event = FundsTransferEvent(
                request_id=request_id,
                sequence=len(history) + 1,
                event_type=EventType(event_type).value,
                trace_code=trace_code,
                response_code=response_code,
                comments=comments,
                collation_id=collation_id,
                created_at=self.clock.now(),
            )
            self.session.add(event)
            request.state = new_state.value

            if request.batch_id is not None:
                self._refresh_batch_state(request.batch_id)

            try:
                self.session.flush()
            except IntegrityError as exc:
                raise ConflictError(
                    "FundsTransferEvent",
                    f"Event #{event.sequence} of request {request_id} was appended concurrently",
                ) from exc

            logger.info(
                "funds_transfer_event_appended",
                extra={
                    "guid": request.guid,
                    "event_type": event.event_type,
                    "sequence": event.sequence,
                    "from_state": folded.value,
                    "to_state": new_state.value,
                },
            )
            return event

    def _refresh_batch_state(self, batch_id: UUID) -> None:
        with self.session.no_autoflush:
            batch = self._require(FundsTransferBatch, batch_id, for_update=True)
            members = self.session.execute(
                select(FundsTransferRequest).where(FundsTransferRequest.batch_id == batch_id)
            ).scalars()
            batch.state = fold_batch_state(m.state for m in members).value

    def digest_batch_response(
        self,
        batch_id: UUID,
        responses: Sequence[TransferResponse],
        message_type: str = "response",
        comments: str | None = None,
    ) -> FundsTransferEventCollation:
        """
        Turn a credit system's response into events and one collation.

        Every response line becomes an event on the request it names, linked
        to a new collation whose summary counts the events per type.

        Raises:
            ValidationError: If a line names a request outside the batch.
            InvalidTransitionError: If a line's event is not admissible.
        """
        batch = self._require(FundsTransferBatch, batch_id, for_update=True)
        targets: list[tuple[FundsTransferRequest, TransferResponse]] = []
        for response in responses:
            try:
                EventType(response.event_type)
            except ValueError:
                raise InvalidTransitionError(
                    f"Unknown funds-transfer event type '{response.event_type}'"
                ) from None
            request = self.session.execute(
                select(FundsTransferRequest).where(FundsTransferRequest.guid == response.request_guid)
            ).scalar_one_or_none()
            if request is None or request.batch_id != batch.id:
                raise ValidationError(
                    f"Request {response.request_guid} is not part of batch {batch.guid}",
                    field="responses",
                )
            targets.append((request, response))

        message = self.record_batch_message(batch_id, message_type, comments)
        collation = FundsTransferEventCollation(
            guid=uuid4().hex,
            batch_id=batch_id,
            batch_message_id=message.id,
            event_count=len(targets),
            summary=summarize_events(r.event_type for _, r in targets),
            created_at=self.clock.now(),
        )
        self.session.add(collation)
        self.session.flush()

        for request, response in targets:
            self.append_event(
                request.id,
                response.event_type,
                trace_code=response.trace_code,
                response_code=response.response_code,
                comments=response.comments,
                collation_id=collation.id,
            )

        logger.info(
            "funds_transfer_response_digested",
            extra={"batch_guid": batch.guid, "event_count": len(targets), "summary": collation.summary},
        )
        return collation

    def _guid_taken(self, model, guid: str) -> bool:
        return self.session.execute(select(model.id).where(model.guid == guid)).first() is not None
