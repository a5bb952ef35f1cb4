"""
Module: domos_kernel.domain.funds_transfer
Responsibility: The funds-transfer state machines.  A request's state is the
    fold of its ordered events through REQUEST_TRANSITIONS; a batch's state
    is a fold over its requests' states.
Architecture position: Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Every event is checked against REQUEST_TRANSITIONS before it is
      appended; completed and failed accept no further events.
    - fold_request_events(events) is deterministic: the same ordered events
      always give the same state, so the denormalized column can be
      re-derived and verified at any time.

Failure modes:
    - InvalidTransitionError for an event that is not admissible in the
      current state.
"""

from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from domos_kernel.exceptions import InvalidTransitionError


class TransferDirection(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"


class RequestState(str, Enum):
    """Lifecycle state of a single funds-transfer request."""

    PENDING = "pending"
    SUBMITTED = "submitted"
    ACCEPTED = "accepted"
    COMPLETED = "completed"
    FAILED = "failed"


class EventType(str, Enum):
    SUBMITTED = "submitted"  # handed to the credit system
    ACCEPTED = "accepted"    # acknowledged
    REJECTED = "rejected"    # negative acknowledgement
    SETTLED = "settled"
    FAILED = "failed"        # local or transport failure


class BatchState(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


REQUEST_TRANSITIONS: dict[RequestState, dict[EventType, RequestState]] = {
    RequestState.PENDING: {
        EventType.SUBMITTED: RequestState.SUBMITTED,
        EventType.FAILED: RequestState.FAILED,
    },
    RequestState.SUBMITTED: {
        EventType.ACCEPTED: RequestState.ACCEPTED,
        EventType.REJECTED: RequestState.FAILED,
        EventType.FAILED: RequestState.FAILED,
    },
    RequestState.ACCEPTED: {
        EventType.SETTLED: RequestState.COMPLETED,
        EventType.REJECTED: RequestState.FAILED,
        EventType.FAILED: RequestState.FAILED,
    },
    # Terminal states -- no events accepted
    RequestState.COMPLETED: {},
    RequestState.FAILED: {},
}

TERMINAL_REQUEST_STATES: frozenset[RequestState] = frozenset(
    state for state, moves in REQUEST_TRANSITIONS.items() if not moves
)


def next_request_state(current: RequestState | str, event_type: EventType | str) -> RequestState:
    """
    Apply one event to a request state.

    Raises:
        InvalidTransitionError: If the event is unknown or not admissible.
    """
    current = RequestState(current)
    try:
        event_type = EventType(event_type)
    except ValueError:
        raise InvalidTransitionError(
            f"Unknown funds-transfer event type '{event_type}'",
            current_state=current.value,
        ) from None

    target = REQUEST_TRANSITIONS[current].get(event_type)
    if target is None:
        raise InvalidTransitionError(
            f"Event '{event_type.value}' is not valid for a request in state '{current.value}'",
            current_state=current.value,
        )
    return target


def fold_request_events(event_types: Iterable[EventType | str]) -> RequestState:
    """Fold an ordered event sequence from PENDING to the current state."""
    state = RequestState.PENDING
    for event_type in event_types:
        state = next_request_state(state, event_type)
    return state


def fold_batch_state(request_states: Iterable[RequestState | str]) -> BatchState:
    """
    Derive a batch's state from its member requests.

    A batch with no requests is pending; it completes only when every
    member is terminal.
    """
    states = [RequestState(s) for s in request_states]
    if not states:
        return BatchState.PENDING
    if all(s in TERMINAL_REQUEST_STATES for s in states):
        return BatchState.COMPLETED
    if all(s == RequestState.PENDING for s in states):
        return BatchState.PENDING
    return BatchState.IN_PROGRESS


def summarize_events(event_types: Iterable[EventType | str]) -> dict[str, int]:
    """Count events per type, as stored on a collation snapshot."""
    counts = Counter(EventType(e).value for e in event_types)
    return dict(sorted(counts.items()))


@dataclass(frozen=True)
class TransferResponse:
    """One line of a credit system's response file, keyed by request guid."""

    request_guid: str
    event_type: EventType
    trace_code: str | None = None
    response_code: str | None = None
    comments: str | None = None
