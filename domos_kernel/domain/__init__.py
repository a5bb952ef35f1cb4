"""
Pure domain layer.

Value objects, state tables and folds with NO dependencies on the ORM, the
database, or I/O (the clock module's SystemClock aside).  Everything here
is immutable and deterministic.
"""

from domos_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from domos_kernel.domain.funds_transfer import (
    BatchState,
    EventType,
    RequestState,
    TransferDirection,
    fold_batch_state,
    fold_request_events,
)
from domos_kernel.domain.invoice import (
    InvoiceLineSpec,
    InvoiceState,
    InvoiceTotals,
    TaxComponentSpec,
)
from domos_kernel.domain.ledger import (
    JournalSpec,
    PostingSpec,
    RemittanceKeyScheme,
    RemittanceSpec,
)
from domos_kernel.domain.workflow import (
    StateDef,
    StateGroupDef,
    StatePathDef,
    StateRef,
    WorkflowGraphDef,
)

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "WorkflowGraphDef",
    "StateGroupDef",
    "StateDef",
    "StatePathDef",
    "StateRef",
    "PostingSpec",
    "RemittanceSpec",
    "JournalSpec",
    "RemittanceKeyScheme",
    "RequestState",
    "EventType",
    "BatchState",
    "TransferDirection",
    "fold_request_events",
    "fold_batch_state",
    "InvoiceState",
    "InvoiceLineSpec",
    "TaxComponentSpec",
    "InvoiceTotals",
]
