"""Selectors for the Domos core (read side)."""

from domos_kernel.selectors.access_resolver import AccessResolver
from domos_kernel.selectors.funds_transfer_selector import (
    BatchSummary,
    EventView,
    FundsTransferSelector,
    RequestStateCheck,
    RequestView,
)
from domos_kernel.selectors.invoice_selector import (
    InvoiceEventView,
    InvoiceSelector,
    InvoiceStateCheck,
)
from domos_kernel.selectors.ledger_selector import (
    AccountChange,
    JournalView,
    LedgerSelector,
    PostingView,
    RemittanceView,
)
from domos_kernel.selectors.ownership_selector import OwnershipSelector
from domos_kernel.selectors.workflow_selector import (
    PathOption,
    TransitionRecord,
    WorkflowSelector,
)

__all__ = [
    "AccessResolver",
    "AccountChange",
    "BatchSummary",
    "EventView",
    "FundsTransferSelector",
    "InvoiceEventView",
    "InvoiceSelector",
    "InvoiceStateCheck",
    "JournalView",
    "LedgerSelector",
    "OwnershipSelector",
    "PathOption",
    "PostingView",
    "RemittanceView",
    "RequestStateCheck",
    "RequestView",
    "TransitionRecord",
    "WorkflowSelector",
]
