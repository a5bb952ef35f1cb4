"""ORM models for the Domos core."""

from domos_kernel.models.funds_transfer import (
    FundsTransferBatch,
    FundsTransferBatchMessage,
    FundsTransferEvent,
    FundsTransferEventCollation,
    FundsTransferRequest,
    FundsTransferRequestGroup,
)
from domos_kernel.models.identity import (
    Disposition,
    DispositionType,
    EntityAccess,
    ManagerAccess,
    Permission,
    Registration,
    Role,
    Segregation,
    User,
)
from domos_kernel.models.invoice import (
    Invoice,
    InvoiceEvent,
    InvoiceLine,
    InvoiceLineTaxComponent,
)
from domos_kernel.models.ledger import Account, CreditSystem, Journal, Posting, Remittance
from domos_kernel.models.workflow import (
    State,
    StatefulEntity,
    StateGroup,
    StatePath,
    StateTransition,
    WorkflowGraph,
)

__all__ = [
    "User",
    "Role",
    "Registration",
    "Segregation",
    "DispositionType",
    "Disposition",
    "Permission",
    "EntityAccess",
    "ManagerAccess",
    "WorkflowGraph",
    "StateGroup",
    "State",
    "StatePath",
    "StatefulEntity",
    "StateTransition",
    "CreditSystem",
    "Account",
    "Journal",
    "Posting",
    "Remittance",
    "FundsTransferRequestGroup",
    "FundsTransferRequest",
    "FundsTransferEvent",
    "FundsTransferBatch",
    "FundsTransferBatchMessage",
    "FundsTransferEventCollation",
    "Invoice",
    "InvoiceLine",
    "InvoiceLineTaxComponent",
    "InvoiceEvent",
]
