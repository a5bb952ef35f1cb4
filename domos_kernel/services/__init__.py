"""Services for the Domos core (write side)."""

from domos_kernel.services.core import CoreSettings, DomosCore, TransitionOutcome
from domos_kernel.services.funds_transfer_service import FundsTransferService
from domos_kernel.services.identity_service import IdentityService
from domos_kernel.services.invoice_service import InvoiceService
from domos_kernel.services.ledger_service import LedgerService
from domos_kernel.services.ownership_service import OwnershipService
from domos_kernel.services.workflow_service import WorkflowService

__all__ = [
    "CoreSettings",
    "DomosCore",
    "FundsTransferService",
    "IdentityService",
    "InvoiceService",
    "LedgerService",
    "OwnershipService",
    "TransitionOutcome",
    "WorkflowService",
]
