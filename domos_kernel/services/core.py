"""
DomosCore -- the transactional facade over the kernel services.

Responsibility:
    Gives every operation its own atomic transaction.  Each public method
    opens a session from the injected factory, builds the services over it,
    runs the operation, and commits.  Any failure rolls back everything the
    operation flushed.

Architecture position:
    Kernel > Services -- the only place that owns a transaction boundary.
    Services below it flush and never commit.

Invariants enforced:
    - One operation, one transaction: no partial journal, batch, transition
      or invoice event is ever committed.
    - A workflow transition and the journal it produces commit together.
    - Persistence errors that no service classified surface as ConflictError;
      typed kernel errors propagate unchanged.
    - No retries.  Callers decide whether to retry a ConflictError.

Failure modes:
    - Every typed error in domos_kernel.exceptions.
    - ConflictError for unclassified IntegrityError / StaleDataError,
      including ones raised at commit time.

Usage:
    core = DomosCore(get_session_factory(), CoreSettings(), clock)
    outcome = core.execute_transition(entity_id, "submit", [user_id])
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Sequence, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from domos_kernel.db.engine import run_in_transaction
from domos_kernel.db.immutability import register_immutability_listeners
from domos_kernel.db.ownership import Owned
from domos_kernel.domain.clock import Clock, SystemClock
from domos_kernel.domain.funds_transfer import EventType, TransferDirection, TransferResponse
from domos_kernel.domain.invoice import InvoiceLineSpec, InvoiceState, TaxComponentSpec
from domos_kernel.domain.ledger import JournalSpec, PostingSpec, RemittanceKeyScheme, RemittanceSpec
from domos_kernel.domain.workflow import StateRef, WorkflowGraphDef
from domos_kernel.exceptions import ConflictError
from domos_kernel.logging_config import LogContext, get_logger
from domos_kernel.models.ledger import Journal
from domos_kernel.models.workflow import StateTransition
from domos_kernel.services.funds_transfer_service import FundsTransferService
from domos_kernel.services.identity_service import IdentityService
from domos_kernel.services.invoice_service import InvoiceService
from domos_kernel.services.ledger_service import LedgerService
from domos_kernel.services.ownership_service import OwnershipService
from domos_kernel.services.workflow_service import WorkflowService

logger = get_logger("services.core")

T = TypeVar("T")


@dataclass(frozen=True)
class CoreSettings:
    """Deployment settings the kernel itself consumes."""

    remittance_key_scheme: RemittanceKeyScheme = RemittanceKeyScheme.CREDIT_SYSTEM


@dataclass(frozen=True)
class TransitionOutcome:
    transition: StateTransition
    journal: Journal | None = None


class _Services:
    """All kernel services over one session, created once per operation."""

    def __init__(self, session: Session, clock: Clock, settings: CoreSettings):
        self.session = session
        self.identity = IdentityService(session, clock)
        self.ownership = OwnershipService(session, clock)
        self.workflow = WorkflowService(session, clock)
        self.ledger = LedgerService(session, clock, key_scheme=settings.remittance_key_scheme)
        self.funds_transfer = FundsTransferService(session, clock)
        self.invoice = InvoiceService(session, clock, ledger=self.ledger)


class DomosCore:
    """
    One method per operation, each in its own transaction.

    Returned ORM objects are detached: their columns and eagerly loaded
    relationships are readable, anything else should be read back through
    a selector via ``read()``.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        settings: CoreSettings | None = None,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self.settings = settings or CoreSettings()
        self.clock = clock or SystemClock()
        register_immutability_listeners()

    def _run(self, operation: str, body: Callable[[_Services], T]) -> T:
        with LogContext.bind(correlation_id=uuid4().hex):
            try:
                return run_in_transaction(
                    self._session_factory,
                    lambda session: body(_Services(session, self.clock, self.settings)),
                )
            except StaleDataError as exc:
                logger.warning("operation_conflict", extra={"operation": operation})
                raise ConflictError(operation, "row was modified concurrently") from exc
            except IntegrityError as exc:
                logger.warning("operation_conflict", extra={"operation": operation})
                raise ConflictError(operation, "uniqueness or reference constraint violated") from exc

    def read(self, body: Callable[[Session], T]) -> T:
        """Run a read-only callable (typically a selector query) in its own session."""
        return run_in_transaction(self._session_factory, body)

    # -- identity and access ---------------------------------------------------

    def create_user(self, email: str, username: str, is_active: bool = True):
        return self._run("create_user", lambda s: s.identity.create_user(email, username, is_active))

    def create_role(self, codename: str, name: str):
        return self._run("create_role", lambda s: s.identity.create_role(codename, name))

    def assign_role(self, user_id: UUID, role_id: UUID):
        return self._run("assign_role", lambda s: s.identity.assign_role(user_id, role_id))

    def register_login(self, user_id: UUID, provider: str, provider_key: str):
        return self._run(
            "register_login",
            lambda s: s.identity.register_login(user_id, provider, provider_key),
        )

    def create_segregation(self, codename: str, name: str):
        return self._run("create_segregation", lambda s: s.identity.create_segregation(codename, name))

    def create_disposition_type(self, codename: str, name: str):
        return self._run(
            "create_disposition_type",
            lambda s: s.identity.create_disposition_type(codename, name),
        )

    def grant_disposition(self, user_id: UUID, segregation_id: UUID, disposition_type_id: UUID):
        return self._run(
            "grant_disposition",
            lambda s: s.identity.grant_disposition(user_id, segregation_id, disposition_type_id),
        )

    def create_permission(self, codename: str, name: str):
        return self._run("create_permission", lambda s: s.identity.create_permission(codename, name))

    def grant_permission_to_role(self, role_id: UUID, permission_id: UUID):
        return self._run(
            "grant_permission_to_role",
            lambda s: s.identity.grant_permission_to_role(role_id, permission_id),
        )

    def grant_permission_to_disposition_type(self, disposition_type_id: UUID, permission_id: UUID):
        return self._run(
            "grant_permission_to_disposition_type",
            lambda s: s.identity.grant_permission_to_disposition_type(disposition_type_id, permission_id),
        )

    def add_entity_access(self, permission_id: UUID, entity_name: str, **flags: bool):
        return self._run(
            "add_entity_access",
            lambda s: s.identity.add_entity_access(permission_id, entity_name, **flags),
        )

    def add_manager_access(self, permission_id: UUID, manager_type: str):
        return self._run(
            "add_manager_access",
            lambda s: s.identity.add_manager_access(permission_id, manager_type),
        )

    def add_owners(self, model: type[Owned], entity_id: UUID, user_ids: Iterable[UUID]):
        user_ids = list(user_ids)
        return self._run(
            "add_owners",
            lambda s: s.ownership.add_owners_by_id(model, entity_id, user_ids),
        )

    # -- workflow --------------------------------------------------------------

    def install_graph(self, definition: WorkflowGraphDef):
        return self._run("install_graph", lambda s: s.workflow.install_graph(definition))

    def create_stateful_entity(
        self,
        graph_id: UUID,
        entity_type: str,
        reference: str,
        initial_state: StateRef | str,
        segregation_id: UUID,
        owners: Iterable[UUID] = (),
    ):
        owners = list(owners)
        return self._run(
            "create_stateful_entity",
            lambda s: s.workflow.create_stateful_entity(
                graph_id, entity_type, reference, initial_state, segregation_id, owners
            ),
        )

    def execute_transition(
        self,
        entity_id: UUID,
        path_codename: str,
        acting_user_ids: Iterable[UUID],
        request_id: str | None = None,
        journal: JournalSpec | None = None,
    ) -> TransitionOutcome:
        """
        Execute a transition and, when ``journal`` is given, commit that
        journal linked to it.  Both succeed or neither does.
        """
        actors = list(acting_user_ids)

        def body(s: _Services) -> TransitionOutcome:
            transition = s.workflow.execute_transition(entity_id, path_codename, actors, request_id)
            committed = None
            if journal is not None:
                committed = s.ledger.commit_spec(journal, state_transition_id=transition.id)
            return TransitionOutcome(transition, committed)

        return self._run("execute_transition", body)

    # -- ledger ----------------------------------------------------------------

    def create_credit_system(self, codename: str, name: str):
        return self._run("create_credit_system", lambda s: s.ledger.create_credit_system(codename, name))

    def create_account(self, name: str, currency: str, owners: Iterable[UUID] = ()):
        owners = list(owners)
        return self._run("create_account", lambda s: s.ledger.create_account(name, currency, owners))

    def commit_journal(
        self,
        journal_type: str,
        postings: Sequence[PostingSpec] = (),
        remittances: Sequence[RemittanceSpec] = (),
        owners: Iterable[UUID] = (),
        state_transition_id: UUID | None = None,
        description: str | None = None,
    ) -> Journal:
        owners = list(owners)
        return self._run(
            "commit_journal",
            lambda s: s.ledger.commit_journal(
                journal_type, postings, remittances, owners, state_transition_id, description
            ),
        )

    def reverse_journal(self, journal_id: UUID, owners: Iterable[UUID] = (), description: str | None = None):
        owners = list(owners)
        return self._run(
            "reverse_journal",
            lambda s: s.ledger.reverse_journal(journal_id, owners, description),
        )

    # -- funds transfer --------------------------------------------------------

    def create_request_group(self, account_holder_name: str, encrypted_account_number: str, **encrypted):
        return self._run(
            "create_request_group",
            lambda s: s.funds_transfer.create_request_group(
                account_holder_name, encrypted_account_number, **encrypted
            ),
        )

    def create_request(
        self,
        guid: str,
        credit_system_id: UUID,
        amount,
        currency: str,
        direction: TransferDirection | str,
        transaction_id: str,
        group_id: UUID | None = None,
    ):
        return self._run(
            "create_request",
            lambda s: s.funds_transfer.create_request(
                guid, credit_system_id, amount, currency, direction, transaction_id, group_id
            ),
        )

    def create_batch(self, guid: str, credit_system_id: UUID, request_ids: Iterable[UUID], owners: Iterable[UUID] = ()):
        request_ids, owners = list(request_ids), list(owners)
        return self._run(
            "create_batch",
            lambda s: s.funds_transfer.create_batch(guid, credit_system_id, request_ids, owners),
        )

    def record_batch_message(self, batch_id: UUID, message_type: str, comments: str | None = None):
        return self._run(
            "record_batch_message",
            lambda s: s.funds_transfer.record_batch_message(batch_id, message_type, comments),
        )

    def append_event(
        self,
        request_id: UUID,
        event_type: EventType | str,
        trace_code: str | None = None,
        response_code: str | None = None,
        comments: str | None = None,
        collation_id: UUID | None = None,
    ):
        return self._run(
            "append_event",
            lambda s: s.funds_transfer.append_event(
                request_id, event_type, trace_code, response_code, comments, collation_id
            ),
        )

    def digest_batch_response(
        self,
        batch_id: UUID,
        responses: Sequence[TransferResponse],
        message_type: str = "response",
        comments: str | None = None,
    ):
        return self._run(
            "digest_batch_response",
            lambda s: s.funds_transfer.digest_batch_response(batch_id, responses, message_type, comments),
        )

    # -- invoices --------------------------------------------------------------

    def issue_invoice(
        self,
        issue_date,
        due_date,
        currency: str,
        lines: Sequence[InvoiceLineSpec],
        tax_components: Sequence[TaxComponentSpec] = (),
        description: str | None = None,
    ):
        return self._run(
            "issue_invoice",
            lambda s: s.invoice.issue_invoice(
                issue_date, due_date, currency, lines, tax_components, description
            ),
        )

    def record_invoice_event(self, invoice_id: UUID, state: InvoiceState | str, occurred_at: datetime):
        return self._run(
            "record_invoice_event",
            lambda s: s.invoice.record_invoice_event(invoice_id, state, occurred_at),
        )

    def delete_invoice(self, invoice_id: UUID) -> None:
        self._run("delete_invoice", lambda s: s.invoice.delete_invoice(invoice_id))

    def link_funds_transfer_request(self, invoice_id: UUID, request_id: UUID):
        return self._run(
            "link_funds_transfer_request",
            lambda s: s.invoice.link_funds_transfer_request(invoice_id, request_id),
        )

    def post_invoice_to_ledger(
        self,
        invoice_id: UUID,
        receivable_account_id: UUID,
        revenue_account_id: UUID,
        tax_account_id: UUID | None = None,
        owners: Iterable[UUID] = (),
    ):
        owners = list(owners)
        return self._run(
            "post_invoice_to_ledger",
            lambda s: s.invoice.post_invoice_to_ledger(
                invoice_id, receivable_account_id, revenue_account_id, tax_account_id, owners
            ),
        )
