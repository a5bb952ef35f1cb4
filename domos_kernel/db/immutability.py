"""
ORM-Level Immutability Enforcement.

Closed journals and every append-only history row are write-once.  This
module registers mapper listeners that intercept UPDATE and DELETE before
SQL is emitted:

    session.flush()
         |
         v
    [before_update] --> _check_*_update() --> ImmutabilityViolationError
         |
         v
    [before_delete] --> _check_*_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

PROTECTED ENTITIES

Entity                        | When immutable
------------------------------|------------------------------------
Journal                       | After is_closed was persisted
Posting                       | When parent journal is closed
Remittance                    | When parent journal is closed
StateTransition               | ALWAYS (from creation)
FundsTransferEvent            | ALWAYS (from creation)
FundsTransferBatchMessage     | ALWAYS (from creation)
FundsTransferEventCollation   | ALWAYS (from creation)
InvoiceEvent                  | ALWAYS (from creation)

Only column attributes are compared.  Ownership edges live in separate join
tables and remain additive on every owned entity.

USAGE

    from domos_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # idempotent
"""

from sqlalchemy import event, inspect

from domos_kernel.exceptions import ImmutabilityViolationError
from domos_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _changed_columns(target) -> list[str]:
    insp = inspect(target)
    return [
        attr.key
        for attr in insp.mapper.column_attrs
        if insp.attrs[attr.key].history.has_changes()
    ]


def _block(entity_type: str, target, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _was_closed(target) -> bool:
    """True if the journal was already closed before this flush began."""
    history = inspect(target).attrs.is_closed.history
    if history.deleted:
        return bool(history.deleted[0])
    if not history.added:
        return bool(target.is_closed)
    return False


def _check_journal_update(mapper, connection, target):
    if not _was_closed(target):
        return
    changed = _changed_columns(target)
    if changed:
        _block(
            "Journal",
            target,
            "UPDATE",
            f"Cannot modify field '{changed[0]}' on closed journal",
            field=changed[0],
        )


def _check_journal_delete(mapper, connection, target):
    if target.is_closed:
        _block("Journal", target, "DELETE", "Closed journals cannot be deleted")


def _journal_line_checks(entity_type: str):
    def _check_update(mapper, connection, target):
        if target.journal is not None and target.journal.is_closed and _changed_columns(target):
            _block(
                entity_type,
                target,
                "UPDATE",
                f"{entity_type} rows cannot be modified once their journal is closed",
            )

    def _check_delete(mapper, connection, target):
        if target.journal is not None and target.journal.is_closed:
            _block(
                entity_type,
                target,
                "DELETE",
                f"{entity_type} rows cannot be deleted once their journal is closed",
            )

    return _check_update, _check_delete


_check_posting_update, _check_posting_delete = _journal_line_checks("Posting")
_check_remittance_update, _check_remittance_delete = _journal_line_checks("Remittance")


def _append_only_checks(entity_type: str):
    def _check_update(mapper, connection, target):
        changed = _changed_columns(target)
        if changed:
            field = changed[0]
            _block(
                entity_type,
                target,
                "UPDATE",
                f"{entity_type} records are append-only; cannot modify '{field}'",
                field=field,
            )

    def _check_delete(mapper, connection, target):
        _block(entity_type, target, "DELETE", f"{entity_type} records cannot be deleted")

    return _check_update, _check_delete


_check_transition_update, _check_transition_delete = _append_only_checks("StateTransition")
_check_ft_event_update, _check_ft_event_delete = _append_only_checks("FundsTransferEvent")
_check_batch_message_update, _check_batch_message_delete = _append_only_checks(
    "FundsTransferBatchMessage"
)
_check_collation_update, _check_collation_delete = _append_only_checks(
    "FundsTransferEventCollation"
)
_check_invoice_event_update, _check_invoice_event_delete = _append_only_checks("InvoiceEvent")


def _listener_table():
    from domos_kernel.models.funds_transfer import (
        FundsTransferBatchMessage,
        FundsTransferEvent,
        FundsTransferEventCollation,
    )
    from domos_kernel.models.invoice import InvoiceEvent
    from domos_kernel.models.ledger import Journal, Posting, Remittance
    from domos_kernel.models.workflow import StateTransition

    return (
        (Journal, _check_journal_update, _check_journal_delete),
        (Posting, _check_posting_update, _check_posting_delete),
        (Remittance, _check_remittance_update, _check_remittance_delete),
        (StateTransition, _check_transition_update, _check_transition_delete),
        (FundsTransferEvent, _check_ft_event_update, _check_ft_event_delete),
        (FundsTransferBatchMessage, _check_batch_message_update, _check_batch_message_delete),
        (FundsTransferEventCollation, _check_collation_update, _check_collation_delete),
        (InvoiceEvent, _check_invoice_event_update, _check_invoice_event_delete),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Safe to call more than once; an already-registered listener is skipped.
    """
    for model, on_update, on_delete in _listener_table():
        if not event.contains(model, "before_update", on_update):
            event.listen(model, "before_update", on_update)
        if not event.contains(model, "before_delete", on_delete):
            event.listen(model, "before_delete", on_delete)

