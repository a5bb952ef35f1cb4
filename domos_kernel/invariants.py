"""
Core Invariants Contract.

These invariants are structural law. No deployment setting may switch them
off. This module only declares them; enforcement is distributed across the
services, the ORM immutability listeners and the unique constraints.
"""

from enum import Enum, unique


@unique
class CoreInvariant(str, Enum):
    """Non-configurable invariants enforced by the core."""

    DOUBLE_ENTRY_BALANCE = "double_entry_balance"
    """Signed posting sum per currency is zero in every journal. Enforced by
    LedgerService before flush."""

    REMITTANCE_KEY_UNIQUENESS = "remittance_key_uniqueness"
    """No two remittances share (transaction_id, key_discriminator).
    Enforced by unique constraint, classified by LedgerService."""

    TRANSITION_ADMISSIBILITY = "transition_admissibility"
    """A transition's path starts at the entity's current state and ends at
    its next state. Enforced by WorkflowService under row lock."""

    EVENT_FOLD_CONSISTENCY = "event_fold_consistency"
    """The denormalized state column of a request or invoice equals the fold
    of its ordered events. Written together by a single code path."""

    APPEND_ONLY_HISTORY = "append_only_history"
    """Transitions, events, batch messages and collations are never updated
    or deleted. Enforced by db.immutability listeners."""

    CLOSED_JOURNAL_IMMUTABILITY = "closed_journal_immutability"
    """Closed journals and their postings and remittances never change.
    Corrections are offsetting journals."""


ALL_CORE_INVARIANTS: frozenset[CoreInvariant] = frozenset(CoreInvariant)

# The kernel package may not import from these packages.
# This is enforced by tests/architecture/test_kernel_boundary.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = ("domos_config",)
