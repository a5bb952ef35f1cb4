"""
Ledger value objects and the double-entry balance rule.

Responsibility:
    Describes a journal before it is written (JournalSpec with its
    PostingSpec and RemittanceSpec lines), computes per-currency imbalance,
    and derives the remittance key discriminator for the deployment's key
    scheme.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Double-entry balance: the signed sum of postings in each currency is
      zero.  Remittances are settlement records and take no part in it.
    - One remittance key scheme per deployment: the discriminator is either
      the credit system or the line id, never a mix.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from uuid import UUID

from domos_kernel.exceptions import ValidationError


class RemittanceKeyScheme(str, Enum):
    """Second half of the remittance unique key."""

    CREDIT_SYSTEM = "credit_system"
    LINE = "line"


@dataclass(frozen=True)
class PostingSpec:
    """A signed amount against one account.  Positive debits, negative credits."""

    account_id: UUID
    amount: Decimal
    currency: str


@dataclass(frozen=True)
class RemittanceSpec:
    account_id: UUID
    credit_system_id: UUID
    transaction_id: str
    amount: Decimal
    currency: str
    line_id: str | None = None


@dataclass(frozen=True)
class JournalSpec:
    """
    A unit of accounting work to be committed atomically.

    Used to couple a ledger write to a workflow transition: the journal is
    committed in the transition's transaction and linked to it.
    """

    journal_type: str
    postings: tuple[PostingSpec, ...] = ()
    remittances: tuple[RemittanceSpec, ...] = ()
    owners: tuple[UUID, ...] = field(default_factory=tuple)
    description: str | None = None


def imbalances_by_currency(postings) -> dict[str, Decimal]:
    """
    Return the non-zero signed sums of ``postings`` keyed by currency.

    An empty result means the postings balance.
    """
    sums: dict[str, Decimal] = defaultdict(Decimal)
    for posting in postings:
        sums[posting.currency] += posting.amount
    return {currency: total for currency, total in sorted(sums.items()) if total != 0}


def key_discriminator(scheme: RemittanceKeyScheme, remittance: RemittanceSpec) -> str:
    """
    Derive the discriminator stored beside ``transaction_id``.

    Raises:
        ValidationError: Under the line scheme, if the remittance has no line id.
    """
    if scheme == RemittanceKeyScheme.CREDIT_SYSTEM:
        return f"cs:{remittance.credit_system_id}"
    if not remittance.line_id:
        raise ValidationError(
            "Remittance line_id is required under the 'line' key scheme",
            field="line_id",
        )
    return f"line:{remittance.line_id}"


def negate_postings(postings) -> tuple[PostingSpec, ...]:
    """Offsetting postings for a reversal."""
    return tuple(
        PostingSpec(account_id=p.account_id, amount=-p.amount, currency=p.currency)
        for p in postings
    )
