"""
Typed exception hierarchy for the Domos core.

Every error the core raises is a subclass of ``DomosError`` with a
class-level ``code`` attribute (machine-readable, API-safe) and its context
stored as attributes rather than buried in the message.

    DomosError (base)
    |
    +-- ValidationError
    |   +-- EntityNotFoundError
    |   +-- InvalidCurrencyError
    |
    +-- InvalidTransitionError
    +-- AuthorizationError
    +-- UnbalancedJournalError
    |
    +-- UniquenessError
    |   +-- DuplicateRemittanceError
    |   +-- DuplicateRequestError
    |   +-- DuplicateEntityError
    |
    +-- ConflictError
    +-- ImmutabilityViolationError
    +-- ReversalError

Handling contract:

    try:
        core.commit_journal(...)
    except ConflictError:
        # lost a race against a concurrent writer; re-read and retry
        ...
    except DomosError as e:
        # business-rule violation; present e.code to the caller
        ...

Only ``ConflictError`` is worth retrying. Every other kind is a business-rule
violation that will fail again with the same input. The core itself never
retries and never recovers silently: any error aborts the enclosing
transaction.
"""

from decimal import Decimal


class DomosError(Exception):
    """Base exception for all Domos core errors."""

    code: str = "DOMOS_ERROR"


# Validation


class ValidationError(DomosError):
    """Malformed input, e.g. a missing required reference."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class EntityNotFoundError(ValidationError):
    """A referenced entity does not exist."""

    code: str = "ENTITY_NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


class InvalidCurrencyError(ValidationError):
    """Currency code is not a recognized ISO 4217 code."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid ISO 4217 currency code: '{currency}'", field="currency")


# Workflow


class InvalidTransitionError(DomosError):
    """A state-graph traversal is not admissible from the current state."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        reason: str,
        path_codename: str | None = None,
        current_state: str | None = None,
    ):
        self.reason = reason
        self.path_codename = path_codename
        self.current_state = current_state
        super().__init__(reason)


class AuthorizationError(DomosError):
    """Ownership or disposition check failed."""

    code: str = "AUTHORIZATION_FAILED"

    def __init__(self, user_id: str | None, reason: str):
        self.user_id = user_id
        self.reason = reason
        subject = f"user {user_id}" if user_id else "request"
        super().__init__(f"Authorization failed for {subject}: {reason}")


# Ledger


class UnbalancedJournalError(DomosError):
    """Signed sum of a journal's postings in one currency is not zero."""

    code: str = "UNBALANCED_JOURNAL"

    def __init__(self, currency: str, imbalance: Decimal):
        self.currency = currency
        self.imbalance = str(imbalance)
        super().__init__(
            f"Unbalanced journal in {currency}: signed sum = {imbalance}"
        )


class ReversalError(DomosError):
    """Journal cannot be reversed (missing, or already reversed)."""

    code: str = "REVERSAL_NOT_ALLOWED"

    def __init__(self, journal_id: str, reason: str):
        self.journal_id = journal_id
        self.reason = reason
        super().__init__(f"Cannot reverse journal {journal_id}: {reason}")


# Uniqueness


class UniquenessError(DomosError):
    """Base for collisions on a unique business key."""

    code: str = "UNIQUENESS_VIOLATION"


class DuplicateRemittanceError(UniquenessError):
    """A remittance with the same (transaction_id, discriminator) exists."""

    code: str = "DUPLICATE_REMITTANCE"

    def __init__(self, transaction_id: str, discriminator: str):
        self.transaction_id = transaction_id
        self.discriminator = discriminator
        super().__init__(
            f"Remittance already recorded for transaction {transaction_id} "
            f"({discriminator})"
        )


class DuplicateRequestError(UniquenessError):
    """A funds-transfer request or batch with the same GUID exists."""

    code: str = "DUPLICATE_REQUEST"

    def __init__(self, entity_type: str, guid: str):
        self.entity_type = entity_type
        self.guid = guid
        super().__init__(f"{entity_type} already exists with guid {guid}")


class DuplicateEntityError(UniquenessError):
    """A unique natural key (email, codename, provider key) is taken."""

    code: str = "DUPLICATE_ENTITY"

    def __init__(self, entity_type: str, key: str):
        self.entity_type = entity_type
        self.key = key
        super().__init__(f"{entity_type} already exists: {key}")


# Concurrency


class ConflictError(DomosError):
    """A concurrent writer won the race; retry with fresh data."""

    code: str = "CONFLICT"

    def __init__(self, entity_type: str, reason: str):
        self.entity_type = entity_type
        self.reason = reason
        super().__init__(f"Concurrent modification of {entity_type}: {reason}")


# Immutability


class ImmutabilityViolationError(DomosError):
    """Attempt to modify or delete an append-only or closed record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )
