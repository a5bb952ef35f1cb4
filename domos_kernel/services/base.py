"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every write-side service.  Services receive a SQLAlchemy ``Session``
    and an injected ``Clock``; they persist through ``session.flush()`` and
    never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's transaction.
      DomosCore (or the test harness) owns commit.  The one exception is
      classifying an IntegrityError: the failed flush leaves the session
      unusable, so the service rolls back before re-reading the conflicting
      key and raising a typed error.

Failure modes:
    - EntityNotFoundError from _require() when a referenced row is missing.
"""

from abc import ABC
from typing import Generic, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from domos_kernel.db.base import Base
from domos_kernel.domain.clock import Clock, SystemClock
from domos_kernel.exceptions import EntityNotFoundError

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Non-goals:
        - Does NOT manage transaction lifecycle.
        - Does NOT provide query-only (read) methods -- those belong
          in ``domos_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()

    def _require(self, model: type[Base], entity_id: UUID, for_update: bool = False):
        """Load ``model`` by primary key or raise EntityNotFoundError."""
        if for_update:
            stmt = (
                select(model)
                .where(model.id == entity_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            instance = self.session.execute(stmt).scalar_one_or_none()
        else:
            instance = self.session.get(model, entity_id)
        if instance is None:
            raise EntityNotFoundError(model.__name__, str(entity_id))
        return instance
