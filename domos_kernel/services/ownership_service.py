"""
OwnershipService -- additive ownership edges between entities and users.

Responsibility:
    Writes the ``<table>_to_owners`` edges of any ``Owned`` entity.  Reads
    (owner ids, visibility by owner) live in OwnershipSelector.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.

Invariants enforced:
    - Ownership is additive: add_owners never removes an existing owner and
      adding an existing owner is a no-op.

Failure modes:
    - TypeError if the entity's class is not ``Owned``.
    - EntityNotFoundError if a user id does not exist.
"""

from typing import Iterable
from uuid import UUID

from domos_kernel.db.ownership import Owned
from domos_kernel.models.identity import User
from domos_kernel.services.base import BaseService


class OwnershipService(BaseService[User]):

    def resolve_users(self, user_ids: Iterable[UUID]) -> list[User]:
        """Load each distinct user id, preserving first-seen order."""
        users: list[User] = []
        seen: set[UUID] = set()
        for user_id in user_ids:
            if user_id in seen:
                continue
            seen.add(user_id)
            users.append(self._require(User, user_id))
        return users

    def add_owners(self, entity: Owned, user_ids: Iterable[UUID]) -> Owned:
        if not isinstance(entity, Owned):
            raise TypeError(f"{type(entity).__name__} does not carry ownership edges")
        current = {user.id for user in entity.owning_users}
        for user in self.resolve_users(user_ids):
            if user.id not in current:
                entity.owning_users.append(user)
                current.add(user.id)
        return entity

    def add_owners_by_id(self, model: type[Owned], entity_id: UUID, user_ids: Iterable[UUID]) -> Owned:
        """Lock ``model`` row ``entity_id`` and add owners to it."""
        entity = self._require(model, entity_id, for_update=True)
        self.add_owners(entity, user_ids)
        self.session.flush()
        return entity
