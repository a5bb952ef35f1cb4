"""
Module: domos_kernel.selectors.ownership_selector
Responsibility: Visibility queries over ownership edge tables.
Architecture position: Kernel > Selectors.

Visibility is answered by set membership on ``<table>_to_owners``: an
entity is visible to a set of users when any of them is among its owners.
"""

from typing import Iterable
from uuid import UUID

from sqlalchemy import select

from domos_kernel.db.ownership import Owned, owners_table_for
from domos_kernel.selectors.base import BaseSelector


class OwnershipSelector(BaseSelector):

    def owner_ids(self, entity: Owned) -> frozenset[UUID]:
        table = owners_table_for(type(entity))
        rows = self.session.execute(
            select(table.c.user_id).where(table.c.entity_id == entity.id)
        )
        return frozenset(row[0] for row in rows)

    def is_owner(self, entity: Owned, user_id: UUID) -> bool:
        return user_id in self.owner_ids(entity)

    def owned_by_stmt(self, model: type, user_ids: Iterable[UUID]):
        """SELECT of ``model`` rows owned by any of ``user_ids``."""
        table = owners_table_for(model)
        owned_ids = select(table.c.entity_id).where(table.c.user_id.in_(list(user_ids)))
        return select(model).where(model.id.in_(owned_ids))

    def owned_by(self, model: type, user_ids: Iterable[UUID]) -> list:
        stmt = self.owned_by_stmt(model, user_ids).order_by(model.created_at, model.id)
        return list(self.session.execute(stmt).scalars())
