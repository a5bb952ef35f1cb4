"""
Module: domos_kernel.selectors.access_resolver
Responsibility: Answers "may this user do X here?" from roles, dispositions
    and the access-control entries attached to permissions.
Architecture position: Kernel > Selectors.  Read-only; used by
    WorkflowService to authorize transitions and by callers gating their own
    entity and manager access.

A user's permissions over a segregation are the union of:
    - the permissions of every role the user holds (global), and
    - the permissions of every disposition type the user holds over that
      segregation.

Failure modes:
    - ValidationError for an unknown entity action.
"""

from typing import Iterable
from uuid import UUID

from sqlalchemy import select, union
from sqlalchemy.orm import Session

from domos_kernel.exceptions import ValidationError
from domos_kernel.models.identity import (
    Disposition,
    EntityAccess,
    ManagerAccess,
    Permission,
    User,
    disposition_type_permissions,
    role_permissions,
    user_roles,
)
from domos_kernel.selectors.base import BaseSelector

ENTITY_ACTIONS = ("read", "create", "write", "delete")


class AccessResolver(BaseSelector[Permission]):
    def __init__(self, session: Session):
        super().__init__(session)

    def _permission_ids(self, user_id: UUID, segregation_id: UUID | None):
        via_roles = (
            select(role_permissions.c.permission_id)
            .join(user_roles, user_roles.c.role_id == role_permissions.c.role_id)
            .where(user_roles.c.user_id == user_id)
        )
        if segregation_id is None:
            return via_roles
        via_dispositions = (
            select(disposition_type_permissions.c.permission_id)
            .join(
                Disposition,
                Disposition.disposition_type_id
                == disposition_type_permissions.c.disposition_type_id,
            )
            .where(
                Disposition.owning_user_id == user_id,
                Disposition.segregation_id == segregation_id,
            )
        )
        return union(via_roles, via_dispositions)

    def permissions_for(self, user_id: UUID, segregation_id: UUID | None = None) -> frozenset[str]:
        """Codenames of every permission ``user_id`` holds over ``segregation_id``."""
        ids = self._permission_ids(user_id, segregation_id).subquery()
        stmt = select(Permission.codename).where(Permission.id.in_(select(ids.c.permission_id)))
        return frozenset(self.session.execute(stmt).scalars())

    def has_disposition(self, user_id: UUID, segregation_id: UUID) -> bool:
        stmt = select(Disposition.id).where(
            Disposition.owning_user_id == user_id,
            Disposition.segregation_id == segregation_id,
        )
        return self.session.execute(stmt.limit(1)).first() is not None

    def is_active(self, user_id: UUID) -> bool:
        user = self.session.get(User, user_id)
        return user is not None and user.is_active

    def is_authorized(
        self,
        user_ids: Iterable[UUID],
        segregation_id: UUID,
        permission_codename: str,
    ) -> bool:
        """True when every user is active and holds the permission; False for no users."""
        user_ids = list(user_ids)
        if not user_ids:
            return False
        return all(
            self.is_active(user_id)
            and permission_codename in self.permissions_for(user_id, segregation_id)
            for user_id in user_ids
        )

    def can_access_entity(
        self,
        user_id: UUID,
        entity_name: str,
        action: str,
        segregation_id: UUID | None = None,
    ) -> bool:
        if action not in ENTITY_ACTIONS:
            raise ValidationError(f"Unknown entity action '{action}'", field="action")
        if not self.is_active(user_id):
            return False
        ids = self._permission_ids(user_id, segregation_id).subquery()
        stmt = select(EntityAccess).where(
            EntityAccess.permission_id.in_(select(ids.c.permission_id)),
            EntityAccess.entity_name == entity_name,
        )
        return any(entry.allows(action) for entry in self.session.execute(stmt).scalars())

    def can_access_manager(
        self,
        user_id: UUID,
        manager_type: str,
        segregation_id: UUID | None = None,
    ) -> bool:
        if not self.is_active(user_id):
            return False
        ids = self._permission_ids(user_id, segregation_id).subquery()
        stmt = select(ManagerAccess.id).where(
            ManagerAccess.permission_id.in_(select(ids.c.permission_id)),
            ManagerAccess.manager_type == manager_type,
        )
        return self.session.execute(stmt.limit(1)).first() is not None
