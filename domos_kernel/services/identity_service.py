"""
IdentityService -- users, roles, login registrations, segregations,
dispositions and permissions.

Responsibility:
    Creates the identity and access fabric that WorkflowService and
    AccessResolver consult.  Every natural key (email, username, codename,
    provider/key pair, disposition triple) is pre-checked and then backed by
    its unique constraint.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.

Failure modes:
    - DuplicateEntityError on any natural-key collision.
    - EntityNotFoundError for a missing user, role, segregation, disposition
      type or permission.
    - ValidationError for a provider key longer than 128 characters.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from domos_kernel.exceptions import DuplicateEntityError, ValidationError
from domos_kernel.logging_config import get_logger
from domos_kernel.models.identity import (
    Disposition,
    DispositionType,
    EntityAccess,
    ManagerAccess,
    Permission,
    Registration,
    Role,
    Segregation,
    User,
)
from domos_kernel.services.base import BaseService

logger = get_logger("services.identity")

MAX_PROVIDER_KEY_LENGTH = 128


class IdentityService(BaseService[User]):
    """Write side of the identity and access fabric."""

    def _exists(self, stmt) -> bool:
        return self.session.execute(stmt.limit(1)).first() is not None

    def _add_unique(self, instance, entity_type: str, key: str, exists_stmt):
        if self._exists(exists_stmt):
            raise DuplicateEntityError(entity_type, key)
        self.session.add(instance)
        try:
            self.session.flush()
        except IntegrityError as exc:
            logger.warning(
                "identity_unique_conflict",
                extra={"entity_type": entity_type, "key": key},
            )
            raise DuplicateEntityError(entity_type, key) from exc
        return instance

    # -- users and roles ------------------------------------------------------

    def create_user(self, email: str, username: str, is_active: bool = True) -> User:
        user = User(
            email=email,
            username=username,
            is_active=is_active,
            created_at=self.clock.now(),
        )
        self._add_unique(
            user,
            "User",
            f"{email}/{username}",
            select(User.id).where((User.email == email) | (User.username == username)),
        )
        logger.info("user_created", extra={"user_id": str(user.id), "username": username})
        return user

    def create_role(self, codename: str, name: str) -> Role:
        return self._add_unique(
            Role(codename=codename, name=name),
            "Role",
            codename,
            select(Role.id).where(Role.codename == codename),
        )

    def assign_role(self, user_id: UUID, role_id: UUID) -> User:
        user = self._require(User, user_id)
        role = self._require(Role, role_id)
        if role not in user.roles:
            user.roles.append(role)
            self.session.flush()
        return user

    def register_login(self, user_id: UUID, provider: str, provider_key: str) -> Registration:
        """Bind ``user_id`` to an identity at an external login provider."""
        if len(provider_key) > MAX_PROVIDER_KEY_LENGTH:
            raise ValidationError(
                f"provider_key exceeds {MAX_PROVIDER_KEY_LENGTH} characters",
                field="provider_key",
            )
        self._require(User, user_id)
        return self._add_unique(
            Registration(
                user_id=user_id,
                provider=provider,
                provider_key=provider_key,
                created_at=self.clock.now(),
            ),
            "Registration",
            f"{provider}/{provider_key}",
            select(Registration.id).where(
                Registration.provider == provider,
                Registration.provider_key == provider_key,
            ),
        )

    def find_user_by_registration(self, provider: str, provider_key: str) -> User | None:
        stmt = (
            select(User)
            .join(Registration, Registration.user_id == User.id)
            .where(
                Registration.provider == provider,
                Registration.provider_key == provider_key,
            )
        )
        return self.session.execute(stmt).scalar_one_or_none()

    # -- segregations and dispositions ----------------------------------------

    def create_segregation(self, codename: str, name: str) -> Segregation:
        return self._add_unique(
            Segregation(codename=codename, name=name),
            "Segregation",
            codename,
            select(Segregation.id).where(Segregation.codename == codename),
        )

    def create_disposition_type(self, codename: str, name: str) -> DispositionType:
        return self._add_unique(
            DispositionType(codename=codename, name=name),
            "DispositionType",
            codename,
            select(DispositionType.id).where(DispositionType.codename == codename),
        )

    def grant_disposition(
        self,
        user_id: UUID,
        segregation_id: UUID,
        disposition_type_id: UUID,
    ) -> Disposition:
        """Give ``user_id`` a disposition of the given type over a segregation."""
        self._require(User, user_id)
        self._require(Segregation, segregation_id)
        self._require(DispositionType, disposition_type_id)
        disposition = self._add_unique(
            Disposition(
                owning_user_id=user_id,
                segregation_id=segregation_id,
                disposition_type_id=disposition_type_id,
                created_at=self.clock.now(),
            ),
            "Disposition",
            f"{user_id}/{segregation_id}/{disposition_type_id}",
            select(Disposition.id).where(
                Disposition.owning_user_id == user_id,
                Disposition.segregation_id == segregation_id,
                Disposition.disposition_type_id == disposition_type_id,
            ),
        )
        logger.info(
            "disposition_granted",
            extra={
                "user_id": str(user_id),
                "segregation_id": str(segregation_id),
                "disposition_type_id": str(disposition_type_id),
            },
        )
        return disposition

    # -- permissions ----------------------------------------------------------

    def create_permission(self, codename: str, name: str) -> Permission:
        return self._add_unique(
            Permission(codename=codename, name=name),
            "Permission",
            codename,
            select(Permission.id).where(Permission.codename == codename),
        )

    def grant_permission_to_role(self, role_id: UUID, permission_id: UUID) -> Role:
        role = self._require(Role, role_id)
        permission = self._require(Permission, permission_id)
        if permission not in role.permissions:
            role.permissions.append(permission)
            self.session.flush()
        return role

    def grant_permission_to_disposition_type(
        self,
        disposition_type_id: UUID,
        permission_id: UUID,
    ) -> DispositionType:
        disposition_type = self._require(DispositionType, disposition_type_id)
        permission = self._require(Permission, permission_id)
        if permission not in disposition_type.permissions:
            disposition_type.permissions.append(permission)
            self.session.flush()
        return disposition_type

    def add_entity_access(
        self,
        permission_id: UUID,
        entity_name: str,
        can_read: bool = False,
        can_create: bool = False,
        can_write: bool = False,
        can_delete: bool = False,
    ) -> EntityAccess:
        self._require(Permission, permission_id)
        return self._add_unique(
            EntityAccess(
                permission_id=permission_id,
                entity_name=entity_name,
                can_read=can_read,
                can_create=can_create,
                can_write=can_write,
                can_delete=can_delete,
            ),
            "EntityAccess",
            f"{permission_id}/{entity_name}",
            select(EntityAccess.id).where(
                EntityAccess.permission_id == permission_id,
                EntityAccess.entity_name == entity_name,
            ),
        )

    def add_manager_access(self, permission_id: UUID, manager_type: str) -> ManagerAccess:
        self._require(Permission, permission_id)
        return self._add_unique(
            ManagerAccess(permission_id=permission_id, manager_type=manager_type),
            "ManagerAccess",
            f"{permission_id}/{manager_type}",
            select(ManagerAccess.id).where(
                ManagerAccess.permission_id == permission_id,
                ManagerAccess.manager_type == manager_type,
            ),
        )
