"""
Module: domos_kernel.models.identity
Responsibility: ORM persistence for the identity and access fabric -- users,
    roles, external-login registrations, segregations, dispositions, and the
    permission / entity-access / manager-access entries.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - User.email and User.username are each unique.
    - (provider, provider_key) is unique across registrations.
    - A Disposition always has an owning user (required FK), and a user holds
      a given disposition type over a segregation at most once.

Failure modes:
    - IntegrityError on a duplicate natural key; IdentityService pre-checks
      and raises DuplicateEntityError first.
"""

from uuid import UUID

from sqlalchemy import Boolean, Column, ForeignKey, String, Table, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from domos_kernel.db.base import Base, TrackedBase, UUIDString

user_roles = Table(
    "users_to_roles",
    Base.metadata,
    Column("user_id", UUIDString(), ForeignKey("users.id"), primary_key=True),
    Column("role_id", UUIDString(), ForeignKey("roles.id"), primary_key=True),
)

role_permissions = Table(
    "roles_to_permissions",
    Base.metadata,
    Column("role_id", UUIDString(), ForeignKey("roles.id"), primary_key=True),
    Column("permission_id", UUIDString(), ForeignKey("permissions.id"), primary_key=True),
)

disposition_type_permissions = Table(
    "disposition_types_to_permissions",
    Base.metadata,
    Column(
        "disposition_type_id",
        UUIDString(),
        ForeignKey("disposition_types.id"),
        primary_key=True,
    ),
    Column("permission_id", UUIDString(), ForeignKey("permissions.id"), primary_key=True),
)


class User(TrackedBase):
    """
    A person or system principal.

    Contract:
        email and username are unique; created_at is indexed for sign-up
        range queries.  A user owns zero or more Dispositions and belongs to
        zero or more Roles.
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(254), nullable=False, unique=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    roles: Mapped[list["Role"]] = relationship(
        secondary=user_roles,
        lazy="selectin",
    )
    dispositions: Mapped[list["Disposition"]] = relationship(
        back_populates="owning_user",
        lazy="selectin",
    )
    registrations: Mapped[list["Registration"]] = relationship(
        back_populates="user",
    )

    def __repr__(self) -> str:
        return f"<User {self.username}>"


class Role(Base):
    __tablename__ = "roles"

    codename: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    permissions: Mapped[list["Permission"]] = relationship(
        secondary=role_permissions,
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Role {self.codename}>"


class Registration(TrackedBase):
    """Binding of a User to an identity at an external login provider."""

    __tablename__ = "registrations"

    __table_args__ = (UniqueConstraint("provider", "provider_key"),)

    provider: Mapped[str] = mapped_column(String(100), nullable=False)
    provider_key: Mapped[str] = mapped_column(String(128), nullable=False)
    user_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )

    user: Mapped["User"] = relationship(back_populates="registrations")


class Segregation(Base):
    """A partition of the domain over which dispositions are granted."""

    __tablename__ = "segregations"

    codename: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    def __repr__(self) -> str:
        return f"<Segregation {self.codename}>"


class DispositionType(Base):
    """Kind of grant (e.g. 'accountant', 'approver') and the permissions it carries."""

    __tablename__ = "disposition_types"

    codename: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    permissions: Mapped[list["Permission"]] = relationship(
        secondary=disposition_type_permissions,
        lazy="selectin",
    )


class Disposition(TrackedBase):
    """
    Scoped grant of a disposition type to a user over one segregation.

    Contract:
        owning_user_id is required.  (owning_user_id, segregation_id,
        disposition_type_id) is unique.
    """

    __tablename__ = "dispositions"

    __table_args__ = (
        UniqueConstraint("owning_user_id", "segregation_id", "disposition_type_id"),
    )

    owning_user_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )
    segregation_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("segregations.id"),
        nullable=False,
        index=True,
    )
    disposition_type_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("disposition_types.id"),
        nullable=False,
    )

    owning_user: Mapped["User"] = relationship(back_populates="dispositions")
    segregation: Mapped["Segregation"] = relationship(lazy="selectin")
    disposition_type: Mapped["DispositionType"] = relationship(lazy="selectin")


class Permission(Base):
    """
    Named permission.

    A permission is granted through roles (globally) or disposition types
    (per segregation).  It may carry entity-access and manager-access
    entries that refine what it allows.
    """

    __tablename__ = "permissions"

    codename: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    entity_accesses: Mapped[list["EntityAccess"]] = relationship(
        back_populates="permission",
        lazy="selectin",
    )
    manager_accesses: Mapped[list["ManagerAccess"]] = relationship(
        back_populates="permission",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Permission {self.codename}>"


class EntityAccess(Base):
    """CRUD rights over one entity name, conferred by a permission."""

    __tablename__ = "entity_accesses"

    __table_args__ = (UniqueConstraint("permission_id", "entity_name"),)

    permission_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("permissions.id"),
        nullable=False,
    )
    entity_name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    can_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_create: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_write: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_delete: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    permission: Mapped["Permission"] = relationship(back_populates="entity_accesses")

    def allows(self, action: str) -> bool:
        return bool(getattr(self, f"can_{action}", False))


class ManagerAccess(Base):
    """Right to use one manager (service facade) type, conferred by a permission."""

    __tablename__ = "manager_accesses"

    __table_args__ = (UniqueConstraint("permission_id", "manager_type"),)

    permission_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("permissions.id"),
        nullable=False,
    )
    manager_type: Mapped[str] = mapped_column(String(200), nullable=False, index=True)

    permission: Mapped["Permission"] = relationship(back_populates="manager_accesses")
