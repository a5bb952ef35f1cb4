"""
Module: domos_kernel.db.ownership
Responsibility: The ``Owned`` capability -- many-to-many ownership edges from
    an entity to the users allowed to see it.
Architecture position: Kernel > DB.  Imported by model modules.

Invariants enforced:
    - Ownership is additive, never exclusive: an entity may be owned by any
      number of users and adding an owner never removes another.
    - The edge table carries no payload: ``(entity_id, user_id)`` only, named
      ``<table>_to_owners`` (e.g. ``accounts_to_owners``).
    - Visibility is answered by set membership on the edge table
      (see selectors.ownership_selector), not by walking object graphs.
"""

from typing import TYPE_CHECKING

from sqlalchemy import Column, ForeignKey, Index, Table
from sqlalchemy.orm import Mapped, declared_attr, relationship

from domos_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from domos_kernel.models.identity import User


def owners_table_name(tablename: str) -> str:
    return f"{tablename}_to_owners"


def _build_owners_table(tablename: str) -> Table:
    name = owners_table_name(tablename)
    existing = Base.metadata.tables.get(name)
    if existing is not None:
        return existing
    return Table(
        name,
        Base.metadata,
        Column(
            "entity_id",
            UUIDString(),
            ForeignKey(f"{tablename}.id"),
            primary_key=True,
        ),
        Column(
            "user_id",
            UUIDString(),
            ForeignKey("users.id"),
            primary_key=True,
        ),
        Index(f"ix_{name}_user_id", "user_id"),
    )


class Owned:
    """
    Capability mixin for entities with ownership edges to users.

    Contract:
        Mixing ``Owned`` into a mapped class declares its edge table and an
        ``owning_users`` relationship through it.  Writes go through
        OwnershipService.add_owners so that user existence is validated.
    """

    @declared_attr
    def owning_users(cls) -> Mapped[list["User"]]:
        return relationship(
            "User",
            secondary=_build_owners_table(cls.__tablename__),
            lazy="selectin",
            order_by="User.username",
        )


def owners_table_for(model: type) -> Table:
    """Return the edge table of an ``Owned`` model class."""
    if not issubclass(model, Owned):
        raise TypeError(f"{model.__name__} does not carry ownership edges")
    return Base.metadata.tables[owners_table_name(model.__tablename__)]
