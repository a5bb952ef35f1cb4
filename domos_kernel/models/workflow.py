"""
Module: domos_kernel.models.workflow
Responsibility: ORM persistence for workflow graphs (graphs, state groups,
    states, paths), the stateful entities that move through them, and the
    append-only StateTransition history.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - StatePath.codename is globally unique; (graph_id, codename) is unique
      for groups and (group_id, codename) for states.
    - StatefulEntity.version is an optimistic version counter
      (version_id_col): a stale writer fails at flush with StaleDataError.
    - (stateful_entity_id, sequence) is unique on StateTransition, so two
      writers cannot both record the n-th transition of an entity.
    - StateTransition rows are immutable after insert (db/immutability.py).

Failure modes:
    - StaleDataError on a lost version race; services map it to ConflictError.
"""

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import BigInteger, Boolean, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from domos_kernel.db.base import Base, TrackedBase, UTCDateTime, UUIDString
from domos_kernel.db.ownership import Owned

if TYPE_CHECKING:
    from domos_kernel.models.identity import Permission, Segregation


class WorkflowGraph(Base):
    """A named state graph, e.g. 'expense_approval'."""

    __tablename__ = "workflow_graphs"

    codename: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    groups: Mapped[list["StateGroup"]] = relationship(
        back_populates="graph",
        lazy="selectin",
        order_by="StateGroup.codename",
    )
    paths: Mapped[list["StatePath"]] = relationship(
        back_populates="graph",
        order_by="StatePath.codename",
    )

    def __repr__(self) -> str:
        return f"<WorkflowGraph {self.codename}>"


class StateGroup(Base):
    __tablename__ = "state_groups"

    __table_args__ = (UniqueConstraint("graph_id", "codename"),)

    graph_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_graphs.id"),
        nullable=False,
    )
    codename: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    graph: Mapped["WorkflowGraph"] = relationship(back_populates="groups")
    states: Mapped[list["State"]] = relationship(
        back_populates="group",
        lazy="selectin",
        order_by="State.codename",
    )


class State(Base):
    """
    A node of a workflow graph.

    Codenames are unique within their group only; ``qualified_codename``
    (``group.state``) is unique within the graph.
    """

    __tablename__ = "states"

    __table_args__ = (UniqueConstraint("group_id", "codename"),)

    group_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("state_groups.id"),
        nullable=False,
    )
    codename: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_terminal: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    group: Mapped["StateGroup"] = relationship(back_populates="states", lazy="joined")

    @property
    def graph_id(self) -> UUID:
        return self.group.graph_id

    @property
    def qualified_codename(self) -> str:
        return f"{self.group.codename}.{self.codename}"

    def __repr__(self) -> str:
        return f"<State {self.codename}>"


class StatePath(Base):
    """
    A directed, named edge between two states of the same graph.

    Contract:
        required_permission_id is optional.  When set, an acting user must
        hold that permission through a role or a disposition over the
        entity's segregation.
    """

    __tablename__ = "state_paths"

    codename: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    graph_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_graphs.id"),
        nullable=False,
        index=True,
    )
    previous_state_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("states.id"),
        nullable=False,
        index=True,
    )
    next_state_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("states.id"),
        nullable=False,
    )
    required_permission_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("permissions.id"),
        nullable=True,
    )

    graph: Mapped["WorkflowGraph"] = relationship(back_populates="paths")
    previous_state: Mapped["State"] = relationship(
        foreign_keys=[previous_state_id],
        lazy="joined",
    )
    next_state: Mapped["State"] = relationship(
        foreign_keys=[next_state_id],
        lazy="joined",
    )
    required_permission: Mapped["Permission | None"] = relationship(lazy="selectin")

    def __repr__(self) -> str:
        return f"<StatePath {self.codename}>"


class StatefulEntity(Owned, TrackedBase):
    """
    A domain object whose current state is moved along a workflow graph.

    ``(entity_type, reference)`` identifies the business object (for example
    ``("expense_report", "ER-1042")``).
    """

    __tablename__ = "stateful_entities"

    __table_args__ = (UniqueConstraint("entity_type", "reference"),)

    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    reference: Mapped[str] = mapped_column(String(255), nullable=False)
    graph_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_graphs.id"),
        nullable=False,
    )
    current_state_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("states.id"),
        nullable=False,
        index=True,
    )
    segregation_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("segregations.id"),
        nullable=False,
        index=True,
    )
    version: Mapped[int] = mapped_column(BigInteger, nullable=False, default=1)
    last_transition_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    graph: Mapped["WorkflowGraph"] = relationship()
    current_state: Mapped["State"] = relationship(lazy="joined")
    segregation: Mapped["Segregation"] = relationship()

    __mapper_args__ = {"version_id_col": version}


class StateTransition(Owned, TrackedBase):
    """
    Immutable record of one executed path.

    previous_state_id / next_state_id are copied from the path at execution
    time.  ``sequence`` numbers an entity's transitions from 1.  The owning
    users are the actors who executed it.
    """

    __tablename__ = "state_transitions"

    __table_args__ = (UniqueConstraint("stateful_entity_id", "sequence"),)

    path_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("state_paths.id"),
        nullable=False,
        index=True,
    )
    stateful_entity_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("stateful_entities.id"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(BigInteger, nullable=False)
    previous_state_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("states.id"),
        nullable=False,
    )
    next_state_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("states.id"),
        nullable=False,
    )
    request_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)

    path: Mapped["StatePath"] = relationship(lazy="joined")
    stateful_entity: Mapped["StatefulEntity"] = relationship()
    previous_state: Mapped["State"] = relationship(foreign_keys=[previous_state_id])
    next_state: Mapped["State"] = relationship(foreign_keys=[next_state_id])

    def __repr__(self) -> str:
        return f"<StateTransition {self.stateful_entity_id} #{self.sequence}>"
