"""
Module: domos_kernel.selectors.workflow_selector
Responsibility: Read-only workflow queries -- an entity's transition history
    and the paths currently open to it.
Architecture position: Kernel > Selectors.  May import from models/ and
    selectors/.  MUST NOT import from services/.

Invariants enforced:
    - history() is ordered by the per-entity sequence, so replaying it
      from the first transition's previous state reproduces the entity's
      current state.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from domos_kernel.exceptions import EntityNotFoundError
from domos_kernel.models.workflow import (
    StatefulEntity,
    StatePath,
    StateTransition,
    WorkflowGraph,
)
from domos_kernel.selectors.base import BaseSelector
from domos_kernel.selectors.ownership_selector import OwnershipSelector


@dataclass(frozen=True)
class TransitionRecord:
    """One executed path, with states as ``group.state`` codenames."""

    transition_id: UUID
    sequence: int
    path_codename: str
    previous_state: str
    next_state: str
    request_id: str | None
    actor_ids: frozenset[UUID]
    created_at: datetime


@dataclass(frozen=True)
class PathOption:
    codename: str
    next_state: str
    required_permission: str | None


class WorkflowSelector(BaseSelector[StateTransition]):

    def graph_by_codename(self, codename: str) -> WorkflowGraph | None:
        return self.session.execute(
            select(WorkflowGraph).where(WorkflowGraph.codename == codename)
        ).scalar_one_or_none()

    def entity(self, entity_id: UUID) -> StatefulEntity:
        entity = self.session.get(StatefulEntity, entity_id)
        if entity is None:
            raise EntityNotFoundError("StatefulEntity", str(entity_id))
        return entity

    def entity_by_reference(self, entity_type: str, reference: str) -> StatefulEntity | None:
        return self.session.execute(
            select(StatefulEntity).where(
                StatefulEntity.entity_type == entity_type,
                StatefulEntity.reference == reference,
            )
        ).scalar_one_or_none()

    def history(self, entity_id: UUID) -> list[TransitionRecord]:
        """Transitions of an entity, oldest first."""
        self.entity(entity_id)
        owners = OwnershipSelector(self.session)
        transitions = self.session.execute(
            select(StateTransition)
            .where(StateTransition.stateful_entity_id == entity_id)
            .order_by(StateTransition.sequence)
        ).scalars()
        return [
            TransitionRecord(
                transition_id=t.id,
                sequence=t.sequence,
                path_codename=t.path.codename,
                previous_state=t.previous_state.qualified_codename,
                next_state=t.next_state.qualified_codename,
                request_id=t.request_id,
                actor_ids=owners.owner_ids(t),
                created_at=t.created_at,
            )
            for t in transitions
        ]

    def available_paths(self, entity_id: UUID) -> list[PathOption]:
        """
        Paths of the entity's graph that leave its current state.

        Authorization is not evaluated here; AccessResolver answers whether
        a given set of users may take a path.
        """
        entity = self.entity(entity_id)
        paths = self.session.execute(
            select(StatePath)
            .where(
                StatePath.graph_id == entity.graph_id,
                StatePath.previous_state_id == entity.current_state_id,
            )
            .order_by(StatePath.codename)
        ).scalars()
        return [
            PathOption(
                codename=p.codename,
                next_state=p.next_state.qualified_codename,
                required_permission=(
                    p.required_permission.codename if p.required_permission is not None else None
                ),
            )
            for p in paths
        ]
