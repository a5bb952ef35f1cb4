"""
WorkflowService -- the workflow graph engine.

Responsibility:
    Installs workflow graphs, creates the stateful entities that move
    through them, and executes named paths on those entities, appending an
    immutable StateTransition for each move.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.

Invariants enforced:
    - A path is executed only from its previous_state.  The entity row is
      re-read under SELECT ... FOR UPDATE before the check, and the
      optimistic version column settles any writer that slipped past the
      lock (SQLite ignores FOR UPDATE).
    - Every acting user is authorized; one unauthorized actor fails the
      whole transition.
    - The StateTransition copies previous/next state from the path, so
      history never depends on later edits to the graph.

Failure modes:
    - InvalidTransitionError: unknown path for the entity's graph, or the
      entity is not in the path's previous state.
    - AuthorizationError: no acting users, an inactive actor, or an actor
      without the required permission / disposition / ownership.
    - ConflictError: a concurrent transition of the same entity won.
    - DuplicateEntityError: graph codename, path codename or
      (entity_type, reference) already taken.
"""

from typing import Iterable
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from domos_kernel.domain.clock import Clock
from domos_kernel.domain.workflow import StateRef, WorkflowGraphDef
from domos_kernel.exceptions import (
    AuthorizationError,
    ConflictError,
    DuplicateEntityError,
    EntityNotFoundError,
    InvalidTransitionError,
    ValidationError,
)
from domos_kernel.logging_config import LogContext, get_logger
from domos_kernel.models.identity import Permission, Segregation
from domos_kernel.models.workflow import (
    State,
    StatefulEntity,
    StateGroup,
    StatePath,
    StateTransition,
    WorkflowGraph,
)
from domos_kernel.selectors.access_resolver import AccessResolver
from domos_kernel.selectors.ownership_selector import OwnershipSelector
from domos_kernel.services.base import BaseService
from domos_kernel.services.ownership_service import OwnershipService

logger = get_logger("services.workflow")


class WorkflowService(BaseService[StateTransition]):
    """
    Contract:
        execute_transition() either flushes exactly one StateTransition and
        the entity's new current state, or raises and flushes nothing.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)
        self._ownership = OwnershipService(session, self.clock)
        self._owners = OwnershipSelector(session)
        self._access = AccessResolver(session)

    # -- graph installation ---------------------------------------------------

    def install_graph(self, definition: WorkflowGraphDef) -> WorkflowGraph:
        """
        Persist a validated graph definition.

        Raises:
            ValidationError: If the definition is structurally invalid.
            DuplicateEntityError: If the graph or a path codename exists.
            EntityNotFoundError: If a required permission does not exist.
        """
        definition.validate()

        existing = self.session.execute(
            select(WorkflowGraph.id).where(WorkflowGraph.codename == definition.codename)
        ).first()
        if existing is not None:
            raise DuplicateEntityError("WorkflowGraph", definition.codename)

        path_codes = [p.codename for p in definition.paths]
        taken = self.session.execute(
            select(StatePath.codename).where(StatePath.codename.in_(path_codes))
        ).scalars().first()
        if taken is not None:
            raise DuplicateEntityError("StatePath", taken)

        graph = WorkflowGraph(codename=definition.codename, name=definition.name)
        self.session.add(graph)

        states: dict[StateRef, State] = {}
        for group_def in definition.groups:
            group = StateGroup(graph=graph, codename=group_def.codename, name=group_def.name)
            self.session.add(group)
            for state_def in group_def.states:
                state = State(
                    group=group,
                    codename=state_def.codename,
                    name=state_def.name,
                    is_terminal=state_def.is_terminal,
                )
                self.session.add(state)
                states[StateRef(group_def.codename, state_def.codename)] = state

        for path_def in definition.paths:
            permission = None
            if path_def.required_permission is not None:
                permission = self.session.execute(
                    select(Permission).where(Permission.codename == path_def.required_permission)
                ).scalar_one_or_none()
                if permission is None:
                    raise EntityNotFoundError("Permission", path_def.required_permission)
            self.session.add(
                StatePath(
                    codename=path_def.codename,
                    graph=graph,
                    previous_state=states[path_def.previous_state],
                    next_state=states[path_def.next_state],
                    required_permission=permission,
                )
            )

        try:
            self.session.flush()
        except IntegrityError as exc:
            raise DuplicateEntityError("WorkflowGraph", definition.codename) from exc

        logger.info(
            "workflow_graph_installed",
            extra={
                "graph": definition.codename,
                "state_count": len(states),
                "path_count": len(definition.paths),
            },
        )
        return graph

    def find_state(self, graph_id: UUID, ref: StateRef | str) -> State | None:
        if isinstance(ref, str):
            ref = StateRef.parse(ref)
        stmt = (
            select(State)
            .join(StateGroup, State.group_id == StateGroup.id)
            .where(
                StateGroup.graph_id == graph_id,
                StateGroup.codename == ref.group,
                State.codename == ref.state,
            )
        )
        return self.session.execute(stmt).scalar_one_or_none()

    # -- stateful entities ----------------------------------------------------

    def create_stateful_entity(
        self,
        graph_id: UUID,
        entity_type: str,
        reference: str,
        initial_state: StateRef | str,
        segregation_id: UUID,
        owners: Iterable[UUID] = (),
    ) -> StatefulEntity:
        self._require(WorkflowGraph, graph_id)
        self._require(Segregation, segregation_id)
        state = self.find_state(graph_id, initial_state)
        if state is None:
            raise ValidationError(
                f"State '{initial_state}' is not part of graph {graph_id}",
                field="initial_state",
            )

        duplicate = self.session.execute(
            select(StatefulEntity.id).where(
                StatefulEntity.entity_type == entity_type,
                StatefulEntity.reference == reference,
            )
        ).first()
        if duplicate is not None:
            raise DuplicateEntityError("StatefulEntity", f"{entity_type}/{reference}")

        entity = StatefulEntity(
            entity_type=entity_type,
            reference=reference,
            graph_id=graph_id,
            current_state=state,
            segregation_id=segregation_id,
            created_at=self.clock.now(),
        )
        self._ownership.add_owners(entity, owners)
        self.session.add(entity)
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise DuplicateEntityError("StatefulEntity", f"{entity_type}/{reference}") from exc
        return entity

    # -- transitions ----------------------------------------------------------

    def execute_transition(
        self,
        entity_id: UUID,
        path_codename: str,
        acting_user_ids: Iterable[UUID],
        request_id: str | None = None,
    ) -> StateTransition:
        """
        Move an entity along ``path_codename``.

        Preconditions:
            - The path belongs to the entity's graph.
            - The entity's current state is the path's previous state.
            - Every acting user is authorized for the path.

        Postconditions:
            - current_state is the path's next state, version is bumped, and
              one StateTransition owned by all acting users is flushed.

        Raises:
            InvalidTransitionError, AuthorizationError, ConflictError.
        """
        actors = list(dict.fromkeys(acting_user_ids))
        entity = self._require(StatefulEntity, entity_id, for_update=True)

        with LogContext.bind(
            entity_id=str(entity_id),
            request_id=request_id,
            actor_id=",".join(str(a) for a in actors) or None,
        ):
            path = self.session.execute(
                select(StatePath).where(
                    StatePath.codename == path_codename,
                    StatePath.graph_id == entity.graph_id,
                )
            ).scalar_one_or_none()
            if path is None:
                raise InvalidTransitionError(
                    f"Path '{path_codename}' does not exist in the entity's graph",
                    path_codename=path_codename,
                )

            current = entity.current_state
            if path.previous_state_id != entity.current_state_id:
                logger.warning(
                    "transition_rejected",
                    extra={
                        "path": path_codename,
                        "current_state": current.qualified_codename,
                        "expected_state": path.previous_state.qualified_codename,
                    },
                )
                raise InvalidTransitionError(
                    f"Path '{path_codename}' starts at "
                    f"'{path.previous_state.qualified_codename}' but the entity is in "
                    f"'{current.qualified_codename}'",
                    path_codename=path_codename,
                    current_state=current.qualified_codename,
                )

            self._authorize(entity, path, actors)

            now = self.clock.now()
            last_sequence = self.session.execute(
                select(func.max(StateTransition.sequence)).where(
                    StateTransition.stateful_entity_id == entity.id
                )
            ).scalar()
            transition = StateTransition(
                path=path,
                stateful_entity_id=entity.id,
                sequence=(last_sequence or 0) + 1,
                previous_state_id=path.previous_state_id,
                next_state_id=path.next_state_id,
                request_id=request_id,
                created_at=now,
            )
            self._ownership.add_owners(transition, actors)
            self.session.add(transition)

            entity.current_state = path.next_state
            entity.last_transition_at = now

            try:
                self.session.flush()
            except StaleDataError as exc:
                raise ConflictError(
                    "StatefulEntity",
                    f"Entity {entity_id} was transitioned concurrently",
                ) from exc
            except IntegrityError as exc:
                raise ConflictError(
                    "StateTransition",
                    f"Transition #{transition.sequence} of entity {entity_id} already exists",
                ) from exc

            logger.info(
                "transition_executed",
                extra={
                    "path": path_codename,
                    "transition_id": str(transition.id),
                    "from_state": path.previous_state.qualified_codename,
                    "to_state": path.next_state.qualified_codename,
                    "actor_count": len(actors),
                },
            )
            return transition

    def _authorize(self, entity: StatefulEntity, path: StatePath, actors: list[UUID]) -> None:
        if not actors:
            raise AuthorizationError(None, "A transition requires at least one acting user")

        for user_id in actors:
            if not self._access.is_active(user_id):
                raise AuthorizationError(str(user_id), "User is unknown or inactive")

            if path.required_permission is not None:
                codename = path.required_permission.codename
                if codename not in self._access.permissions_for(user_id, entity.segregation_id):
                    raise AuthorizationError(
                        str(user_id),
                        f"Missing permission '{codename}' for path '{path.codename}'",
                    )
            elif not (
                self._access.has_disposition(user_id, entity.segregation_id)
                or self._owners.is_owner(entity, user_id)
            ):
                raise AuthorizationError(
                    str(user_id),
                    "User holds no disposition over the entity's segregation "
                    "and does not own the entity",
                )
