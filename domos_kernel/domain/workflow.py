"""
Workflow graph definitions (``domos_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects describing a workflow graph: its state groups, states,
and the named paths between states.  ``WorkflowService.install_graph``
persists a validated definition; ``domos_config`` builds definitions from
YAML.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/``, or outer layers.

Invariants enforced
-------------------
* State codenames are unique within their group, group codenames within
  the graph, path codenames within the graph.
* Every path references states that exist in the graph.
* No path leaves a terminal state.
"""

from __future__ import annotations

from dataclasses import dataclass

from domos_kernel.exceptions import ValidationError


@dataclass(frozen=True)
class StateRef:
    """Reference to a state by ``group`` and ``state`` codename.

    Written ``"group.state"`` in configuration.
    """
    group: str
    state: str

    @classmethod
    def parse(cls, text: str) -> StateRef:
        group, sep, state = text.partition(".")
        if not sep or not group or not state:
            raise ValidationError(
                f"State reference must be 'group.state', got {text!r}",
                field="state",
            )
        return cls(group=group, state=state)

    def __str__(self) -> str:
        return f"{self.group}.{self.state}"


@dataclass(frozen=True)
class StateDef:
    codename: str
    name: str
    is_terminal: bool = False


@dataclass(frozen=True)
class StateGroupDef:
    codename: str
    name: str
    states: tuple[StateDef, ...]


@dataclass(frozen=True)
class StatePathDef:
    """A directed, named edge between two states.

    ``required_permission`` is a permission codename, or None when any
    disposition over the entity's segregation (or ownership) suffices.
    """
    codename: str
    previous_state: StateRef
    next_state: StateRef
    required_permission: str | None = None


@dataclass(frozen=True)
class WorkflowGraphDef:
    """A complete graph definition.

    Contract: frozen; call ``validate()`` before persisting.
    """
    codename: str
    name: str
    groups: tuple[StateGroupDef, ...]
    paths: tuple[StatePathDef, ...]

    def state(self, ref: StateRef) -> StateDef | None:
        for group in self.groups:
            if group.codename != ref.group:
                continue
            for state in group.states:
                if state.codename == ref.state:
                    return state
        return None

    def validate(self) -> None:
        """
        Check the structural invariants of the graph.

        Raises:
            ValidationError: On the first violation found.
        """
        group_codes = [g.codename for g in self.groups]
        _require_unique(group_codes, f"state group in graph '{self.codename}'")
        for group in self.groups:
            _require_unique(
                [s.codename for s in group.states],
                f"state in group '{group.codename}'",
            )

        _require_unique([p.codename for p in self.paths], f"path in graph '{self.codename}'")
        for path in self.paths:
            source = self.state(path.previous_state)
            if source is None:
                raise ValidationError(
                    f"Path '{path.codename}' starts at unknown state '{path.previous_state}'",
                    field="previous_state",
                )
            if self.state(path.next_state) is None:
                raise ValidationError(
                    f"Path '{path.codename}' ends at unknown state '{path.next_state}'",
                    field="next_state",
                )
            if source.is_terminal:
                raise ValidationError(
                    f"Path '{path.codename}' leaves terminal state '{path.previous_state}'",
                    field="previous_state",
                )


def _require_unique(codes: list[str], what: str) -> None:
    seen: set[str] = set()
    for code in codes:
        if code in seen:
            raise ValidationError(f"Duplicate {what}: '{code}'", field="codename")
        seen.add(code)
