"""Workflow graph definitions: state references and structural validation."""

import pytest

from domos_kernel.domain.workflow import (
    StateDef,
    StateGroupDef,
    StatePathDef,
    StateRef,
    WorkflowGraphDef,
)
from domos_kernel.exceptions import ValidationError
from tests.conftest import expense_graph_def


def _graph(groups, paths=()):
    return WorkflowGraphDef(codename="g", name="G", groups=tuple(groups), paths=tuple(paths))


class TestStateRef:

    def test_parse_round_trips_through_str(self):
        ref = StateRef.parse("review.draft")
        assert ref == StateRef("review", "draft")
        assert str(ref) == "review.draft"

    @pytest.mark.parametrize("text", ["draft", ".draft", "review.", ""])
    def test_parse_rejects_unqualified(self, text):
        with pytest.raises(ValidationError):
            StateRef.parse(text)


class TestGraphValidation:

    def test_expense_graph_is_valid(self):
        expense_graph_def().validate()

    def test_lookup_by_ref(self):
        graph = expense_graph_def()
        assert graph.state(StateRef("outcome", "approved")).is_terminal
        assert graph.state(StateRef("outcome", "draft")) is None

    def test_state_codenames_may_repeat_across_groups(self):
        _graph([
            StateGroupDef("a", "A", (StateDef("open", "Open"),)),
            StateGroupDef("b", "B", (StateDef("open", "Open"),)),
        ]).validate()

    def test_duplicate_state_in_group(self):
        graph = _graph([StateGroupDef("a", "A", (StateDef("x", "X"), StateDef("x", "X again")))])
        with pytest.raises(ValidationError, match="Duplicate state"):
            graph.validate()

    def test_duplicate_group(self):
        graph = _graph([
            StateGroupDef("a", "A", (StateDef("x", "X"),)),
            StateGroupDef("a", "A2", (StateDef("y", "Y"),)),
        ])
        with pytest.raises(ValidationError, match="Duplicate state group"):
            graph.validate()

    def test_path_to_unknown_state(self):
        graph = _graph(
            [StateGroupDef("a", "A", (StateDef("x", "X"),))],
            [StatePathDef("go", StateRef("a", "x"), StateRef("a", "missing"))],
        )
        with pytest.raises(ValidationError):
            graph.validate()

    def test_path_out_of_terminal_state(self):
        graph = _graph(
            [StateGroupDef("a", "A", (StateDef("x", "X", is_terminal=True), StateDef("y", "Y")))],
            [StatePathDef("reopen", StateRef("a", "x"), StateRef("a", "y"))],
        )
        with pytest.raises(ValidationError, match="terminal"):
            graph.validate()

    def test_duplicate_path_codename(self):
        graph = _graph(
            [StateGroupDef("a", "A", (StateDef("x", "X"), StateDef("y", "Y")))],
            [
                StatePathDef("go", StateRef("a", "x"), StateRef("a", "y")),
                StatePathDef("go", StateRef("a", "y"), StateRef("a", "x")),
            ],
        )
        with pytest.raises(ValidationError, match="Duplicate"):
            graph.validate()
