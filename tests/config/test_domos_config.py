"""
Configuration: YAML loading, validation, checksums and the kernel bridge.

Covers:
- The shipped defaults load and describe both seed graphs
- Malformed files and invalid values raise ConfigurationError with a source
- The checksum is stable for identical input and moves with any change
- install_workflow_graphs seeds permissions and graphs idempotently
- Every load emits DOMOS_CONFIG_TRACE
"""

import textwrap

import pytest

from domos_config import get_active_config
from domos_config.bridges import build_core, core_settings, install_workflow_graphs
from domos_config.loader import load_settings, parse_settings, parse_workflow_graph
from domos_config.schema import ConfigurationError, DomosSettings
from domos_kernel.domain.ledger import RemittanceKeyScheme
from domos_kernel.selectors.workflow_selector import WorkflowSelector

GRAPH_YAML = """
codename: refund
name: Refund
permissions:
  - codename: refund.approve
groups:
  - codename: refund
    states:
      - {codename: open}
      - {codename: done, terminal: true}
paths:
  - {codename: refund.approve, from: refund.open, to: refund.done, permission: refund.approve}
"""


def _write_config(root, settings="remittance_key_scheme: line\n", graphs=None):
    (root / "settings.yaml").write_text(settings)
    if graphs is not None:
        workflows = root / "workflows"
        workflows.mkdir()
        for name, body in graphs.items():
            (workflows / name).write_text(textwrap.dedent(body))
    return root


class TestDefaults:

    def test_shipped_configuration(self):
        config = get_active_config()
        assert config.settings == DomosSettings()
        assert [g.codename for g in config.workflow_graphs] == ["expense_report", "payout"]
        assert {p.codename for p in config.permissions} == {"expense_report.approve", "payout.release"}
        assert len(config.checksum) == 64

    def test_core_settings_bridge(self):
        assert core_settings(get_active_config()).remittance_key_scheme == RemittanceKeyScheme.CREDIT_SYSTEM

    def test_trace_is_logged(self, captured_logs):
        config = get_active_config()
        (record,) = [r for r in captured_logs() if r["message"] == "DOMOS_CONFIG_TRACE"]
        assert record["checksum"] == config.checksum
        assert record["workflow_graphs"] == ["expense_report", "payout"]


class TestSettings:

    def test_absent_keys_take_defaults(self):
        settings = parse_settings({"log_level": "debug"})
        assert settings.log_level == "DEBUG"
        assert settings.pool_size == DomosSettings().pool_size

    @pytest.mark.parametrize("data,message", [
        ({"remittance_key_scheme": "per_account"}, "remittance_key_scheme"),
        ({"log_level": "LOUD"}, "log_level"),
        ({"pool_size": -1}, "pool_size"),
        ({"max_overflow": True}, "max_overflow"),
        ({"databse_url": "sqlite://"}, "unknown settings"),
    ])
    def test_invalid_values(self, data, message):
        with pytest.raises(ConfigurationError, match=message):
            parse_settings(data)

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("database_url: [unclosed\n")
        with pytest.raises(ConfigurationError, match="invalid YAML") as exc_info:
            load_settings(path)
        assert exc_info.value.source == str(path)

    def test_top_level_must_be_a_mapping(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            load_settings(path)

    def test_missing_directory(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            get_active_config(tmp_path / "absent")


class TestWorkflowFiles:

    def test_directory_config(self, tmp_path):
        config = get_active_config(_write_config(tmp_path, graphs={"refund.yaml": GRAPH_YAML}))
        assert config.settings.remittance_key_scheme == RemittanceKeyScheme.LINE
        (graph,) = config.workflow_graphs
        assert graph.name == "Refund"
        assert graph.groups[0].name == "refund"
        assert graph.paths[0].required_permission == "refund.approve"
        assert [p.name for p in config.permissions] == ["refund.approve"]

    def test_settings_only(self, tmp_path):
        config = get_active_config(_write_config(tmp_path))
        assert config.workflow_graphs == ()
        assert config.source_files == (str(tmp_path / "settings.yaml"),)

    def test_duplicate_graph_codenames(self, tmp_path):
        root = _write_config(tmp_path, graphs={"a.yaml": GRAPH_YAML, "b.yaml": GRAPH_YAML})
        with pytest.raises(ConfigurationError, match="duplicate workflow graph"):
            get_active_config(root)

    def test_path_to_unknown_state(self):
        data = {
            "codename": "g",
            "groups": [{"codename": "a", "states": [{"codename": "x"}]}],
            "paths": [{"codename": "go", "from": "a.x", "to": "a.y"}],
        }
        with pytest.raises(ConfigurationError):
            parse_workflow_graph(data)

    def test_unqualified_state(self):
        data = {
            "codename": "g",
            "groups": [{"codename": "a", "states": [{"codename": "x"}]}],
            "paths": [{"codename": "go", "from": "x", "to": "a.x"}],
        }
        with pytest.raises(ConfigurationError):
            parse_workflow_graph(data)

    def test_missing_key(self):
        with pytest.raises(ConfigurationError, match="groups"):
            parse_workflow_graph({"codename": "g"})


class TestChecksum:

    def test_stable_for_identical_input(self, tmp_path):
        (tmp_path / "one").mkdir()
        (tmp_path / "two").mkdir()
        first = _write_config(tmp_path / "one", graphs={"refund.yaml": GRAPH_YAML})
        second = _write_config(tmp_path / "two", graphs={"refund.yaml": GRAPH_YAML})
        assert get_active_config(first).checksum == get_active_config(second).checksum

    def test_changes_with_settings(self, tmp_path):
        (tmp_path / "one").mkdir()
        (tmp_path / "two").mkdir()
        first = _write_config(tmp_path / "one")
        second = _write_config(tmp_path / "two", settings="remittance_key_scheme: credit_system\n")
        assert get_active_config(first).checksum != get_active_config(second).checksum


class TestBridge:

    def test_install_is_idempotent(self, core):
        config = get_active_config()
        first = install_workflow_graphs(core, config)
        second = install_workflow_graphs(core, config)
        assert first == second
        assert set(first) == {"expense_report", "payout"}

        graph = core.read(lambda s: WorkflowSelector(s).graph_by_codename("payout"))
        assert graph.id == first["payout"]

    def test_seeded_graph_is_usable(self, core):
        config = get_active_config()
        graphs = install_workflow_graphs(core, config)
        user = core.create_user("ops@example.com", "ops")
        segregation = core.create_segregation("acme", "Acme Corp")
        payout = core.create_stateful_entity(
            graphs["payout"], "payout", "P-1", "payout.held", segregation.id, owners=[user.id]
        )
        outcome = core.execute_transition(payout.id, "payout.void", [user.id])
        assert outcome.transition.sequence == 1

    def test_build_core_with_factory(self, session_factory, clock):
        config = get_active_config()
        core = build_core(config, session_factory=session_factory, clock=clock)
        assert core.settings.remittance_key_scheme == RemittanceKeyScheme.CREDIT_SYSTEM
        assert core.clock is clock
