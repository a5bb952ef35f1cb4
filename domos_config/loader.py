"""
Configuration Loader (``domos_config.loader``).

Responsibility
--------------
Loads YAML files and parses them into the frozen dataclasses of
``domos_config.schema``.  Runtime callers go through
``domos_config.get_active_config()``.

Invariants enforced
-------------------
* Every parse error becomes ``ConfigurationError`` naming the offending
  file; required fields never get silent defaults.
* Workflow graphs are validated with ``WorkflowGraphDef.validate()`` at load
  time, so an invalid graph never reaches the database.
* ``compute_checksum`` is deterministic over the parsed content.

Failure modes
-------------
* Missing file or directory, malformed YAML, missing keys, unknown
  remittance key scheme or log level, invalid graph  -> ``ConfigurationError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict
from pathlib import Path
from typing import Any

import yaml

from domos_config.schema import (
    LOG_LEVELS,
    ConfigurationError,
    DomosSettings,
    PermissionDef,
)
from domos_kernel.domain.ledger import RemittanceKeyScheme
from domos_kernel.domain.workflow import (
    StateDef,
    StateGroupDef,
    StatePathDef,
    StateRef,
    WorkflowGraphDef,
)
from domos_kernel.exceptions import ValidationError


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        ConfigurationError: if the file is missing, unreadable, not valid
            YAML, or not a mapping at the top level.
    """
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as exc:
        raise ConfigurationError("file not found", source=str(path)) from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"invalid YAML: {exc}", source=str(path)) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError("top level must be a mapping", source=str(path))
    return data


def _required(data: dict[str, Any], key: str, source: str) -> Any:
    if key not in data or data[key] is None:
        raise ConfigurationError(f"missing required key '{key}'", source=source)
    return data[key]


def parse_settings(data: dict[str, Any], source: str = "settings") -> DomosSettings:
    """Parse DomosSettings; absent keys take the dataclass defaults."""
    defaults = DomosSettings()
    unknown = set(data) - set(asdict(defaults))
    if unknown:
        raise ConfigurationError(f"unknown settings: {', '.join(sorted(unknown))}", source=source)

    try:
        scheme = RemittanceKeyScheme(data.get("remittance_key_scheme", defaults.remittance_key_scheme))
    except ValueError:
        raise ConfigurationError(
            f"unknown remittance_key_scheme '{data['remittance_key_scheme']}'",
            source=source,
        ) from None

    log_level = str(data.get("log_level", defaults.log_level)).upper()
    if log_level not in LOG_LEVELS:
        raise ConfigurationError(f"unknown log_level '{log_level}'", source=source)

    for key in ("pool_size", "max_overflow"):
        value = data.get(key, getattr(defaults, key))
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            raise ConfigurationError(f"{key} must be a non-negative integer", source=source)

    return DomosSettings(
        database_url=str(data.get("database_url", defaults.database_url)),
        echo=bool(data.get("echo", defaults.echo)),
        pool_size=data.get("pool_size", defaults.pool_size),
        max_overflow=data.get("max_overflow", defaults.max_overflow),
        remittance_key_scheme=scheme,
        log_level=log_level,
    )


def load_settings(path: Path) -> DomosSettings:
    path = Path(path)
    return parse_settings(load_yaml_file(path), source=str(path))


def parse_permissions(data: list[dict[str, Any]], source: str) -> tuple[PermissionDef, ...]:
    return tuple(
        PermissionDef(
            codename=_required(item, "codename", source),
            name=item.get("name") or item["codename"],
        )
        for item in data
    )


def _state_ref(value: Any, source: str) -> StateRef:
    try:
        return StateRef.parse(str(value))
    except ValidationError as exc:
        raise ConfigurationError(str(exc), source=source) from exc


def parse_workflow_graph(data: dict[str, Any], source: str = "workflow") -> WorkflowGraphDef:
    """
    Parse one graph.  Paths name their states as ``group.state``::

        codename: expense_report
        name: Expense report approval
        groups:
          - codename: review
            name: Review
            states:
              - {codename: draft, name: Draft}
        paths:
          - {codename: expense_report.submit, from: review.draft, to: review.submitted}
    """
    groups = tuple(
        StateGroupDef(
            codename=_required(group, "codename", source),
            name=group.get("name") or group["codename"],
            states=tuple(
                StateDef(
                    codename=_required(state, "codename", source),
                    name=state.get("name") or state["codename"],
                    is_terminal=bool(state.get("terminal", False)),
                )
                for state in _required(group, "states", source)
            ),
        )
        for group in _required(data, "groups", source)
    )
    paths = tuple(
        StatePathDef(
            codename=_required(path, "codename", source),
            previous_state=_state_ref(_required(path, "from", source), source),
            next_state=_state_ref(_required(path, "to", source), source),
            required_permission=path.get("permission"),
        )
        for path in data.get("paths") or ()
    )
    graph = WorkflowGraphDef(
        codename=_required(data, "codename", source),
        name=data.get("name") or data["codename"],
        groups=groups,
        paths=paths,
    )
    try:
        graph.validate()
    except ValidationError as exc:
        raise ConfigurationError(str(exc), source=source) from exc
    return graph


def load_workflow_graphs(directory: Path) -> tuple[WorkflowGraphDef, ...]:
    """Load every ``*.yaml`` graph in ``directory``, in file-name order."""
    graphs, _ = load_workflow_directory(directory)
    return graphs


def load_workflow_directory(
    directory: Path,
) -> tuple[tuple[WorkflowGraphDef, ...], tuple[PermissionDef, ...]]:
    """
    Load graphs plus the permissions they declare.

    A graph file may carry a top-level ``permissions`` list naming the
    permissions its paths require.
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise ConfigurationError("workflow directory not found", source=str(directory))

    graphs: list[WorkflowGraphDef] = []
    permissions: dict[str, PermissionDef] = {}
    for path in sorted(directory.glob("*.yaml")):
        data = load_yaml_file(path)
        for permission in parse_permissions(data.pop("permissions", None) or [], str(path)):
            permissions.setdefault(permission.codename, permission)
        graphs.append(parse_workflow_graph(data, source=str(path)))

    codenames = [g.codename for g in graphs]
    duplicates = sorted({c for c in codenames if codenames.count(c) > 1})
    if duplicates:
        raise ConfigurationError(
            f"duplicate workflow graph codenames: {', '.join(duplicates)}",
            source=str(directory),
        )
    return tuple(graphs), tuple(permissions.values())


def compute_checksum(settings: DomosSettings, graphs, permissions) -> str:
    """SHA-256 over the canonical JSON of the parsed configuration."""
    payload = {
        "settings": {**asdict(settings), "remittance_key_scheme": settings.remittance_key_scheme.value},
        "permissions": [asdict(p) for p in permissions],
        "graphs": [
            {
                "codename": g.codename,
                "name": g.name,
                "groups": [asdict(group) for group in g.groups],
                "paths": [
                    {
                        "codename": p.codename,
                        "from": str(p.previous_state),
                        "to": str(p.next_state),
                        "permission": p.required_permission,
                    }
                    for p in g.paths
                ],
            }
            for g in graphs
        ],
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
