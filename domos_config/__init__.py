"""
domos_config -- single public entrypoint for Domos configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``: deployment settings and the workflow graphs
    to seed, parsed from YAML into frozen dataclasses.

Architecture position:
    Configuration -- sits above ``domos_kernel``.  The kernel MUST NEVER
    import from ``domos_config``; ``domos_config.bridges`` translates the
    configuration into kernel inputs.

Failure modes:
    - ``ConfigurationError`` for a missing directory or file, malformed YAML,
      unknown settings, or an invalid workflow graph.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``DOMOS_CONFIG_TRACE`` log entry with the configuration checksum, the
    remittance key scheme and the graph codenames.
"""

from __future__ import annotations

import logging
from pathlib import Path

from domos_config.loader import compute_checksum, load_settings, load_workflow_directory
from domos_config.schema import ConfigurationError, DomosConfiguration, DomosSettings

_logger = logging.getLogger("domos_kernel.config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "defaults"

SETTINGS_FILE = "settings.yaml"
WORKFLOWS_DIR = "workflows"


def get_active_config(config_dir: Path | None = None) -> DomosConfiguration:
    """
    Assemble settings and workflow graphs from ``config_dir``.

    Layout::

        <config_dir>/settings.yaml
        <config_dir>/workflows/*.yaml      (optional)

    Defaults to the configuration shipped with the package.

    Raises:
        ConfigurationError: If the directory or any file is invalid.
    """
    root = Path(config_dir) if config_dir is not None else _DEFAULT_CONFIG_DIR
    if not root.is_dir():
        raise ConfigurationError("configuration directory not found", source=str(root))

    settings_path = root / SETTINGS_FILE
    settings = load_settings(settings_path)

    workflows_dir = root / WORKFLOWS_DIR
    if workflows_dir.is_dir():
        graphs, permissions = load_workflow_directory(workflows_dir)
        graph_files = tuple(str(p) for p in sorted(workflows_dir.glob("*.yaml")))
    else:
        graphs, permissions, graph_files = (), (), ()

    config = DomosConfiguration(
        settings=settings,
        permissions=permissions,
        workflow_graphs=graphs,
        checksum=compute_checksum(settings, graphs, permissions),
        source_files=(str(settings_path),) + graph_files,
    )

    _logger.info(
        "DOMOS_CONFIG_TRACE",
        extra={
            "trace_type": "DOMOS_CONFIG_TRACE",
            "config_dir": str(root),
            "checksum": config.checksum,
            "remittance_key_scheme": settings.remittance_key_scheme.value,
            "workflow_graphs": [g.codename for g in graphs],
            "permission_count": len(permissions),
        },
    )
    return config


__all__ = [
    "ConfigurationError",
    "DomosConfiguration",
    "DomosSettings",
    "get_active_config",
]
