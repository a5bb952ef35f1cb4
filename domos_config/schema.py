"""
Configuration schema (``domos_config.schema``).

Frozen dataclasses for the parsed configuration.  Workflow graphs are kept
as kernel ``WorkflowGraphDef`` values so that the kernel validates them with
the same rules it applies on install.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from domos_kernel.domain.ledger import RemittanceKeyScheme
from domos_kernel.domain.workflow import WorkflowGraphDef
from domos_kernel.exceptions import DomosError

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigurationError(DomosError):
    """A configuration file is missing, malformed, or violates a rule."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, message: str, source: str | None = None):
        self.source = source
        super().__init__(f"{source}: {message}" if source else message)


@dataclass(frozen=True)
class DomosSettings:
    """Deployment settings: database connection, remittance keys, logging."""

    database_url: str = "sqlite:///domos.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    remittance_key_scheme: RemittanceKeyScheme = RemittanceKeyScheme.CREDIT_SYSTEM
    log_level: str = "INFO"


@dataclass(frozen=True)
class PermissionDef:
    codename: str
    name: str


@dataclass(frozen=True)
class DomosConfiguration:
    """Everything ``get_active_config()`` returns."""

    settings: DomosSettings
    permissions: tuple[PermissionDef, ...] = ()
    workflow_graphs: tuple[WorkflowGraphDef, ...] = ()
    checksum: str = ""
    source_files: tuple[str, ...] = field(default_factory=tuple)
