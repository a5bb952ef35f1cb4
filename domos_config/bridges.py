"""
Config -> Kernel Bridges.

Functions that turn a DomosConfiguration into kernel inputs.  They live in
domos_config (the producer) because the kernel must NEVER import
domos_config.

Usage:
    from domos_config import get_active_config
    from domos_config.bridges import build_core, install_workflow_graphs

    config = get_active_config()
    core = build_core(config)
    install_workflow_graphs(core, config)
"""

from __future__ import annotations

import logging
from typing import Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from domos_config.schema import DomosConfiguration
from domos_kernel.db.engine import get_session_factory, init_engine_from_url
from domos_kernel.domain.clock import Clock
from domos_kernel.logging_config import configure_logging
from domos_kernel.models.identity import Permission
from domos_kernel.selectors.workflow_selector import WorkflowSelector
from domos_kernel.services.core import CoreSettings, DomosCore

_logger = logging.getLogger("domos_kernel.config")


def core_settings(config: DomosConfiguration) -> CoreSettings:
    return CoreSettings(remittance_key_scheme=config.settings.remittance_key_scheme)


def init_engine(config: DomosConfiguration):
    """Initialize the kernel engine from the configured database settings."""
    settings = config.settings
    return init_engine_from_url(
        settings.database_url,
        echo=settings.echo,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
    )


def build_core(
    config: DomosConfiguration,
    session_factory: Callable[[], Session] | None = None,
    clock: Clock | None = None,
) -> DomosCore:
    """
    Build a DomosCore for ``config``.

    Without a session factory, the engine is initialized from the configured
    database URL and logging is configured at the configured level.
    """
    if session_factory is None:
        configure_logging(level=logging.getLevelName(config.settings.log_level))
        init_engine(config)
        session_factory = get_session_factory()
    return DomosCore(session_factory, core_settings(config), clock)


def install_workflow_graphs(core: DomosCore, config: DomosConfiguration) -> dict[str, UUID]:
    """
    Seed the configured permissions and workflow graphs.

    Idempotent: permissions and graphs already present (by codename) are
    left untouched.  Returns graph codename -> graph id for every configured
    graph.
    """
    existing_permissions = core.read(
        lambda s: set(s.execute(select(Permission.codename)).scalars())
    )
    for permission in config.permissions:
        if permission.codename not in existing_permissions:
            core.create_permission(permission.codename, permission.name)

    installed: dict[str, UUID] = {}
    for graph in config.workflow_graphs:
        existing = core.read(lambda s: WorkflowSelector(s).graph_by_codename(graph.codename))
        if existing is not None:
            installed[graph.codename] = existing.id
            continue
        installed[graph.codename] = core.install_graph(graph).id
        _logger.info("workflow_graph_seeded", extra={"graph": graph.codename})
    return installed
