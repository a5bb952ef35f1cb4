"""Database layer - engine, base classes, types, ownership and immutability."""

from domos_kernel.db.base import UUID, Base, TrackedBase, UTCDateTime, UUIDString
from domos_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session_factory,
    init_engine_from_url,
    run_in_transaction,
    session_scope,
)
from domos_kernel.db.ownership import Owned, owners_table_for

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session_factory",
    "session_scope",
    "run_in_transaction",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UTCDateTime",
    "UUID",
    "Owned",
    "owners_table_for",
]
