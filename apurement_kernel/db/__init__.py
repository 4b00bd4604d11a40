"""Database layer - engine, base classes, types, and immutability."""

from apurement_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from apurement_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from apurement_kernel.db.types import (
    QUANTITY_DECIMAL_PLACES,
    MAX_QUANTITY,
    QUANTITY_TOLERANCE,
    parse_quantity,
    round_quantity,
)

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "drop_tables",
    "reset_engine",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "QUANTITY_DECIMAL_PLACES",
    "QUANTITY_TOLERANCE",
    "MAX_QUANTITY",
    "parse_quantity",
    "round_quantity",
]
