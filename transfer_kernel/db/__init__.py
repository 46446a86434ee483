"""Database layer - engine, base classes, column types and immutability."""

from transfer_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from transfer_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    session_scope,
)
from transfer_kernel.db.types import PreciseDecimal, UTCDateTime

__all__ = [
    "get_engine",
    "get_session",
    "init_engine_from_url",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "PreciseDecimal",
    "UTCDateTime",
]
