"""Database infrastructure: declarative base and engine/session construction."""

from billing_kernel.db.base import Base, TrackedBase, UTCDateTime, UUIDString
from billing_kernel.db.engine import (
    PoolSettings,
    build_engine,
    create_tables,
    drop_tables,
    session_factory,
    session_scope,
)

__all__ = [
    "Base",
    "TrackedBase",
    "UTCDateTime",
    "UUIDString",
    "PoolSettings",
    "build_engine",
    "create_tables",
    "drop_tables",
    "session_factory",
    "session_scope",
]
