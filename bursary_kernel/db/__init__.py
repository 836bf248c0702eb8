"""Database layer - engine, base classes and column types."""

from bursary_kernel.db.base import UUID, Base, UTCDateTime, UUIDString
from bursary_kernel.db.engine import create_tables, get_engine, get_session, session_scope

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "UUIDString",
    "UTCDateTime",
    "UUID",
]
