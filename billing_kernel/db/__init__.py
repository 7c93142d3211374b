"""Database layer - engine, base classes, types."""

from billing_kernel.db.base import UUID, Base, TrackedBase, UTCDateTime, UUIDString
from billing_kernel.db.engine import (
    build_engine,
    create_tables,
    get_engine,
    init_engine_from_url,
    make_session_factory,
    session_scope,
)
from billing_kernel.db.types import Money, Percent, VersionToken, money, round_money

__all__ = [
    "build_engine",
    "create_tables",
    "get_engine",
    "init_engine_from_url",
    "make_session_factory",
    "session_scope",
    "Base",
    "TrackedBase",
    "UTCDateTime",
    "UUIDString",
    "UUID",
    "Money",
    "Percent",
    "VersionToken",
    "money",
    "round_money",
]
