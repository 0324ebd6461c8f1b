"""Database layer - engine, base classes, error translation, immutability."""

from backoffice_kernel.db.base import UUID, Base, TrackedBase, UUIDString, WorkflowDocument
from backoffice_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session_factory,
    session_scope,
)

__all__ = [
    "get_engine",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "WorkflowDocument",
    "UUIDString",
    "UUID",
]
