"""Database utilities for the studyhall row store."""

from .session import (
    build_engine,
    build_session_factory,
    create_schema,
    dispose_engine,
    get_engine,
    get_session_factory,
    session_scope,
)

__all__ = [
    "build_engine",
    "build_session_factory",
    "create_schema",
    "dispose_engine",
    "get_engine",
    "get_session_factory",
    "session_scope",
]
