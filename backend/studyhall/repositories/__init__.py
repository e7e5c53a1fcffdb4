"""Persistence backends for the directory row store."""

from .rows import SqlRowStore

__all__ = ["SqlRowStore"]
