"""Database utilities for the SQL local store."""

from .base import Base
from .models import LocalEntryModel
from .session import build_store_engine, create_tables, session_scope

__all__ = [
    "Base",
    "LocalEntryModel",
    "build_store_engine",
    "create_tables",
    "session_scope",
]
