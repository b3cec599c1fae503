"""Local durable store backends."""

from __future__ import annotations

from ..config import Settings
from .local_store import InMemoryLocalStore, JsonFileLocalStore, LocalDurableStore, SqlLocalStore


def build_local_store(settings: Settings) -> LocalDurableStore:
    if settings.local_store_mode == "memory":
        return InMemoryLocalStore()
    if settings.local_store_mode == "database":
        return SqlLocalStore.from_settings(settings)
    return JsonFileLocalStore(settings.local_store_path)


__all__ = [
    "InMemoryLocalStore",
    "JsonFileLocalStore",
    "LocalDurableStore",
    "SqlLocalStore",
    "build_local_store",
]
