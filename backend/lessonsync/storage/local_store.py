"""Local durable key/value stores.

The engine treats every backend as a synchronous ``key -> str`` mapping.
Writers only add keys or overwrite them with newer data for the same user, so
none of the backends need transactions spanning more than one key.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Dict, Optional, Protocol

from sqlalchemy import Engine, select
from sqlalchemy.orm import sessionmaker

from ..config import Settings
from ..db.models import LocalEntryModel
from ..db.session import build_store_engine, create_tables, session_scope

logger = logging.getLogger(__name__)


class LocalDurableStore(Protocol):
    """Persistent string mapping surviving process restarts."""

    def get(self, key: str) -> Optional[str]:  # pragma: no cover - protocol definition
        ...

    def set(self, key: str, value: str) -> None:  # pragma: no cover - protocol definition
        ...

    def remove(self, key: str) -> None:  # pragma: no cover - protocol definition
        ...


class InMemoryLocalStore:
    """Process-local store; state is lost on exit."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._entries: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._entries.get(key)

    def set(self, key: str, value: str) -> None:
        self._entries[key] = value

    def remove(self, key: str) -> None:
        self._entries.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._entries)


class JsonFileLocalStore:
    """JSON-file store, rewritten in full on every mutation."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.RLock()

    def _load_unlocked(self) -> Dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except (OSError, ValueError):
            logger.exception("Local store file %s is unreadable; starting empty", self._path)
            return {}
        if not isinstance(raw, dict):
            logger.warning("Ignoring local store file %s with unexpected layout", self._path)
            return {}
        return {str(key): str(value) for key, value in raw.items()}

    def _write_unlocked(self, entries: Dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as handle:
            json.dump(entries, handle, indent=2, sort_keys=True)
        tmp_path.replace(self._path)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._load_unlocked().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            entries = self._load_unlocked()
            entries[key] = value
            self._write_unlocked(entries)

    def remove(self, key: str) -> None:
        with self._lock:
            entries = self._load_unlocked()
            if entries.pop(key, None) is not None:
                self._write_unlocked(entries)


class SqlLocalStore:
    """Store backed by the ``local_entries`` table of its own engine."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._sessions = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        self._schema_ready = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "SqlLocalStore":
        return cls(build_store_engine(settings))

    def _ensure_schema(self) -> None:
        if not self._schema_ready:
            create_tables(self._engine)
            self._schema_ready = True

    def get(self, key: str) -> Optional[str]:
        self._ensure_schema()
        with session_scope(self._sessions, commit=False) as session:
            stmt = select(LocalEntryModel.value).where(LocalEntryModel.key == key)
            return session.execute(stmt).scalar_one_or_none()

    def set(self, key: str, value: str) -> None:
        self._ensure_schema()
        with session_scope(self._sessions) as session:
            entry = session.get(LocalEntryModel, key)
            if entry is None:
                session.add(LocalEntryModel(key=key, value=value))
            else:
                entry.value = value

    def remove(self, key: str) -> None:
        self._ensure_schema()
        with session_scope(self._sessions) as session:
            entry = session.get(LocalEntryModel, key)
            if entry is not None:
                session.delete(entry)

    def dispose(self) -> None:
        self._engine.dispose()


__all__ = ["InMemoryLocalStore", "JsonFileLocalStore", "LocalDurableStore", "SqlLocalStore"]
