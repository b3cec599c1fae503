from __future__ import annotations

import json
from pathlib import Path

import pytest

from fakes import make_enrollment
from lessonsync.cache import EnrollmentCache
from lessonsync.config import get_settings
from lessonsync.storage import InMemoryLocalStore, JsonFileLocalStore, SqlLocalStore, build_local_store


def test_file_store_persists_across_instances(tmp_path: Path) -> None:
    path = tmp_path / "state" / "local_store.json"
    store = JsonFileLocalStore(path)
    store.set("lessonsync_onboarding_complete", "true")
    store.set("other", "1")
    store.remove("other")

    reopened = JsonFileLocalStore(path)
    assert reopened.get("lessonsync_onboarding_complete") == "true"
    assert reopened.get("other") is None
    assert json.loads(path.read_text(encoding="utf-8")) == {"lessonsync_onboarding_complete": "true"}


def test_file_store_treats_corrupt_file_as_empty(tmp_path: Path) -> None:
    path = tmp_path / "local_store.json"
    path.write_text("{broken", encoding="utf-8")
    store = JsonFileLocalStore(path)

    assert store.get("anything") is None
    store.set("key", "value")
    assert store.get("key") == "value"


def test_file_store_recovers_from_undecodable_bytes(tmp_path: Path) -> None:
    path = tmp_path / "local_store.json"
    path.write_bytes(b"\xff\xfe{bad")
    enrollment = make_enrollment("user-1")
    assert EnrollmentCache(JsonFileLocalStore(path)).store(enrollment) is True

    reopened = EnrollmentCache(JsonFileLocalStore(path))
    assert reopened.load_for("user-1") == enrollment


@pytest.fixture
def sqlite_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("LESSONSYNC_DATABASE_URL", f"sqlite:///{tmp_path / 'local.db'}")
    monkeypatch.setenv("LESSONSYNC_LOCAL_STORE_MODE", "database")
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


def test_sql_store_get_set_remove(sqlite_settings) -> None:
    store = SqlLocalStore.from_settings(sqlite_settings)
    assert store.get("missing") is None

    store.set("lessonsync_local_enrollment", "{}")
    store.set("lessonsync_local_enrollment", '{"id": "enr-1"}')
    assert store.get("lessonsync_local_enrollment") == '{"id": "enr-1"}'

    store.remove("lessonsync_local_enrollment")
    store.remove("lessonsync_local_enrollment")
    assert store.get("lessonsync_local_enrollment") is None
    store.dispose()

    reopened = SqlLocalStore.from_settings(sqlite_settings)
    reopened.set("lessonsync_onboarding_complete", "true")
    reopened.dispose()
    assert SqlLocalStore.from_settings(sqlite_settings).get("lessonsync_onboarding_complete") == "true"


def test_sql_store_requires_a_database_url(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("LESSONSYNC_DATABASE_URL", raising=False)
    monkeypatch.setenv("LESSONSYNC_LOCAL_STORE_MODE", "database")
    get_settings.cache_clear()
    with pytest.raises(RuntimeError):
        build_local_store(get_settings())
    get_settings.cache_clear()


def test_build_local_store_follows_mode(sqlite_settings, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    sql_store = build_local_store(sqlite_settings)
    assert isinstance(sql_store, SqlLocalStore)
    sql_store.dispose()

    monkeypatch.setenv("LESSONSYNC_LOCAL_STORE_MODE", "memory")
    get_settings.cache_clear()
    assert isinstance(build_local_store(get_settings()), InMemoryLocalStore)

    monkeypatch.setenv("LESSONSYNC_LOCAL_STORE_MODE", "file")
    monkeypatch.setenv("LESSONSYNC_LOCAL_STORE_PATH", str(tmp_path / "store.json"))
    get_settings.cache_clear()
    assert isinstance(build_local_store(get_settings()), JsonFileLocalStore)


def test_invalid_configuration_raises_runtime_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LESSONSYNC_LOCAL_STORE_MODE", "floppy")
    get_settings.cache_clear()
    with pytest.raises(RuntimeError):
        get_settings()
    get_settings.cache_clear()
