from __future__ import annotations

from typing import List

import pytest

from fakes import FakeRemote
from lessonsync import constants
from lessonsync.context import SessionContext
from lessonsync.storage import InMemoryLocalStore
from lessonsync.telemetry import TelemetryEvent, clear_listeners, register_listener


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def store() -> InMemoryLocalStore:
    return InMemoryLocalStore()


@pytest.fixture
def context(store: InMemoryLocalStore, remote: FakeRemote) -> SessionContext:
    return SessionContext(store, remote)


@pytest.fixture
def events():
    captured: List[TelemetryEvent] = []
    clear_listeners()
    register_listener(captured.append)
    yield captured
    clear_listeners()


@pytest.fixture
def fast_failsafes(monkeypatch: pytest.MonkeyPatch) -> None:
    """Shrink failsafe deadlines for tests that do not measure real time."""
    monkeypatch.setattr(constants, "SESSION_BOOTSTRAP_SECONDS", 0.2)
    monkeypatch.setattr(constants, "ENROLLMENT_CHECK_FAILSAFE_SECONDS", 0.15)
    monkeypatch.setattr(constants, "ENROLLMENT_REMOTE_SECONDS", 0.3)
    monkeypatch.setattr(constants, "SUBMISSION_FAILSAFE_SECONDS", 0.3)
