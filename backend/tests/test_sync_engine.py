from __future__ import annotations

import asyncio

import pytest

from fakes import LONG_RESPONSE, FakeRemote, make_enrollment, three_section_lesson
from lessonsync.engine import ProgressSyncEngine
from lessonsync.errors import AuthSessionMissing
from lessonsync.models import AppState, Identity, LessonInstance, SectionState
from lessonsync.storage import InMemoryLocalStore


async def _signed_in_engine(remote: FakeRemote) -> ProgressSyncEngine:
    remote.identity = Identity(user_id="user-1")
    remote.enrollment = make_enrollment("user-1")
    engine = ProgressSyncEngine(InMemoryLocalStore(), remote)
    assert await engine.start() == AppState.READY
    return engine


@pytest.mark.asyncio
async def test_open_lesson_requires_identity(remote: FakeRemote) -> None:
    engine = ProgressSyncEngine(InMemoryLocalStore(), remote)
    await engine.start()
    with pytest.raises(AuthSessionMissing):
        engine.open_lesson(three_section_lesson())
    await engine.close()


@pytest.mark.asyncio
async def test_open_lesson_adopts_remote_completions(remote: FakeRemote) -> None:
    engine = await _signed_in_engine(remote)
    remote.completions = {1: [1]}

    handle = engine.open_lesson(three_section_lesson())
    await handle.controller.tasks.drain()

    assert handle.controller.section_states() == {
        0: SectionState.COMPLETED,
        1: SectionState.COMPLETED,
        2: SectionState.UNLOCKED,
    }
    assert engine.lesson(1) is handle
    await engine.close()


@pytest.mark.asyncio
async def test_reopening_a_week_replaces_the_previous_visit(remote: FakeRemote) -> None:
    engine = await _signed_in_engine(remote)
    first = engine.open_lesson(three_section_lesson())
    second = engine.open_lesson(three_section_lesson())

    assert first.controller.closed
    assert engine.lesson(1) is second
    assert engine.close_lesson(1)
    assert not engine.close_lesson(1)
    assert engine.known_lesson(1) is not None
    await engine.close()


@pytest.mark.asyncio
async def test_week_progress_reflects_submissions(remote: FakeRemote) -> None:
    engine = await _signed_in_engine(remote)
    handle = engine.open_lesson(three_section_lesson())
    handle.controller.advance()

    await handle.pipeline.submit(1, LONG_RESPONSE)
    progress = engine.week_progress(three_section_lesson())

    assert progress.completed_sections == 1
    assert progress.status == "in_progress"
    await engine.close()


@pytest.mark.asyncio
async def test_sign_out_tears_down_open_lessons(remote: FakeRemote) -> None:
    engine = await _signed_in_engine(remote)
    handle = engine.open_lesson(three_section_lesson())

    assert await engine.sign_out() == AppState.CHECKING
    await asyncio.sleep(0)

    assert handle.controller.closed
    assert engine.lesson(1) is None
    assert engine.context.identity is None
    await engine.close()


@pytest.mark.asyncio
async def test_close_disposes_subscription(remote: FakeRemote) -> None:
    engine = await _signed_in_engine(remote)
    await engine.close()
    assert len(remote.hub) == 0
    assert len(engine.context.tasks) == 0


@pytest.mark.asyncio
async def test_sign_in_after_bootstrap_reaches_ready(remote: FakeRemote) -> None:
    engine = ProgressSyncEngine(InMemoryLocalStore(), remote)
    assert await engine.start() == AppState.NO_SESSION
    remote.token_identities = {"token-1": Identity(user_id="user-1")}
    remote.enrollment = make_enrollment("user-1")

    with pytest.raises(AuthSessionMissing):
        await engine.sign_in("unknown-token")
    assert engine.state == AppState.NO_SESSION

    assert await engine.sign_in("token-1") == AppState.READY
    assert engine.context.identity == Identity(user_id="user-1")
    assert engine.context.enrollment == remote.enrollment
    await engine.close()


@pytest.mark.asyncio
async def test_sign_in_before_bootstrap_starts_the_session(remote: FakeRemote) -> None:
    remote.token_identities = {"token-1": Identity(user_id="user-1")}
    remote.enrollment = make_enrollment("user-1")
    engine = ProgressSyncEngine(InMemoryLocalStore(), remote)

    assert await engine.sign_in("token-1") == AppState.READY
    assert engine.context.subscribed
    await engine.close()


@pytest.mark.asyncio
async def test_finished_lessons_reach_the_progress_callback(remote: FakeRemote) -> None:
    finished: list[LessonInstance] = []
    remote.identity = Identity(user_id="user-1")
    remote.enrollment = make_enrollment("user-1")
    engine = ProgressSyncEngine(InMemoryLocalStore(), remote, on_lesson_finished=finished.append)
    await engine.start()

    handle = engine.open_lesson(three_section_lesson())
    handle.controller.advance()
    await handle.pipeline.submit(1, LONG_RESPONSE)
    handle.controller.advance()
    assert finished == []
    await handle.pipeline.submit(2, LONG_RESPONSE)

    assert [lesson.week_number for lesson in finished] == [1]
    await engine.close()
