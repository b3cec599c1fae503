"""Facade wiring the local store, the remote service and the session components."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from . import constants
from .bootstrap import SessionBootstrapper
from .config import Settings, get_settings
from .context import SessionContext
from .enrollment import EnrollmentReconciler
from .errors import AuthSessionMissing, NetworkTimeout
from .failsafe import race_with_timeout
from .models import AppState, LessonInstance, WeekProgress
from .progression import FinishedCallback, LessonProgressionController, summarize_week
from .remote import HttpRemoteStateService, RemoteStateService
from .storage import LocalDurableStore, build_local_store
from .submission import ActivitySubmissionPipeline

logger = logging.getLogger(__name__)


@dataclass
class LessonHandle:
    controller: LessonProgressionController
    pipeline: ActivitySubmissionPipeline

    @property
    def week_number(self) -> int:
        return self.controller.week_number

    def close(self) -> None:
        # Controller first so released submissions do not touch lesson state.
        self.controller.teardown()
        self.pipeline.close()


class ProgressSyncEngine:
    def __init__(
        self,
        store: LocalDurableStore,
        remote: RemoteStateService,
        *,
        on_lesson_finished: Optional[FinishedCallback] = None,
    ) -> None:
        self.store = store
        self.remote = remote
        self.on_lesson_finished = on_lesson_finished
        self.context = SessionContext(store, remote)
        self.reconciler = EnrollmentReconciler(self.context)
        self.bootstrapper = SessionBootstrapper(self.context, self.reconciler)
        self._lessons: Dict[int, LessonHandle] = {}
        self._catalog: Dict[int, LessonInstance] = {}
        self.context.add_listener(self._on_state_change)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ProgressSyncEngine":
        settings = settings or get_settings()
        return cls(build_local_store(settings), HttpRemoteStateService.from_settings(settings))

    @property
    def state(self) -> AppState:
        return self.context.state

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def start(self) -> AppState:
        return await self.bootstrapper.start()

    async def sign_in(self, access_token: str) -> AppState:
        """Exchange an access token for a session and run the signed-in path."""
        sign_in = getattr(self.remote, "sign_in", None)
        if sign_in is None:
            raise AuthSessionMissing("the remote service does not accept access tokens")
        started = self.context.subscribed
        if await sign_in(access_token) is None:
            raise AuthSessionMissing("the access token does not belong to a user")
        if not started:
            return await self.start()
        return await self.bootstrapper.wait_for_sign_in()

    async def sign_out(self) -> AppState:
        self.close_all_lessons()
        await self.bootstrapper.sign_out()
        return self.context.state

    def complete_onboarding(self) -> AppState:
        return self.bootstrapper.complete_onboarding()

    def _on_state_change(self, previous: AppState, state: AppState) -> None:
        if self.context.identity is None and state in (AppState.CHECKING, AppState.NO_SESSION):
            self.close_all_lessons()

    async def close(self) -> None:
        self.close_all_lessons()
        await self.context.teardown()
        aclose = getattr(self.remote, "aclose", None)
        if aclose is not None:
            await aclose()
        dispose = getattr(self.store, "dispose", None)
        if dispose is not None:
            dispose()

    # ------------------------------------------------------------------
    # Lessons
    # ------------------------------------------------------------------

    def _user_id(self) -> str:
        identity = self.context.identity
        if identity is None:
            raise AuthSessionMissing("a signed-in identity is required to open lessons")
        return identity.user_id

    def open_lesson(self, lesson: LessonInstance, *, start_index: int = 0) -> LessonHandle:
        """Enter a lesson, replacing any open visit of the same week."""
        user_id = self._user_id()
        self.close_lesson(lesson.week_number)
        controller = LessonProgressionController(
            lesson,
            self.context.ledger,
            user_id,
            start_index=start_index,
            on_finished=self.on_lesson_finished,
        )
        handle = LessonHandle(controller, ActivitySubmissionPipeline(self.context, controller))
        self._lessons[lesson.week_number] = handle
        self._catalog[lesson.week_number] = lesson
        controller.tasks.spawn(
            self._pull_remote_completions(controller),
            name=f"remote-completions:{lesson.week_number}",
        )
        return handle

    async def _pull_remote_completions(self, controller: LessonProgressionController) -> List[int]:
        race = await race_with_timeout(
            self.remote.list_activity_responses(controller.user_id, controller.week_number),
            constants.ENROLLMENT_REMOTE_SECONDS,
        )
        if race.timed_out:
            logger.info("%s; using local records only", NetworkTimeout("completion listing", constants.ENROLLMENT_REMOTE_SECONDS))
            return []
        if race.error is not None:
            logger.warning("Completion listing failed for week %s: %s", controller.week_number, race.error)
            return []
        return controller.apply_remote_completions(race.result or [])

    def lesson(self, week_number: int) -> Optional[LessonHandle]:
        return self._lessons.get(week_number)

    def close_lesson(self, week_number: int) -> bool:
        handle = self._lessons.pop(week_number, None)
        if handle is None:
            return False
        handle.close()
        return True

    def close_all_lessons(self) -> None:
        for week_number in list(self._lessons):
            self.close_lesson(week_number)

    def known_lesson(self, week_number: int) -> Optional[LessonInstance]:
        """Section structure of a week entered earlier in this process."""
        return self._catalog.get(week_number)

    def week_progress(self, lesson: LessonInstance) -> WeekProgress:
        return summarize_week(self.context.ledger, self._user_id(), lesson)


_engine: Optional[ProgressSyncEngine] = None


def get_sync_engine() -> ProgressSyncEngine:
    global _engine
    if _engine is None:
        _engine = ProgressSyncEngine.from_settings()
    return _engine


async def shutdown_sync_engine() -> None:
    global _engine
    if _engine is not None:
        await _engine.close()
        _engine = None


__all__ = ["LessonHandle", "ProgressSyncEngine", "get_sync_engine", "shutdown_sync_engine"]
