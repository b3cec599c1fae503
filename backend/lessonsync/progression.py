"""Per-lesson section gating derived from local completion records.

Lock state is never stored. Every read recomputes it from the completion
ledger and from the sections advanced past in this visit, so reconciliation
can only ever add completed or unlocked sections.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, List, Optional, Set

from .cache import CompletionLedger
from .failsafe import BackgroundTasks, FailsafeTimer
from .models import LessonInstance, Section, SectionState, WeekProgress
from .telemetry import emit_event

logger = logging.getLogger(__name__)

FinishedCallback = Callable[[LessonInstance], None]


class LessonProgressionController:
    def __init__(
        self,
        lesson: LessonInstance,
        ledger: CompletionLedger,
        user_id: str,
        *,
        start_index: int = 0,
        on_finished: Optional[FinishedCallback] = None,
    ) -> None:
        self.lesson = lesson
        self.user_id = user_id
        self.tasks = BackgroundTasks(f"lesson-{lesson.week_number}")
        self._ledger = ledger
        self._on_finished = on_finished
        self._advanced: Set[int] = set()
        self._drafts: Dict[int, str] = {}
        self._timers: List[FailsafeTimer] = []
        self._closed = False
        self.current_index = min(max(start_index, 0), max(len(lesson.sections) - 1, 0))
        # Re-entering a finished lesson is not a new completion.
        self._finished_signalled = self.finished

    @property
    def week_number(self) -> int:
        return self.lesson.week_number

    @property
    def closed(self) -> bool:
        return self._closed

    def section(self, index: int) -> Optional[Section]:
        if 0 <= index < len(self.lesson.sections):
            return self.lesson.sections[index]
        return None

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    def has_record(self, index: int) -> bool:
        return self._ledger.has(self.user_id, self.week_number, index)

    def is_completed(self, index: int) -> bool:
        section = self.section(index)
        if section is None:
            return False
        if self.has_record(index):
            return True
        if section.requires_activity:
            return False
        if index in self._advanced:
            return True
        # Resuming: a record further on means this section was passed before.
        return any(self.has_record(later) for later in range(index + 1, len(self.lesson.sections)))

    def state_of(self, index: int) -> SectionState:
        if self.is_completed(index):
            return SectionState.COMPLETED
        if index == 0 or self.is_completed(index - 1):
            return SectionState.UNLOCKED
        return SectionState.LOCKED

    def section_states(self) -> Dict[int, SectionState]:
        return {section.index: self.state_of(section.index) for section in self.lesson.sections}

    def submitted(self, index: int) -> bool:
        section = self.section(index)
        return bool(section and section.requires_activity and self.has_record(index))

    def submitted_flags(self) -> Dict[int, bool]:
        return {
            section.index: self.has_record(section.index)
            for section in self.lesson.sections
            if section.requires_activity
        }

    def is_reachable(self, index: int) -> bool:
        return self.section(index) is not None and self.state_of(index) != SectionState.LOCKED

    @property
    def finished(self) -> bool:
        if not self.lesson.sections:
            return False
        return self.is_completed(len(self.lesson.sections) - 1)

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def select(self, index: int) -> bool:
        """Jump to a section; locked sections are ignored."""
        if self._closed or not self.is_reachable(index):
            return False
        self.current_index = index
        return True

    def advance(self) -> bool:
        """Complete the current section when allowed and move to the next one."""
        if self._closed:
            return False
        section = self.section(self.current_index)
        if section is None:
            return False
        if section.requires_activity:
            if not self.has_record(section.index):
                return False
        else:
            self._advanced.add(section.index)
        self._check_finished()
        if section.index + 1 < len(self.lesson.sections):
            self.current_index = section.index + 1
        return True

    # ------------------------------------------------------------------
    # Drafts and submissions
    # ------------------------------------------------------------------

    def draft(self, index: int) -> str:
        return self._drafts.get(index, "")

    def set_draft(self, index: int, text: str) -> None:
        if self.section(index) is not None and not self._closed:
            self._drafts[index] = text

    def section_submitted(self, index: int) -> None:
        """Apply the UI effects of a completed submission."""
        if self._closed:
            return
        self._drafts.pop(index, None)
        self._check_finished()

    def apply_remote_completions(self, indices: Iterable[int]) -> List[int]:
        """Merge remotely known completions; returns the newly adopted indices."""
        if self._closed:
            return []
        known = [index for index in indices if self.section(index) is not None]
        created = self._ledger.merge_remote(self.user_id, self.week_number, known)
        if created:
            logger.info(
                "Adopted %d remote completions for week %s",
                len(created),
                self.week_number,
            )
            self._check_finished()
        return [record.section_index for record in created]

    def _check_finished(self) -> None:
        if self._finished_signalled or not self.finished:
            return
        self._finished_signalled = True
        emit_event("lesson_finished", user_id=self.user_id, week_number=self.week_number)
        if self._on_finished is not None:
            try:
                self._on_finished(self.lesson)
            except Exception:  # noqa: BLE001
                logger.exception("Lesson completion callback failed for week %s", self.week_number)

    # ------------------------------------------------------------------
    # Lifetime
    # ------------------------------------------------------------------

    def track_timer(self, timer: FailsafeTimer) -> FailsafeTimer:
        self._timers = [entry for entry in self._timers if entry.active]
        self._timers.append(timer)
        return timer

    def teardown(self) -> None:
        """Stop every timer and task bound to this visit of the lesson."""
        if self._closed:
            return
        self._closed = True
        for timer in self._timers:
            timer.cancel()
        self._timers.clear()
        self.tasks.cancel()


def summarize_week(ledger: CompletionLedger, user_id: str, lesson: LessonInstance) -> WeekProgress:
    """Week card summary: the quiz unlocks once every activity is submitted."""
    activity_indices = [section.index for section in lesson.sections if section.requires_activity]
    completed = ledger.completed_sections(user_id, lesson.week_number, activity_indices)
    total = len(activity_indices)
    quiz_unlocked = total > 0 and len(completed) == total
    if quiz_unlocked:
        status = "completed"
    elif completed:
        status = "in_progress"
    else:
        status = "not_started"
    return WeekProgress(
        week_number=lesson.week_number,
        completed_sections=len(completed),
        total_sections=total,
        quiz_unlocked=quiz_unlocked,
        status=status,
    )


__all__ = ["FinishedCallback", "LessonProgressionController", "summarize_week"]
