"""Activity submission with a bounded-time outcome.

A valid response is committed to the local ledger before anything else
happens. From then on two paths race: the failsafe timer and a detached remote
write. Whichever finishes first completes the section in the UI, exactly
once; the other can only adjust the record's durability flag afterwards.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

from . import constants
from .context import SessionContext
from .errors import NetworkTimeout, ValidationError
from .failsafe import FailsafeTimer
from .models import (
    ActivityResponse,
    Durability,
    Identity,
    SectionCompletionRecord,
    SectionState,
    SubmissionOutcome,
)
from .progression import LessonProgressionController
from .telemetry import emit_event

logger = logging.getLogger(__name__)


def validate_response(response_text: str) -> str:
    """Return the trimmed response or raise ``ValidationError``."""
    trimmed = (response_text or "").strip()
    if len(trimmed) < constants.MIN_RESPONSE_LENGTH:
        raise ValidationError(
            f"Responses need at least {constants.MIN_RESPONSE_LENGTH} characters "
            f"({len(trimmed)} so far)."
        )
    return trimmed


class ActivitySubmissionPipeline:
    def __init__(self, context: SessionContext, controller: LessonProgressionController) -> None:
        self._context = context
        self._controller = controller
        self._in_flight: Dict[int, asyncio.Future[SubmissionOutcome]] = {}

    @property
    def submitting(self) -> bool:
        return bool(self._in_flight)

    def is_submitting(self, section_index: int) -> bool:
        return section_index in self._in_flight

    def _rejected(self, section_index: int, reason: str, detail: str) -> SubmissionOutcome:
        logger.debug("Rejected submission for section %s: %s", section_index, reason)
        return SubmissionOutcome(status="rejected", section_index=section_index, reason=reason, detail=detail)

    def _precheck(self, section_index: int) -> Optional[SubmissionOutcome]:
        controller = self._controller
        section = controller.section(section_index)
        if controller.closed:
            return self._rejected(section_index, "closed", "The lesson is no longer open.")
        if section is None:
            return self._rejected(section_index, "unknown_section", "No such section in this lesson.")
        if not section.requires_activity:
            return self._rejected(section_index, "no_activity", "This section has no activity to submit.")
        if self._in_flight:
            return self._rejected(section_index, "in_progress", "Another response is being submitted.")
        if controller.has_record(section_index):
            return self._rejected(section_index, "already_submitted", "This activity was already submitted.")
        if controller.state_of(section_index) == SectionState.LOCKED:
            return self._rejected(section_index, "locked", "Complete the previous section first.")
        return None

    async def submit(self, section_index: int, response_text: str) -> SubmissionOutcome:
        try:
            text = validate_response(response_text)
        except ValidationError as exc:
            return self._rejected(section_index, "too_short", str(exc))
        rejection = self._precheck(section_index)
        if rejection is not None:
            return rejection

        controller = self._controller
        record = self._context.ledger.commit(
            controller.user_id,
            SectionCompletionRecord(
                week_number=controller.week_number,
                section_index=section_index,
                response_text=text,
            ),
        )
        emit_event(
            "submission_committed",
            user_id=controller.user_id,
            week_number=controller.week_number,
            section_index=section_index,
        )

        outcome: asyncio.Future[SubmissionOutcome] = asyncio.get_running_loop().create_future()
        self._in_flight[section_index] = outcome
        timer = FailsafeTimer(
            constants.SUBMISSION_FAILSAFE_SECONDS,
            lambda: self._on_failsafe(section_index),
            name=f"submission-{controller.week_number}-{section_index}",
        )
        controller.track_timer(timer).start()
        # Session-scoped so the durability update survives leaving the lesson.
        self._context.tasks.spawn(
            self._write_remote(record, timer),
            name=f"activity-write:{controller.week_number}:{section_index}",
        )
        try:
            return await outcome
        finally:
            if self._in_flight.get(section_index) is outcome:
                self._in_flight.pop(section_index, None)

    def _on_failsafe(self, section_index: int) -> None:
        logger.info(
            "%s; keeping section %s local",
            NetworkTimeout("activity submission", constants.SUBMISSION_FAILSAFE_SECONDS),
            section_index,
        )
        self._set_durability(section_index, Durability.ORPHANED_LOCAL)
        self._finish(section_index, timed_out=True)

    async def _write_remote(self, record: SectionCompletionRecord, timer: FailsafeTimer) -> None:
        controller = self._controller
        identity = await self._resolve_identity()
        if identity is None:
            logger.info("No identity; section %s of week %s stays local", record.section_index, record.week_number)
            timer.cancel()
            self._set_durability(record.section_index, Durability.ORPHANED_LOCAL)
            self._finish(record.section_index, timed_out=False)
            return

        enrollment = self._context.enrollment
        payload = ActivityResponse(
            user_id=identity.user_id,
            enrollment_id=enrollment.id if enrollment is not None else None,
            week_number=record.week_number,
            section_index=record.section_index,
            response_text=record.response_text,
            submitted_at=record.submitted_at,
        )
        try:
            await self._context.remote.insert_activity_response(payload)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Remote write failed for week %s section %s: %s",
                controller.week_number,
                record.section_index,
                exc,
            )
            durability = Durability.ORPHANED_LOCAL
        else:
            durability = Durability.CONFIRMED
        timer.cancel()
        self._set_durability(record.section_index, durability)
        self._finish(record.section_index, timed_out=False)

    async def _resolve_identity(self) -> Optional[Identity]:
        if self._context.identity is not None:
            return self._context.identity
        try:
            return await self._context.remote.get_session()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Session lookup failed during submission: %s", exc)
            return None

    def _set_durability(self, section_index: int, durability: Durability) -> None:
        controller = self._controller
        before = self._context.ledger.get(controller.user_id, controller.week_number, section_index)
        updated = self._context.ledger.update_durability(
            controller.user_id,
            controller.week_number,
            section_index,
            durability,
        )
        if updated is not None and before is not None and before.durability != updated.durability:
            emit_event(
                "submission_durability_changed",
                user_id=controller.user_id,
                week_number=controller.week_number,
                section_index=section_index,
                durability=updated.durability,
            )

    def _finish(self, section_index: int, *, timed_out: bool) -> None:
        outcome = self._in_flight.pop(section_index, None)
        if outcome is None or outcome.done():
            return
        controller = self._controller
        controller.section_submitted(section_index)
        record = self._context.ledger.get(controller.user_id, controller.week_number, section_index)
        outcome.set_result(
            SubmissionOutcome(
                status="accepted",
                section_index=section_index,
                record=record,
                timed_out=timed_out,
            )
        )

    def close(self) -> None:
        """Release callers still waiting when the lesson is torn down."""
        for section_index in list(self._in_flight):
            self._finish(section_index, timed_out=False)


__all__ = ["ActivitySubmissionPipeline", "validate_response"]
