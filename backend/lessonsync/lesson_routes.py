"""Lesson endpoints: section gating, navigation and activity submission."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field

from .engine import LessonHandle, ProgressSyncEngine, get_sync_engine
from .errors import AuthSessionMissing
from .models import LessonInstance, Section, SectionState, SubmissionOutcome, WeekProgress


router = APIRouter(prefix="/api", tags=["lessons"])
logger = logging.getLogger(__name__)


class LessonEnterRequest(BaseModel):
    program_id: str = Field(..., min_length=1)
    sections: List[Section] = Field(default_factory=list)
    start_index: int = Field(default=0, ge=0)


class SelectRequest(BaseModel):
    index: int = Field(..., ge=0)


class SubmissionRequest(BaseModel):
    response_text: str = ""


class LessonPayload(BaseModel):
    week_number: int
    current_index: int
    sections: Dict[int, SectionState]
    submitted: Dict[int, bool]
    finished: bool = False
    submitting: bool = False


def _lesson_payload(handle: LessonHandle) -> LessonPayload:
    controller = handle.controller
    return LessonPayload(
        week_number=controller.week_number,
        current_index=controller.current_index,
        sections=controller.section_states(),
        submitted=controller.submitted_flags(),
        finished=controller.finished,
        submitting=handle.pipeline.submitting,
    )


def _require_lesson(engine: ProgressSyncEngine, week: int) -> LessonHandle:
    handle = engine.lesson(week)
    if handle is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Week {week} is not open.",
        )
    return handle


@router.put("/lessons/{week}", response_model=LessonPayload, status_code=status.HTTP_200_OK)
async def enter_lesson(
    week: int,
    payload: LessonEnterRequest,
    engine: ProgressSyncEngine = Depends(get_sync_engine),
) -> LessonPayload:
    try:
        lesson = LessonInstance(week_number=week, program_id=payload.program_id, sections=payload.sections)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    try:
        handle = engine.open_lesson(lesson, start_index=payload.start_index)
    except AuthSessionMissing as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    return _lesson_payload(handle)


@router.get("/lessons/{week}", response_model=LessonPayload, status_code=status.HTTP_200_OK)
async def read_lesson(week: int, engine: ProgressSyncEngine = Depends(get_sync_engine)) -> LessonPayload:
    return _lesson_payload(_require_lesson(engine, week))


@router.delete("/lessons/{week}", status_code=status.HTTP_204_NO_CONTENT)
async def leave_lesson(week: int, engine: ProgressSyncEngine = Depends(get_sync_engine)) -> Response:
    if not engine.close_lesson(week):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Week {week} is not open.",
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/lessons/{week}/select", response_model=LessonPayload, status_code=status.HTTP_200_OK)
async def select_section(
    week: int,
    payload: SelectRequest,
    engine: ProgressSyncEngine = Depends(get_sync_engine),
) -> LessonPayload:
    handle = _require_lesson(engine, week)
    if not handle.controller.select(payload.index):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Section {payload.index} is locked.",
        )
    return _lesson_payload(handle)


@router.post("/lessons/{week}/advance", response_model=LessonPayload, status_code=status.HTTP_200_OK)
async def advance_section(week: int, engine: ProgressSyncEngine = Depends(get_sync_engine)) -> LessonPayload:
    handle = _require_lesson(engine, week)
    if not handle.controller.advance():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Submit the activity before continuing.",
        )
    return _lesson_payload(handle)


@router.post(
    "/lessons/{week}/sections/{index}/submission",
    response_model=SubmissionOutcome,
    status_code=status.HTTP_200_OK,
)
async def submit_activity(
    week: int,
    index: int,
    payload: SubmissionRequest,
    engine: ProgressSyncEngine = Depends(get_sync_engine),
) -> SubmissionOutcome:
    handle = _require_lesson(engine, week)
    outcome = await handle.pipeline.submit(index, payload.response_text)
    if outcome.accepted:
        return outcome
    code = status.HTTP_422_UNPROCESSABLE_ENTITY if outcome.reason == "too_short" else status.HTTP_409_CONFLICT
    raise HTTPException(status_code=code, detail={"reason": outcome.reason, "message": outcome.detail})


@router.get("/weeks/{week}/progress", response_model=WeekProgress, status_code=status.HTTP_200_OK)
async def read_week_progress(week: int, engine: ProgressSyncEngine = Depends(get_sync_engine)) -> WeekProgress:
    lesson: Optional[LessonInstance] = engine.known_lesson(week)
    if lesson is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Week {week} has not been entered yet.",
        )
    try:
        return engine.week_progress(lesson)
    except AuthSessionMissing as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
