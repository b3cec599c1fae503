"""Typed views over the local durable store.

``EnrollmentCache`` owns the enrollment snapshot and the onboarding flag.
``CompletionLedger`` owns the append-only section completion records; it keeps
an in-memory overlay so progress still advances when a local write fails.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Set

from pydantic import ValidationError as ModelValidationError

from .constants import ENROLLMENT_SNAPSHOT_KEY, ONBOARDING_FLAG_KEY, activity_key
from .errors import CacheCorruptionError
from .models import Durability, Enrollment, SectionCompletionRecord
from .storage import LocalDurableStore

logger = logging.getLogger(__name__)


def _safe_get(store: LocalDurableStore, key: str) -> Optional[str]:
    try:
        return store.get(key)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Local store read failed for %s: %s", key, exc)
        return None


def _safe_set(store: LocalDurableStore, key: str, value: str) -> bool:
    try:
        store.set(key, value)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Local store write failed for %s: %s", key, exc)
        return False
    return True


def _safe_remove(store: LocalDurableStore, key: str) -> None:
    try:
        store.remove(key)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Local store remove failed for %s: %s", key, exc)


class EnrollmentCache:
    def __init__(self, store: LocalDurableStore) -> None:
        self._store = store

    @staticmethod
    def _decode(raw: str) -> Enrollment:
        try:
            return Enrollment.model_validate_json(raw)
        except ModelValidationError as exc:
            raise CacheCorruptionError(ENROLLMENT_SNAPSHOT_KEY, str(exc)) from exc

    def load(self) -> Optional[Enrollment]:
        """Return the cached enrollment; corrupt snapshots are discarded."""
        raw = _safe_get(self._store, ENROLLMENT_SNAPSHOT_KEY)
        if raw is None:
            return None
        try:
            return self._decode(raw)
        except CacheCorruptionError as exc:
            logger.warning("%s; discarding snapshot", exc)
            self.discard()
            return None

    def load_for(self, user_id: str) -> Optional[Enrollment]:
        cached = self.load()
        if cached is None or cached.user_id != user_id:
            return None
        return cached

    def store(self, enrollment: Enrollment) -> bool:
        """Write the snapshot. Returns False when nothing was written.

        A snapshot belonging to another user is discarded before the write; an
        identical snapshot is left untouched.
        """
        payload = enrollment.model_dump_json()
        raw = _safe_get(self._store, ENROLLMENT_SNAPSHOT_KEY)
        if raw == payload:
            return False
        if raw is not None:
            try:
                existing = self._decode(raw)
            except CacheCorruptionError:
                existing = None
            if existing is not None and existing.user_id != enrollment.user_id:
                logger.info(
                    "Discarding cached enrollment for %s before caching %s",
                    existing.user_id,
                    enrollment.user_id,
                )
                self.discard()
        return _safe_set(self._store, ENROLLMENT_SNAPSHOT_KEY, payload)

    def discard(self) -> None:
        _safe_remove(self._store, ENROLLMENT_SNAPSHOT_KEY)

    def onboarding_complete(self) -> bool:
        return _safe_get(self._store, ONBOARDING_FLAG_KEY) == "true"

    def mark_onboarding_complete(self) -> None:
        _safe_set(self._store, ONBOARDING_FLAG_KEY, "true")

    def clear(self) -> None:
        self.discard()
        _safe_remove(self._store, ONBOARDING_FLAG_KEY)


class CompletionLedger:
    def __init__(self, store: LocalDurableStore) -> None:
        self._store = store
        self._records: Dict[str, SectionCompletionRecord] = {}

    def _read(self, key: str, week_number: int, section_index: int) -> Optional[SectionCompletionRecord]:
        raw = _safe_get(self._store, key)
        if raw is None:
            return None
        try:
            return SectionCompletionRecord.model_validate_json(raw)
        except ModelValidationError as exc:
            # The key itself is evidence of completion, so the entry is kept.
            logger.warning("%s; keeping it as a local-only completion", CacheCorruptionError(key, str(exc)))
            return SectionCompletionRecord(
                week_number=week_number,
                section_index=section_index,
                durability=Durability.ORPHANED_LOCAL,
            )

    def get(self, user_id: str, week_number: int, section_index: int) -> Optional[SectionCompletionRecord]:
        key = activity_key(user_id, week_number, section_index)
        record = self._records.get(key)
        if record is None:
            record = self._read(key, week_number, section_index)
            if record is not None:
                self._records[key] = record
        return record

    def has(self, user_id: str, week_number: int, section_index: int) -> bool:
        return self.get(user_id, week_number, section_index) is not None

    def completed_sections(self, user_id: str, week_number: int, indices: Iterable[int]) -> Set[int]:
        return {index for index in indices if self.has(user_id, week_number, index)}

    def commit(self, user_id: str, record: SectionCompletionRecord) -> SectionCompletionRecord:
        """Create the record once; an existing record always wins."""
        existing = self.get(user_id, record.week_number, record.section_index)
        if existing is not None:
            return existing
        key = activity_key(user_id, record.week_number, record.section_index)
        self._records[key] = record
        _safe_set(self._store, key, record.model_dump_json())
        return record

    def update_durability(
        self,
        user_id: str,
        week_number: int,
        section_index: int,
        durability: Durability,
    ) -> Optional[SectionCompletionRecord]:
        existing = self.get(user_id, week_number, section_index)
        if existing is None:
            return None
        if existing.durability == Durability.CONFIRMED or existing.durability == durability:
            return existing
        updated = existing.model_copy(update={"durability": durability})
        key = activity_key(user_id, week_number, section_index)
        self._records[key] = updated
        _safe_set(self._store, key, updated.model_dump_json())
        return updated

    def merge_remote(self, user_id: str, week_number: int, indices: Iterable[int]) -> List[SectionCompletionRecord]:
        """Adopt remotely known completions that are missing locally."""
        created: List[SectionCompletionRecord] = []
        for index in sorted(set(indices)):
            if self.has(user_id, week_number, index):
                continue
            record = SectionCompletionRecord(
                week_number=week_number,
                section_index=index,
                durability=Durability.CONFIRMED,
            )
            created.append(self.commit(user_id, record))
        return created


__all__ = ["CompletionLedger", "EnrollmentCache"]
