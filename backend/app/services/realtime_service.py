"""
Ingestion des changements temps réel du backend.

Les notifications (webhook de base de données → POST /api/realtime/changes)
sont regroupées par table dans une file d'attente indexée par id d'entité :
plusieurs changements d'une même ligne se réduisent au dernier.
Un seul minuteur nommé (`realtime_flush`, 2 s) est armé au premier changement ;
à son échéance, tout est appliqué à l'enveloppe locale puis écrit en une fois.
"""

import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import ValidationError

from app.exceptions import StorageError
from app.schemas.attendance import AttendanceEntry
from app.schemas.offline import OfflineData
from app.schemas.remote import (
    RemoteAttendanceRow,
    RemoteStudentRow,
    attendance_from_remote,
    student_from_remote,
)
from app.schemas.student import Student
from app.schemas.sync import ATTENDANCE_TABLE, STUDENTS_TABLE, ChangeEvent
from app.services.dedup_service import (
    DEFAULT_WINDOW,
    fold_attendance_change,
    merge_attendance,
    superseded_ids,
)
from app.services.identifiers import is_local_only
from app.storage.manager import StorageManager

logger = logging.getLogger(__name__)

FLUSH_JOB_ID = "realtime_flush"

UpdateCallback = Callable[[List[Student], List[AttendanceEntry]], Awaitable[None]]


class RealtimeIngestor:
    def __init__(
        self,
        storage: StorageManager,
        schedule_once: Callable[[str, float, Callable[[], Awaitable[None]]], None],
        cancel: Callable[[str], None],
        flush_delay: float = 2.0,
        on_update: Optional[UpdateCallback] = None,
        window: timedelta = DEFAULT_WINDOW,
    ):
        self.storage = storage
        self._schedule_once = schedule_once
        self._cancel = cancel
        self.flush_delay = flush_delay
        self.on_update = on_update
        self.window = window
        self.pending: Dict[str, Dict[str, ChangeEvent]] = {STUDENTS_TABLE: {}, ATTENDANCE_TABLE: {}}
        self._timer_armed = False

    def pending_count(self) -> int:
        return sum(len(changes) for changes in self.pending.values())

    def ingest(self, event: ChangeEvent) -> None:
        entity_id = event.entity_id
        if entity_id is None:
            logger.warning("Changement %s sur %s sans identifiant, ignoré.", event.type, event.table)
            return
        self.pending[event.table][entity_id] = event
        if not self._timer_armed:
            self._schedule_once(FLUSH_JOB_ID, self.flush_delay, self.flush)
            self._timer_armed = True

    async def flush(self) -> None:
        self._timer_armed = False
        student_changes = list(self.pending[STUDENTS_TABLE].values())
        attendance_changes = list(self.pending[ATTENDANCE_TABLE].values())
        self.pending = {STUDENTS_TABLE: {}, ATTENDANCE_TABLE: {}}
        if not student_changes and not attendance_changes:
            return

        try:
            data = await self.storage.load()
        except StorageError as exc:
            logger.error("Changements temps réel abandonnés, chargement impossible : %s", exc)
            return

        students, removed_students = self._apply_students(list(data.students), student_changes)
        records = self._apply_attendance(list(data.attendance_records), attendance_changes)
        records = merge_attendance(records, self.window)

        try:
            await self.storage.save(OfflineData(
                students=students,
                attendance_records=records,
                removed_student_ids=removed_students,
                removed_attendance_ids=superseded_ids(data.attendance_records, records),
            ))
        except StorageError as exc:
            logger.error("Échec de l'écriture des changements temps réel : %s", exc)
            return

        logger.debug(
            "Temps réel : %d changements élèves, %d changements passages appliqués",
            len(student_changes), len(attendance_changes),
        )
        if self.on_update is not None:
            await self.on_update(students, records)

    @staticmethod
    def _parse_student(row: Optional[Dict[str, Any]]) -> Optional[Student]:
        try:
            return student_from_remote(RemoteStudentRow.model_validate(row or {}))
        except ValidationError as exc:
            logger.warning("Ligne élève temps réel invalide, ignorée : %s", exc)
            return None

    @staticmethod
    def _parse_attendance(row: Optional[Dict[str, Any]]) -> Optional[AttendanceEntry]:
        try:
            return attendance_from_remote(RemoteAttendanceRow.model_validate(row or {}))
        except ValidationError as exc:
            logger.warning("Ligne de passage temps réel invalide, ignorée : %s", exc)
            return None

    def _apply_students(self, students: List[Student], changes: List[ChangeEvent]):
        removed: List[str] = []
        for change in changes:
            if change.type == "DELETE":
                before = len(students)
                students = [s for s in students if s.id != change.entity_id]
                if len(students) != before:
                    removed.append(change.entity_id)
                continue

            student = self._parse_student(change.record)
            if student is None:
                continue
            index = next((i for i, s in enumerate(students) if s.id == student.id), None)
            if index is not None:
                students[index] = student
                continue

            # Élève créé hors ligne puis inséré ailleurs sous la même clé métier
            twin = next(
                (i for i, s in enumerate(students) if s.student_id == student.student_id and is_local_only(s.id)),
                None,
            )
            if twin is not None:
                removed.append(students[twin].id)
                students[twin] = student
            else:
                students.append(student)
        return students, removed

    def _apply_attendance(self, records: List[AttendanceEntry], changes: List[ChangeEvent]) -> List[AttendanceEntry]:
        for change in changes:
            if change.type == "DELETE":
                records = [r for r in records if r.id != change.entity_id]
                continue

            entry = self._parse_attendance(change.record)
            if entry is None:
                continue
            if change.type == "UPDATE":
                if any(r.id == entry.id for r in records):
                    records = [entry if r.id == entry.id else r for r in records]
                else:
                    records = [entry] + records
                continue

            records, replaced = fold_attendance_change(records, entry, self.window)
            if replaced:
                logger.debug("Passage local %s remplacé par %s", replaced, entry.id)
        return records

    def shutdown(self) -> None:
        if self._timer_armed:
            self._cancel(FLUSH_JOB_ID)
            self._timer_armed = False
        self.pending = {STUDENTS_TABLE: {}, ATTENDANCE_TABLE: {}}
