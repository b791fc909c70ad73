"""
Driver `embedded` : magasin d'objets transactionnel embarqué.

Élèves rangés par clé métier, passages avec clé auto-incrémentée et index
sur la clé métier et l'horodatage, métadonnées clé/valeur. Les valeurs sont
des documents JSON (model_dump du domaine).

- load : tous les élèves, mais seulement la fenêtre récente de passages
  (30 jours par défaut) pour borner la mémoire
- save : une seule transaction ; chaque passage entrant est comparé aux
  lignes existantes par clé composite avant insertion
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import app.models  # noqa: F401 (enregistre les magasins dans EmbeddedBase.metadata)
from app.database import EmbeddedBase, make_engine, make_session_factory
from app.exceptions import StorageError, StorageUnavailableError
from app.models.embedded import AttendanceObject, MetadataObject, StudentObject
from app.models.sync_metadata import DOCUMENTS_KEY, FULL_SYNC_KEY, LAST_SYNC_KEY
from app.schemas.attendance import AttendanceEntry
from app.schemas.offline import OfflineData
from app.schemas.student import Student
from app.storage.base import StorageDriver, to_naive_utc

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EmbeddedStoreDriver(StorageDriver):
    name = "embedded"

    def __init__(self, url: str, window_days: int = 30, clock: Callable[[], datetime] = _utcnow):
        self.url = url
        self.window_days = window_days
        self._clock = clock
        self._session_factory = None

    def _open(self):
        if self._session_factory is None:
            engine = make_engine(self.url)
            EmbeddedBase.metadata.create_all(engine)
            self._session_factory = make_session_factory(engine)
        return self._session_factory

    async def is_available(self) -> bool:
        if not self.url:
            return False
        try:
            await asyncio.to_thread(self._open)
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("Magasin embarqué indisponible : %s", exc)
            return False
        return True

    async def _run(self, func, *args):
        if not self.url:
            raise StorageUnavailableError("Aucun magasin embarqué configuré.")
        try:
            return await asyncio.to_thread(func, *args)
        except (SQLAlchemyError, OSError, ValueError) as exc:
            raise StorageError(f"Échec du magasin embarqué : {exc}") from exc

    async def load(self) -> OfflineData:
        return await self._run(self._load_sync)

    def _load_sync(self) -> OfflineData:
        since = to_naive_utc(self._clock() - timedelta(days=self.window_days))
        with self._open().begin() as session:
            students = [
                Student.model_validate(obj.value)
                for obj in session.execute(select(StudentObject)).scalars()
            ]
            attendance = [
                AttendanceEntry.model_validate(obj.value)
                for obj in session.execute(
                    select(AttendanceObject)
                    .where(AttendanceObject.timestamp >= since)
                    .order_by(AttendanceObject.timestamp.desc())
                ).scalars()
            ]
            last_sync = self._get_meta(session, LAST_SYNC_KEY)
            full_sync = self._get_meta(session, FULL_SYNC_KEY)
            documents = self._get_meta(session, DOCUMENTS_KEY)

        logger.debug(
            "Données chargées depuis le magasin embarqué (%d élèves, %d passages, bootstrap terminé : %s)",
            len(students), len(attendance), bool(full_sync),
        )
        return OfflineData(
            students=students,
            attendance_records=attendance,
            documents=documents or [],
            last_sync=last_sync,
            full_sync_completed=bool(full_sync),
        )

    @staticmethod
    def _get_meta(session: Session, key: str):
        obj = session.get(MetadataObject, key)
        return obj.value if obj else None

    async def save(self, data: OfflineData) -> None:
        await self._run(self._save_sync, data)

    def _save_sync(self, data: OfflineData) -> None:
        with self._open().begin() as session:
            if data.removed_student_ids:
                removed = set(data.removed_student_ids)
                for obj in session.execute(select(StudentObject)).scalars():
                    if obj.value.get("id") in removed:
                        session.delete(obj)
            if data.removed_attendance_ids:
                session.execute(
                    delete(AttendanceObject).where(AttendanceObject.record_id.in_(data.removed_attendance_ids))
                )
            session.flush()

            for student in data.students:
                session.merge(StudentObject(
                    student_id=student.student_id,
                    name=student.name,
                    value=student.model_dump(mode="json"),
                ))

            for entry in data.attendance_records:
                existing = self._find_attendance(session, entry)
                if existing is None:
                    session.add(AttendanceObject(
                        record_id=entry.id,
                        student_id=entry.student_id,
                        timestamp=to_naive_utc(entry.timestamp),
                        type=entry.type,
                        value=entry.model_dump(mode="json"),
                    ))
                else:
                    existing.record_id = entry.id
                    existing.timestamp = to_naive_utc(entry.timestamp)
                    existing.value = entry.model_dump(mode="json")
                session.flush()

            if data.documents is not None:
                session.merge(MetadataObject(key=DOCUMENTS_KEY, value=data.documents))
            if data.last_sync:
                session.merge(MetadataObject(key=LAST_SYNC_KEY, value=data.last_sync))
            if data.full_sync_completed is not None:
                session.merge(MetadataObject(key=FULL_SYNC_KEY, value=data.full_sync_completed))

    @staticmethod
    def _find_attendance(session: Session, entry: AttendanceEntry) -> Optional[AttendanceObject]:
        by_id = session.execute(
            select(AttendanceObject).where(AttendanceObject.record_id == entry.id)
        ).scalars().first()
        if by_id is not None:
            return by_id
        return session.execute(
            select(AttendanceObject).where(
                AttendanceObject.student_id == entry.student_id,
                AttendanceObject.timestamp == to_naive_utc(entry.timestamp),
                AttendanceObject.type == entry.type,
            )
        ).scalars().first()

    async def clear(self) -> None:
        await self._run(self._clear_sync)

    def _clear_sync(self) -> None:
        with self._open().begin() as session:
            session.execute(delete(StudentObject))
            session.execute(delete(AttendanceObject))
            session.execute(delete(MetadataObject))
        logger.info("Magasin embarqué vidé.")
