"""
Driver `sqlite` : base relationnelle fichier dans le répertoire privé de l'application.

Disponible uniquement sur un hôte avec accès direct au système de fichiers
(mode bureau) ; c'est le seul tier où le stockage local n'est pas partagé.
"""

import asyncio
import json
import logging
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from app.exceptions import StorageError, StorageUnavailableError
from app.models.sync_metadata import DOCUMENTS_KEY, FULL_SYNC_KEY, LAST_SYNC_KEY
from app.schemas.offline import OfflineData
from app.storage.base import StorageDriver
from app.storage.local_database import LocalDatabase

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SqliteFileDriver(StorageDriver):
    name = "sqlite"

    def __init__(
        self,
        database: LocalDatabase,
        enabled: bool = True,
        window_days: int = 30,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.database = database
        self.enabled = enabled
        self.window_days = window_days
        self._clock = clock

    async def is_available(self) -> bool:
        if not self.enabled:
            return False
        directory: Path = self.database.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError:
            return False
        return os.access(directory, os.W_OK)

    async def _run(self, func, *args):
        if not await self.is_available():
            raise StorageUnavailableError("Stockage SQLite indisponible (hôte sans accès disque).")
        try:
            return await asyncio.to_thread(func, *args)
        except (SQLAlchemyError, OSError, ValueError) as exc:
            raise StorageError(f"Échec SQLite : {exc}") from exc

    async def load(self) -> OfflineData:
        data = await self._run(self._load_sync)
        logger.debug(
            "Données chargées depuis SQLite (%d élèves, %d passages)",
            len(data.students), len(data.attendance_records),
        )
        return data

    def _load_sync(self) -> OfflineData:
        db = self.database
        db.init()
        since = self._clock() - timedelta(days=self.window_days)
        documents_raw: Optional[str] = db.get_metadata(DOCUMENTS_KEY)
        return OfflineData(
            students=db.get_students(),
            attendance_records=db.get_attendance_records(start=since),
            documents=json.loads(documents_raw) if documents_raw else [],
            last_sync=db.get_metadata(LAST_SYNC_KEY),
            full_sync_completed=db.get_metadata(FULL_SYNC_KEY) == "true",
        )

    async def save(self, data: OfflineData) -> None:
        await self._run(self._save_sync, data)

    def _save_sync(self, data: OfflineData) -> None:
        db = self.database
        db.init()
        db.delete_students(data.removed_student_ids)
        db.delete_attendance(data.removed_attendance_ids)
        if data.students:
            db.save_students(data.students)
        if data.attendance_records:
            db.save_attendance_records(data.attendance_records)
        if data.documents is not None:
            db.set_metadata(DOCUMENTS_KEY, json.dumps(data.documents, default=str))
        if data.last_sync:
            db.set_metadata(LAST_SYNC_KEY, data.last_sync)
        if data.full_sync_completed is not None:
            db.set_metadata(FULL_SYNC_KEY, "true" if data.full_sync_completed else "false")
        logger.debug(
            "SQLite : %d élèves, %d passages enregistrés",
            len(data.students), len(data.attendance_records),
        )

    async def clear(self) -> None:
        await self._run(self.database.clear_all)
