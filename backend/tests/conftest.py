"""
Configuration partagée pour tous les tests.
Remplace le conteneur de services pour éviter tout accès disque ou réseau réel
pendant les tests d'API, et fournit un backend distant en mémoire pour les
tests de services.
"""

import asyncio
import uuid
from datetime import timedelta
from typing import List, Optional, Set
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from app.container import get_container
from app.exceptions import RemoteError
from app.main import app
from app.schemas.attendance import AttendanceEntry
from app.schemas.student import Student
from app.services.identifiers import is_uuid


class FakeRemote:
    """Backend distant en mémoire, mêmes méthodes que RemoteBackend."""

    def __init__(self):
        self.students: List[Student] = []
        self.attendance: List[AttendanceEntry] = []
        self.next_ids: List[str] = []
        self.fail = False
        self.failing_student_ids: Set[str] = set()
        self.fetch_since = "non appelé"
        self.gate: Optional[asyncio.Event] = None

    def _check(self, student_id: Optional[str] = None) -> None:
        if self.fail:
            raise RemoteError("Backend injoignable")
        if student_id in self.failing_student_ids:
            raise RemoteError(f"Écriture refusée pour {student_id}")

    def _new_id(self) -> str:
        return self.next_ids.pop(0) if self.next_ids else str(uuid.uuid4())

    async def insert_student(self, student: Student) -> Student:
        self._check(student.student_id)
        created = student.model_copy(update={"id": self._new_id(), "dirty": False})
        self.students.append(created)
        return created

    async def update_student(self, student: Student) -> Student:
        self._check(student.student_id)
        updated = student.model_copy(update={"dirty": False})
        self.students = [updated if s.id == student.id else s for s in self.students]
        return updated

    async def fetch_students(self) -> List[Student]:
        self._check()
        if self.gate is not None:
            await self.gate.wait()
        return list(self.students)

    async def fetch_attendance(self, since=None) -> List[AttendanceEntry]:
        self._check()
        self.fetch_since = since
        return [r for r in self.attendance if since is None or r.timestamp >= since]

    async def insert_attendance(self, entry: AttendanceEntry) -> AttendanceEntry:
        self._check(entry.student_id)
        db_id = entry.student_database_id if is_uuid(entry.student_database_id) else None
        created = entry.model_copy(update={"id": self._new_id(), "student_database_id": db_id})
        self.attendance.append(created)
        return created

    def _same_student(self, record: AttendanceEntry, identifier: str) -> bool:
        if is_uuid(identifier):
            return record.student_database_id == identifier
        return record.student_id == identifier

    async def find_attendance_near(self, entry: AttendanceEntry, window=timedelta(seconds=10)):
        self._check()
        identifier = entry.student_database_id if is_uuid(entry.student_database_id) else entry.student_id
        for record in self.attendance:
            if (
                self._same_student(record, identifier)
                and record.type == entry.type
                and abs(record.timestamp - entry.timestamp) <= window
            ):
                return record
        return None

    async def last_attendance(self, identifier: str, entry_type: Optional[str] = None):
        self._check()
        matches = [
            r for r in self.attendance
            if self._same_student(r, identifier) and (entry_type is None or r.type == entry_type)
        ]
        return max(matches, key=lambda r: r.timestamp) if matches else None

    async def ping(self) -> bool:
        return not self.fail


@pytest.fixture
def fake_remote():
    return FakeRemote()


def make_container_mock() -> MagicMock:
    """Conteneur factice : les méthodes asynchrones appelées au démarrage sont des AsyncMock."""
    container = MagicMock()
    container.storage.init = AsyncMock()
    container.storage.get_current_driver_name.return_value = "flat"
    container.orchestrator.start = AsyncMock(return_value=None)
    container.remote.aclose = AsyncMock()
    container.settings.COOLDOWN_SECONDS = 300
    container.settings.BACKUP_RETENTION = 7
    return container


@pytest.fixture
def container():
    return make_container_mock()


@pytest.fixture
def client(container):
    """Client HTTP de test avec le conteneur mocké."""
    app.dependency_overrides[get_container] = lambda: container
    with patch("app.main.build_container", return_value=container):
        with TestClient(app) as c:
            yield c
    app.dependency_overrides.clear()
