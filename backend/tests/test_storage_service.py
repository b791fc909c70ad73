"""
Tests de la maintenance du stockage local : déduplication, sauvegardes
(rétention de 7), restauration, import de l'ancien fichier JSON.
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from app.schemas.attendance import AttendanceEntry
from app.schemas.offline import OfflineData
from app.schemas.student import Student
from app.services import storage_service
from app.storage.flat_driver import FlatStoreDriver, MemoryKeyValueStore
from app.storage.local_database import LocalDatabase
from app.storage.manager import StorageManager

T = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


# --- Helper ---

def make_entry(id, ts=T) -> AttendanceEntry:
    return AttendanceEntry(id=id, student_id="S123", student_name="Juan Dela Cruz", timestamp=ts)


@pytest.fixture
def db(tmp_path):
    database = LocalDatabase(tmp_path / "library-attendance.db")
    yield database
    database.close()


# ============================================================
# Déduplication
# ============================================================

def test_deduplication():
    storage = StorageManager([FlatStoreDriver(MemoryKeyValueStore())])
    asyncio.run(storage.save(OfflineData(attendance_records=[
        make_entry("a", ts=T + timedelta(milliseconds=200)),
        make_entry("b", ts=T + timedelta(milliseconds=700)),
        make_entry("c", ts=T + timedelta(minutes=10)),
    ])))

    report = asyncio.run(storage_service.deduplicate(storage))

    data = asyncio.run(storage.load())
    assert report == {"before": 3, "after": 2, "removed": 1}
    assert {r.id for r in data.attendance_records} == {"b", "c"}


def test_deduplication_sans_doublon():
    storage = StorageManager([FlatStoreDriver(MemoryKeyValueStore())])
    asyncio.run(storage.save(OfflineData(attendance_records=[make_entry("a")])))

    assert asyncio.run(storage_service.deduplicate(storage))["removed"] == 0


# ============================================================
# Sauvegardes
# ============================================================

def test_sauvegarde_retention(db, tmp_path):
    db.save_students([Student(id="local_1_abc", student_id="S123", name="Juan Dela Cruz")])
    backup_dir = tmp_path / "backups"

    for i in range(9):
        storage_service.create_backup(db, backup_dir, retention=7, now=T + timedelta(days=i))

    backups = storage_service.list_backups(backup_dir)
    assert len(backups) == 7
    assert backups[0].name == "library-attendance-2026-03-10T09-00-00-000000.db"


def test_liste_sans_dossier(tmp_path):
    assert storage_service.list_backups(tmp_path / "absent") == []


def test_restauration(db, tmp_path):
    backup_dir = tmp_path / "backups"
    db.save_students([Student(id="local_1_abc", student_id="S123", name="Juan Dela Cruz")])
    backup = storage_service.create_backup(db, backup_dir, now=T)
    db.save_students([Student(id="local_2_def", student_id="S124", name="Maria Santos")])

    safety = storage_service.restore_backup(db, backup, backup_dir)

    assert [s.student_id for s in db.get_students()] == ["S123"]
    assert safety.exists()
    assert safety != backup


def test_restauration_fichier_absent(db, tmp_path):
    with pytest.raises(FileNotFoundError):
        storage_service.restore_backup(db, tmp_path / "backups" / "absent.db", tmp_path / "backups")


# ============================================================
# Import de l'ancien fichier JSON
# ============================================================

def test_import_json(db, tmp_path):
    legacy = {
        "students": [
            {"id": 1, "studentId": "S123", "name": "Juan Dela Cruz", "contactNumber": "0917"},
            {"student_id": "S124", "name": "Maria Santos", "library": "ibed"},
        ],
        "attendanceRecords": [
            {"id": 7, "studentId": "S123", "studentName": "Juan Dela Cruz", "timestamp": T.isoformat(),
             "type": "check-out"},
        ],
        "lastSync": "2026-03-01T09:00:00+00:00",
    }
    (tmp_path / "library-attendance-data.json").write_text(json.dumps(legacy), encoding="utf-8")

    result = storage_service.import_legacy_json(db, tmp_path)

    assert result == {"migrated": True, "student_count": 2, "attendance_count": 1}
    assert (tmp_path / "library-attendance-data.json.backup").exists()
    assert not (tmp_path / "library-attendance-data.json").exists()
    assert db.get_student_by_business_key("S123").contact_number == "0917"
    assert db.get_attendance_records()[0].type == "check-out"
    assert db.get_metadata("lastSync") == "2026-03-01T09:00:00+00:00"


def test_import_json_absent(db, tmp_path):
    assert storage_service.import_legacy_json(db, tmp_path) == {"migrated": False, "reason": "no_json_file"}


def test_import_json_base_non_vide(db, tmp_path):
    db.save_students([Student(id="local_1_abc", student_id="S123", name="Juan Dela Cruz")])
    (tmp_path / "library-attendance-data.json").write_text("{}", encoding="utf-8")

    result = storage_service.import_legacy_json(db, tmp_path)

    assert result["reason"] == "database_not_empty"
    assert (tmp_path / "library-attendance-data.json").exists()
