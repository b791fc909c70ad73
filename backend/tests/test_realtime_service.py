"""
Tests de l'ingestion temps réel : file d'attente par entité, minuteur unique,
application groupée des INSERT / UPDATE / DELETE à l'enveloppe locale.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

from app.schemas.attendance import AttendanceEntry
from app.schemas.offline import OfflineData
from app.schemas.student import Student
from app.schemas.sync import ChangeEvent
from app.services.realtime_service import FLUSH_JOB_ID, RealtimeIngestor
from app.storage.flat_driver import FlatStoreDriver, MemoryKeyValueStore
from app.storage.manager import StorageManager

T = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
UUID_A = "11111111-1111-4111-8111-111111111111"
UUID_B = "22222222-2222-4222-8222-222222222222"


# --- Helper ---

def student_row(id=UUID_A, student_id="S123", name="Juan Dela Cruz") -> dict:
    return {"id": id, "student_id": student_id, "name": name, "library": "notre-dame"}


def attendance_row(id=UUID_B, ts=T, type="check-in", course=None) -> dict:
    return {
        "id": id,
        "student_id": "S123",
        "student_name": "Juan Dela Cruz",
        "timestamp": ts.isoformat(),
        "type": type,
        "course": course,
    }


def make_ingestor(on_update=None):
    storage = StorageManager([FlatStoreDriver(MemoryKeyValueStore())])
    schedule_once = MagicMock()
    cancel = MagicMock()
    ingestor = RealtimeIngestor(storage, schedule_once, cancel, on_update=on_update)
    return ingestor, schedule_once, cancel


def seed(storage, **fields):
    asyncio.run(storage.save(OfflineData(**fields)))


def load(storage) -> OfflineData:
    return asyncio.run(storage.load())


# ============================================================
# File d'attente et minuteur
# ============================================================

def test_minuteur_arme_une_seule_fois():
    ingestor, schedule_once, _ = make_ingestor()

    ingestor.ingest(ChangeEvent(type="INSERT", table="students", record=student_row()))
    ingestor.ingest(ChangeEvent(type="INSERT", table="students", record=student_row(id=UUID_B, student_id="S124")))

    schedule_once.assert_called_once()
    assert schedule_once.call_args.args[0] == FLUSH_JOB_ID
    assert ingestor.pending_count() == 2


def test_changements_reduits_par_entite():
    ingestor, _, _ = make_ingestor()

    ingestor.ingest(ChangeEvent(type="INSERT", table="students", record=student_row()))
    ingestor.ingest(ChangeEvent(type="UPDATE", table="students", record=student_row(name="Juan D. Cruz")))

    assert ingestor.pending_count() == 1


def test_changement_sans_id_ignore():
    ingestor, schedule_once, _ = make_ingestor()

    ingestor.ingest(ChangeEvent(type="DELETE", table="attendance_records", old_record={}))

    schedule_once.assert_not_called()
    assert ingestor.pending_count() == 0


def test_shutdown_annule_le_minuteur():
    ingestor, _, cancel = make_ingestor()
    ingestor.ingest(ChangeEvent(type="INSERT", table="students", record=student_row()))

    ingestor.shutdown()

    cancel.assert_called_once_with(FLUSH_JOB_ID)
    assert ingestor.pending_count() == 0


def test_minuteur_rearme_apres_flush():
    ingestor, schedule_once, _ = make_ingestor()
    ingestor.ingest(ChangeEvent(type="INSERT", table="students", record=student_row()))
    asyncio.run(ingestor.flush())

    ingestor.ingest(ChangeEvent(type="INSERT", table="students", record=student_row(id=UUID_B, student_id="S124")))

    assert schedule_once.call_count == 2


# ============================================================
# Application des changements élèves
# ============================================================

def test_insert_update_delete_eleves():
    ingestor, _, _ = make_ingestor()
    ingestor.ingest(ChangeEvent(type="INSERT", table="students", record=student_row()))
    ingestor.ingest(ChangeEvent(type="INSERT", table="students", record=student_row(id=UUID_B, student_id="S124")))
    asyncio.run(ingestor.flush())

    ingestor.ingest(ChangeEvent(type="UPDATE", table="students", record=student_row(name="Juan D. Cruz")))
    ingestor.ingest(ChangeEvent(type="DELETE", table="students", old_record={"id": UUID_B}))
    asyncio.run(ingestor.flush())

    students = load(ingestor.storage).students
    assert [(s.id, s.name) for s in students] == [(UUID_A, "Juan D. Cruz")]


def test_insert_remplace_le_jumeau_local():
    ingestor, _, _ = make_ingestor()
    seed(ingestor.storage, students=[Student(id="local_1_abc", student_id="S123", name="Juan Dela Cruz")])

    ingestor.ingest(ChangeEvent(type="INSERT", table="students", record=student_row()))
    asyncio.run(ingestor.flush())

    assert [s.id for s in load(ingestor.storage).students] == [UUID_A]


def test_update_eleve_absent_ajoute():
    """UPDATE d'un élève inconnu localement → inséré."""
    ingestor, _, _ = make_ingestor()

    ingestor.ingest(ChangeEvent(type="UPDATE", table="students", record=student_row(name="Juan D. Cruz")))
    asyncio.run(ingestor.flush())

    students = load(ingestor.storage).students
    assert [(s.id, s.name) for s in students] == [(UUID_A, "Juan D. Cruz")]


def test_insert_eleve_present_remplace():
    """INSERT redélivré pour un id déjà présent → contenu remplacé."""
    ingestor, _, _ = make_ingestor()
    seed(ingestor.storage, students=[Student(id=UUID_A, student_id="S123", name="Ancien nom")])

    ingestor.ingest(ChangeEvent(type="INSERT", table="students", record=student_row(name="Nouveau nom")))
    asyncio.run(ingestor.flush())

    assert [s.name for s in load(ingestor.storage).students] == ["Nouveau nom"]


# ============================================================
# Application des changements de passages
# ============================================================

def test_insert_distant_remplace_le_placeholder_proche():
    ingestor, _, _ = make_ingestor()
    seed(ingestor.storage, attendance_records=[
        AttendanceEntry(id="local_2_def", student_id="S123", student_name="Juan Dela Cruz", timestamp=T),
    ])

    ingestor.ingest(ChangeEvent(
        type="INSERT", table="attendance_records", record=attendance_row(ts=T + timedelta(seconds=3)),
    ))
    asyncio.run(ingestor.flush())

    assert [r.id for r in load(ingestor.storage).attendance_records] == [UUID_B]


def test_update_et_delete_passages():
    ingestor, _, _ = make_ingestor()
    ingestor.ingest(ChangeEvent(type="INSERT", table="attendance_records", record=attendance_row()))
    ingestor.ingest(ChangeEvent(
        type="INSERT", table="attendance_records", record=attendance_row(id=UUID_A, ts=T + timedelta(hours=1)),
    ))
    asyncio.run(ingestor.flush())

    ingestor.ingest(ChangeEvent(type="UPDATE", table="attendance_records", record=attendance_row(course="BSIT")))
    ingestor.ingest(ChangeEvent(type="DELETE", table="attendance_records", old_record={"id": UUID_A}))
    asyncio.run(ingestor.flush())

    records = load(ingestor.storage).attendance_records
    assert [(r.id, r.course) for r in records] == [(UUID_B, "BSIT")]


def test_update_passage_absent_ajoute():
    ingestor, _, _ = make_ingestor()

    ingestor.ingest(ChangeEvent(type="UPDATE", table="attendance_records", record=attendance_row(course="BSIT")))
    asyncio.run(ingestor.flush())

    records = load(ingestor.storage).attendance_records
    assert [(r.id, r.course) for r in records] == [(UUID_B, "BSIT")]


def test_ligne_invalide_ignoree():
    ingestor, _, _ = make_ingestor()

    ingestor.ingest(ChangeEvent(type="INSERT", table="attendance_records", record={"id": UUID_A}))
    asyncio.run(ingestor.flush())

    assert load(ingestor.storage).attendance_records == []


def test_callback_apres_ecriture():
    on_update = AsyncMock()
    ingestor, _, _ = make_ingestor(on_update=on_update)

    ingestor.ingest(ChangeEvent(type="INSERT", table="students", record=student_row()))
    asyncio.run(ingestor.flush())

    on_update.assert_awaited_once()
    students, records = on_update.await_args.args
    assert [s.id for s in students] == [UUID_A]
    assert records == []


def test_flush_sans_changement():
    on_update = AsyncMock()
    ingestor, _, _ = make_ingestor(on_update=on_update)

    asyncio.run(ingestor.flush())

    on_update.assert_not_awaited()
