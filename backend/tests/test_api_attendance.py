"""
Tests d'intégration API pour les passages (check-in / check-out).
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

from app.exceptions import CooldownError
from app.schemas.attendance import AttendanceEntry, StudentStatus

T = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


# --- Helpers ---

def make_entry(**kwargs) -> AttendanceEntry:
    return AttendanceEntry(
        id=kwargs.get("id", "local_1_abc"),
        student_id=kwargs.get("student_id", "S123"),
        student_name=kwargs.get("student_name", "Juan Dela Cruz"),
        timestamp=kwargs.get("timestamp", T),
        type=kwargs.get("type", "check-in"),
    )


# ============================================================
# POST /api/v1/attendance
# ============================================================

def test_enregistrer_passage(client, container):
    """Passage valide → 201 ; le délai de carence configuré est transmis."""
    mock = AsyncMock(return_value=make_entry())
    with patch("app.routers.attendance.attendance_service.add_attendance", new=mock):
        resp = client.post("/api/v1/attendance", json={
            "student_id": "S123",
            "student_name": "Juan Dela Cruz",
            "type": "check-in",
            "method": "barcode",
        })

    assert resp.status_code == 201
    assert resp.json()["id"] == "local_1_abc"
    assert mock.await_args.kwargs["cooldown_seconds"] == 300


def test_passage_en_carence(client):
    """Même action il y a moins de 5 minutes → 429 avec le temps restant."""
    mock = AsyncMock(side_effect=CooldownError(240))
    with patch("app.routers.attendance.attendance_service.add_attendance", new=mock):
        resp = client.post("/api/v1/attendance", json={"student_id": "S123", "student_name": "Juan Dela Cruz"})

    assert resp.status_code == 429
    assert "patienter" in resp.json()["detail"]


def test_type_invalide(client):
    resp = client.post("/api/v1/attendance", json={
        "student_id": "S123", "student_name": "Juan Dela Cruz", "type": "entrée",
    })
    assert resp.status_code == 422


def test_methode_invalide(client):
    resp = client.post("/api/v1/attendance", json={
        "student_id": "S123", "student_name": "Juan Dela Cruz", "method": "nfc",
    })
    assert resp.status_code == 422


# ============================================================
# GET /api/v1/attendance
# ============================================================

def test_lister_passages(client, container):
    mock = AsyncMock(return_value=[make_entry(), make_entry(id="local_2_def", type="check-out")])
    with patch("app.routers.attendance.attendance_service.list_attendance", new=mock):
        resp = client.get("/api/v1/attendance?library=notre-dame&start=2026-03-01T00:00:00Z")

    assert resp.status_code == 200
    assert len(resp.json()) == 2
    storage, start, end, library = mock.await_args.args
    assert storage is container.storage
    assert start == datetime(2026, 3, 1, tzinfo=timezone.utc)
    assert end is None
    assert library == "notre-dame"


# ============================================================
# GET /api/v1/attendance/status/{identifier}
# ============================================================

def test_statut_courant(client):
    status = StudentStatus(identifier="S123", status="checked-in", last_timestamp=T)
    with patch("app.routers.attendance.attendance_service.get_current_status", new=AsyncMock(return_value=status)):
        resp = client.get("/api/v1/attendance/status/S123")

    assert resp.status_code == 200
    assert resp.json()["status"] == "checked-in"
