"""
Tests du client PostgREST avec un transport httpx simulé :
en-têtes, pagination, filtres d'idempotence, conversion des erreurs.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from app.exceptions import RemoteError
from app.schemas.attendance import AttendanceEntry
from app.schemas.student import Student
from app.services.remote_client import RemoteBackend

T = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
UUID_A = "11111111-1111-4111-8111-111111111111"
UUID_B = "22222222-2222-4222-8222-222222222222"


# --- Helper ---

def attendance_row(id=UUID_B, student_database_id=UUID_A) -> dict:
    return {
        "id": id,
        "student_database_id": student_database_id,
        "student_id": "S123",
        "student_name": "Juan Dela Cruz",
        "timestamp": T.isoformat(),
        "type": "check-in",
    }


def make_backend(handler, page_size=1000) -> RemoteBackend:
    return RemoteBackend(
        "https://example.supabase.co/",
        "anon-key",
        page_size=page_size,
        transport=httpx.MockTransport(handler),
    )


def run(backend, coro):
    async def scenario():
        try:
            return await coro
        finally:
            await backend.aclose()
    return asyncio.run(scenario())


# ============================================================
# Requêtes
# ============================================================

def test_entetes_et_url():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=[])

    backend = make_backend(handler)
    run(backend, backend.fetch_students())

    request = seen[0]
    assert request.url.path == "/rest/v1/students"
    assert request.headers["apikey"] == "anon-key"
    assert request.headers["Authorization"] == "Bearer anon-key"
    assert request.url.params["order"] == "created_at.desc"


def test_pagination():
    offsets = []

    def handler(request):
        offset = int(request.url.params["offset"])
        offsets.append(offset)
        rows = [attendance_row(id=f"{i:08d}-0000-4000-8000-000000000000") for i in range(offset, min(offset + 2, 5))]
        return httpx.Response(200, json=rows)

    backend = make_backend(handler, page_size=2)
    records = run(backend, backend.fetch_attendance())

    assert offsets == [0, 2, 4]
    assert len(records) == 5


def test_fetch_attendance_depuis():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=[])

    backend = make_backend(handler)
    run(backend, backend.fetch_attendance(since=T))

    assert seen[0].url.params["timestamp"] == f"gte.{T.isoformat()}"


def test_insertion_passage():
    bodies = []

    def handler(request):
        bodies.append(request.content)
        return httpx.Response(201, json=[attendance_row(student_database_id=None)])

    entry = AttendanceEntry(
        id="local_1_abc", student_database_id="local_9_xyz", student_id="S123",
        student_name="Juan Dela Cruz", timestamp=T,
    )
    backend = make_backend(handler)
    created = run(backend, backend.insert_attendance(entry))

    assert created.id == UUID_B
    assert b'"student_database_id":null' in bodies[0].replace(b" ", b"")
    assert b"local_1_abc" not in bodies[0]


def test_insertion_eleve():
    def handler(request):
        assert request.method == "POST"
        return httpx.Response(201, json=[{"id": UUID_A, "student_id": "S123", "name": "Juan Dela Cruz"}])

    backend = make_backend(handler)
    created = run(backend, backend.insert_student(Student(id="local_1_abc", student_id="S123", name="Juan Dela Cruz")))

    assert created.id == UUID_A
    assert created.library == "notre-dame"


def test_mise_a_jour_eleve():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=[{"id": UUID_A, "student_id": "S123", "name": "Juan D. Cruz"}])

    backend = make_backend(handler)
    run(backend, backend.update_student(Student(id=UUID_A, student_id="S123", name="Juan D. Cruz")))

    assert seen[0].method == "PATCH"
    assert seen[0].url.params["id"] == f"eq.{UUID_A}"


# ============================================================
# Requête d'idempotence et dernier passage
# ============================================================

def test_recherche_proche_par_uuid():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=[attendance_row()])

    entry = AttendanceEntry(
        id="local_1_abc", student_database_id=UUID_A, student_id="S123",
        student_name="Juan Dela Cruz", timestamp=T,
    )
    backend = make_backend(handler)
    found = run(backend, backend.find_attendance_near(entry, timedelta(seconds=10)))

    params = seen[0].url.params
    assert found.id == UUID_B
    assert params["student_database_id"] == f"eq.{UUID_A}"
    assert params.get_list("timestamp") == [
        f"gte.{(T - timedelta(seconds=10)).isoformat()}",
        f"lte.{(T + timedelta(seconds=10)).isoformat()}",
    ]
    assert params["limit"] == "1"


def test_recherche_proche_par_cle_metier():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=[])

    entry = AttendanceEntry(id="local_1_abc", student_id="S123", student_name="Juan Dela Cruz", timestamp=T)
    backend = make_backend(handler)
    found = run(backend, backend.find_attendance_near(entry))

    assert found is None
    assert seen[0].url.params["student_id"] == "eq.S123"
    assert "student_database_id" not in seen[0].url.params


def test_dernier_passage():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=[attendance_row()])

    backend = make_backend(handler)
    last = run(backend, backend.last_attendance(UUID_A, "check-in"))

    assert last.id == UUID_B
    assert seen[0].url.params["student_database_id"] == f"eq.{UUID_A}"
    assert seen[0].url.params["type"] == "eq.check-in"


# ============================================================
# Erreurs
# ============================================================

def test_erreur_http():
    backend = make_backend(lambda request: httpx.Response(409, text="duplicate key"))

    with pytest.raises(RemoteError) as exc:
        run(backend, backend.fetch_students())

    assert exc.value.status_code == 409


def test_erreur_reseau():
    def handler(request):
        raise httpx.ConnectError("connexion refusée")

    backend = make_backend(handler)

    with pytest.raises(RemoteError) as exc:
        run(backend, backend.fetch_students())

    assert exc.value.status_code is None


def test_ligne_invalide():
    backend = make_backend(lambda request: httpx.Response(200, json=[{"id": UUID_A}]))

    with pytest.raises(RemoteError):
        run(backend, backend.fetch_attendance())


def test_ping():
    ok = make_backend(lambda request: httpx.Response(200, json=[]))
    down = make_backend(lambda request: httpx.Response(503))

    assert run(ok, ok.ping()) is True
    assert run(down, down.ping()) is False
