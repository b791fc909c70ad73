"""
Tests d'intégration API pour les élèves.
Testent les URLs, les codes HTTP, la validation et le format des réponses.
"""

from unittest.mock import AsyncMock, patch

from app.schemas.student import Student

UUID_A = "11111111-1111-4111-8111-111111111111"


# --- Helpers ---

def make_student(**kwargs) -> Student:
    return Student(
        id=kwargs.get("id", UUID_A),
        student_id=kwargs.get("student_id", "S123"),
        name=kwargs.get("name", "Juan Dela Cruz"),
        course=kwargs.get("course", "BSIT"),
        rfid=kwargs.get("rfid", None),
        library=kwargs.get("library", "notre-dame"),
    )


# ============================================================
# GET /api/v1/students
# ============================================================

class TestListStudents:
    def test_liste_vide(self, client):
        with patch("app.routers.students.student_service.list_students", new=AsyncMock(return_value=[])):
            resp = client.get("/api/v1/students")

        assert resp.status_code == 200
        assert resp.json() == []

    def test_liste_filtree_par_bibliotheque(self, client, container):
        mock = AsyncMock(return_value=[make_student(library="ibed")])
        with patch("app.routers.students.student_service.list_students", new=mock):
            resp = client.get("/api/v1/students?library=ibed")

        assert resp.status_code == 200
        assert resp.json()[0]["library"] == "ibed"
        mock.assert_awaited_once_with(container.storage, "ibed")


# ============================================================
# POST /api/v1/students
# ============================================================

class TestCreateStudent:
    def test_inscription(self, client):
        """Inscription valide → 201 avec l'identifiant attribué."""
        mock = AsyncMock(return_value=make_student(id="local_1_abc"))
        with patch("app.routers.students.student_service.register_student", new=mock):
            resp = client.post("/api/v1/students", json={"student_id": "S123", "name": "Juan Dela Cruz"})

        assert resp.status_code == 201
        assert resp.json()["id"] == "local_1_abc"

    def test_inscription_doublon(self, client):
        """Clé métier déjà utilisée → 409."""
        mock = AsyncMock(side_effect=ValueError("Un élève avec l'identifiant S123 existe déjà."))
        with patch("app.routers.students.student_service.register_student", new=mock):
            resp = client.post("/api/v1/students", json={"student_id": "S123", "name": "Juan Dela Cruz"})

        assert resp.status_code == 409
        assert "S123" in resp.json()["detail"]

    def test_nom_vide(self, client):
        resp = client.post("/api/v1/students", json={"student_id": "S123", "name": "   "})
        assert resp.status_code == 422

    def test_bibliotheque_invalide(self, client):
        resp = client.post("/api/v1/students", json={"student_id": "S123", "name": "Juan", "library": "autre"})
        assert resp.status_code == 422


# ============================================================
# PUT /api/v1/students/{student_id}
# ============================================================

class TestUpdateStudent:
    def test_modification(self, client):
        mock = AsyncMock(return_value=make_student(name="Juan D. Cruz"))
        with patch("app.routers.students.student_service.update_student", new=mock):
            resp = client.put("/api/v1/students/S123", json={"name": "Juan D. Cruz"})

        assert resp.status_code == 200
        assert resp.json()["name"] == "Juan D. Cruz"

    def test_modification_introuvable(self, client):
        with patch("app.routers.students.student_service.update_student", new=AsyncMock(return_value=None)):
            resp = client.put("/api/v1/students/S999", json={"name": "X"})

        assert resp.status_code == 404


# ============================================================
# GET /api/v1/students/rfid/{rfid}
# ============================================================

class TestFindByRfid:
    def test_badge_connu(self, client):
        mock = AsyncMock(return_value=make_student(rfid="RF-001"))
        with patch("app.routers.students.student_service.find_by_rfid", new=mock):
            resp = client.get("/api/v1/students/rfid/RF-001")

        assert resp.status_code == 200
        assert resp.json()["student_id"] == "S123"

    def test_badge_inconnu(self, client):
        with patch("app.routers.students.student_service.find_by_rfid", new=AsyncMock(return_value=None)):
            resp = client.get("/api/v1/students/rfid/RF-404")

        assert resp.status_code == 404
