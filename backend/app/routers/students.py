"""
Router pour les élèves.
GET  /api/v1/students              : liste (filtre bibliothèque optionnel)
POST /api/v1/students              : inscription
PUT  /api/v1/students/{student_id} : modification d'un profil
GET  /api/v1/students/rfid/{rfid}  : recherche par badge RFID
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException

from app.container import Container, get_container
from app.schemas.student import Student, StudentCreate, StudentUpdate
from app.services import student_service

router = APIRouter(prefix="/api/v1/students", tags=["Élèves"])


@router.get("", response_model=List[Student], summary="Lister les élèves")
async def list_students(library: Optional[str] = None, container: Container = Depends(get_container)):
    """Retourne les élèves triés par nom, depuis le stockage local."""
    return await student_service.list_students(container.storage, library)


@router.post("", response_model=Student, status_code=201, summary="Inscrire un élève")
async def create_student(data: StudentCreate, container: Container = Depends(get_container)):
    """
    Inscrit un élève. En ligne, l'élève est créé directement sur le backend ;
    hors ligne, il reçoit un identifiant provisoire `local_...` et sera envoyé
    au prochain cycle de synchronisation.
    """
    try:
        return await student_service.register_student(
            container.storage, container.remote, container.connectivity, data
        )
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.put("/{student_id}", response_model=Student, summary="Modifier un élève")
async def update_student(student_id: str, data: StudentUpdate, container: Container = Depends(get_container)):
    """Met à jour les champs fournis. Hors ligne, la modification est marquée pour le prochain push."""
    student = await student_service.update_student(
        container.storage, container.remote, container.connectivity, student_id, data
    )
    if student is None:
        raise HTTPException(status_code=404, detail="Élève introuvable.")
    return student


@router.get("/rfid/{rfid}", response_model=Student, summary="Rechercher un élève par badge RFID")
async def get_student_by_rfid(rfid: str, container: Container = Depends(get_container)):
    student = await student_service.find_by_rfid(container.storage, rfid)
    if student is None:
        raise HTTPException(status_code=404, detail="Aucun élève associé à ce badge.")
    return student
