"""
Router pour les passages (check-in / check-out).
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException

from app.container import Container, get_container
from app.exceptions import CooldownError
from app.schemas.attendance import AttendanceCreate, AttendanceEntry, StudentStatus
from app.services import attendance_service

router = APIRouter(prefix="/api/v1/attendance", tags=["Passages"])


@router.get("", response_model=List[AttendanceEntry], summary="Lister les passages")
async def list_attendance(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    library: Optional[str] = None,
    container: Container = Depends(get_container),
):
    """Passages locaux, du plus récent au plus ancien, doublons exacts exclus."""
    return await attendance_service.list_attendance(container.storage, start, end, library)


@router.post("", response_model=AttendanceEntry, status_code=201, summary="Enregistrer un passage")
async def create_attendance(data: AttendanceCreate, container: Container = Depends(get_container)):
    """
    Enregistre un check-in ou un check-out.

    Refusé (429) si la même action a été enregistrée pour cet élève il y a
    moins de 5 minutes.
    """
    try:
        return await attendance_service.add_attendance(
            container.storage,
            container.remote,
            container.connectivity,
            data,
            cooldown_seconds=container.settings.COOLDOWN_SECONDS,
        )
    except CooldownError as e:
        raise HTTPException(status_code=429, detail=str(e))


@router.get("/status/{identifier}", response_model=StudentStatus, summary="Statut courant d'un élève")
async def get_status(identifier: str, container: Container = Depends(get_container)):
    return await attendance_service.get_current_status(
        container.storage, container.remote, container.connectivity, identifier
    )
