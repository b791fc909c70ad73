"""
Router pour la synchronisation local ↔ distant.
L'hôte de l'interface y signale les changements de connectivité et peut
forcer un cycle.
"""

from fastapi import APIRouter, Depends

from app.container import Container, get_container
from app.schemas.sync import SyncReport, SyncStatus

router = APIRouter(prefix="/api/sync", tags=["Synchronisation"])


@router.get("/status", response_model=SyncStatus, summary="État de la synchronisation")
async def get_sync_status(container: Container = Depends(get_container)):
    return await container.orchestrator.status()


@router.post("/force", response_model=SyncReport, summary="Forcer un cycle de synchronisation")
async def force_sync(container: Container = Depends(get_container)):
    """Ignore l'espacement minimal ; refusé (in_flight) si un cycle est déjà en cours."""
    return await container.orchestrator.force_sync()


@router.post("/online", response_model=SyncReport, summary="Signaler le retour en ligne")
async def notify_online(container: Container = Depends(get_container)):
    return await container.orchestrator.notify_online()


@router.post("/offline", response_model=SyncStatus, summary="Signaler la perte de connexion")
async def notify_offline(container: Container = Depends(get_container)):
    container.orchestrator.notify_offline()
    return await container.orchestrator.status()
