"""
Router recevant le flux de changements du backend (webhook de base de données).
Les changements sont mis en file et appliqués en lot par le minuteur realtime_flush.
"""

from fastapi import APIRouter, Depends

from app.container import Container, get_container
from app.schemas.sync import ChangeEvent

router = APIRouter(prefix="/api/realtime", tags=["Temps réel"])


@router.post("/changes", status_code=202, summary="Notifier un changement distant")
async def receive_change(event: ChangeEvent, container: Container = Depends(get_container)):
    container.realtime.ingest(event)
    return {"pending": container.realtime.pending_count()}
