"""
Racine de composition : construit explicitement tous les services du noyau
à partir de la configuration. Appelée une seule fois par le lifespan de l'API ;
les routers y accèdent via la dépendance get_container.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

import httpx
from fastapi import Request

from app.config import Settings
from app.scheduler import SyncScheduler
from app.schemas.attendance import AttendanceEntry
from app.schemas.student import Student
from app.services.connectivity import ConnectivityMonitor
from app.services.realtime_service import RealtimeIngestor
from app.services.remote_client import RemoteBackend
from app.services.sync_service import SyncOrchestrator
from app.storage.crypto import FieldCipher, get_or_create_key
from app.storage.embedded_driver import EmbeddedStoreDriver
from app.storage.flat_driver import DbmKeyValueStore, FlatStoreDriver
from app.storage.local_database import LocalDatabase
from app.storage.manager import StorageManager
from app.storage.sqlite_driver import SqliteFileDriver

logger = logging.getLogger(__name__)


@dataclass
class Container:
    settings: Settings
    database: LocalDatabase
    storage: StorageManager
    remote: RemoteBackend
    connectivity: ConnectivityMonitor
    scheduler: SyncScheduler
    orchestrator: SyncOrchestrator
    realtime: RealtimeIngestor

    @property
    def backup_dir(self):
        return self.settings.DATA_DIR / "backups"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def _log_realtime_update(students: List[Student], records: List[AttendanceEntry]) -> None:
    logger.debug("Données locales rafraîchies : %d élèves, %d passages", len(students), len(records))


def build_container(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    clock: Callable[[], datetime] = _utcnow,
) -> Container:
    cipher = None
    if settings.ENCRYPTION_ENABLED:
        cipher = FieldCipher(get_or_create_key(settings.DATA_DIR, settings.DB_ENCRYPTION_KEY))

    database = LocalDatabase(settings.sqlite_path, cipher=cipher)
    storage = StorageManager([
        SqliteFileDriver(
            database,
            enabled=settings.DESKTOP_MODE,
            window_days=settings.LOCAL_WINDOW_DAYS,
            clock=clock,
        ),
        EmbeddedStoreDriver(settings.embedded_store_url, window_days=settings.LOCAL_WINDOW_DAYS, clock=clock),
        FlatStoreDriver(DbmKeyValueStore(settings.flat_store_path)),
    ])

    remote = RemoteBackend(
        settings.REMOTE_URL,
        settings.REMOTE_API_KEY,
        timeout=settings.REMOTE_TIMEOUT_SECONDS,
        page_size=settings.REMOTE_PAGE_SIZE,
        transport=transport,
    )
    connectivity = ConnectivityMonitor(remote.ping)
    scheduler = SyncScheduler()
    orchestrator = SyncOrchestrator(storage, remote, connectivity, settings, clock=clock)
    realtime = RealtimeIngestor(
        storage,
        schedule_once=scheduler.schedule_once,
        cancel=scheduler.cancel,
        flush_delay=settings.REALTIME_FLUSH_SECONDS,
        on_update=_log_realtime_update,
        window=timedelta(seconds=settings.DUPLICATE_WINDOW_SECONDS),
    )

    return Container(
        settings=settings,
        database=database,
        storage=storage,
        remote=remote,
        connectivity=connectivity,
        scheduler=scheduler,
        orchestrator=orchestrator,
        realtime=realtime,
    )


def get_container(request: Request) -> Container:
    """Dépendance FastAPI : le conteneur construit au démarrage."""
    return request.app.state.container
