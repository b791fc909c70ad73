"""
Service des passages exposé à l'interface.

- Écriture locale immédiate avec un identifiant placeholder, puis, si en
  ligne, insertion distante et réécriture vers l'UUID attribué.
- Délai de carence de 5 minutes entre deux actions identiques d'un même
  élève (CooldownError → 429 côté API).
"""

import logging
import math
from datetime import datetime, timezone
from typing import Callable, List, Optional

from app.exceptions import CooldownError, RemoteError
from app.schemas.attendance import AttendanceCreate, AttendanceEntry, StudentStatus
from app.schemas.offline import OfflineData
from app.services.connectivity import ConnectivityMonitor
from app.services.dedup_service import deduplicate_attendance
from app.services.identifiers import generate_placeholder_id
from app.services.remote_client import RemoteBackend
from app.storage.manager import StorageManager

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _matches(entry: AttendanceEntry, identifier: str) -> bool:
    return entry.student_database_id == identifier or entry.student_id == identifier


async def list_attendance(
    storage: StorageManager,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    library: Optional[str] = None,
) -> List[AttendanceEntry]:
    data = await storage.load()
    records = [
        r for r in data.attendance_records
        if (start is None or r.timestamp >= start)
        and (end is None or r.timestamp <= end)
        and (library is None or r.library == library)
    ]
    return deduplicate_attendance(records)


async def _recent_entries(
    storage: StorageManager,
    remote: RemoteBackend,
    connectivity: ConnectivityMonitor,
    identifier: str,
    entry_type: Optional[str] = None,
) -> List[AttendanceEntry]:
    """Passages locaux de l'élève, complétés par le dernier passage distant si en ligne."""
    data = await storage.load()
    entries = [
        r for r in data.attendance_records
        if _matches(r, identifier) and (entry_type is None or r.type == entry_type)
    ]
    if connectivity.online:
        try:
            last_remote = await remote.last_attendance(identifier, entry_type)
        except RemoteError as exc:
            logger.info("Vérification locale uniquement pour %s : %s", identifier, exc)
        else:
            if last_remote is not None:
                entries.append(last_remote)
    return entries


async def add_attendance(
    storage: StorageManager,
    remote: RemoteBackend,
    connectivity: ConnectivityMonitor,
    payload: AttendanceCreate,
    cooldown_seconds: int = 300,
    clock: Callable[[], datetime] = _utcnow,
) -> AttendanceEntry:
    """
    Enregistre un passage.

    Lève CooldownError si la même action a été enregistrée pour cet élève
    il y a moins de `cooldown_seconds`.
    """
    now = clock()
    identifier = payload.student_database_id or payload.student_id
    previous = await _recent_entries(storage, remote, connectivity, identifier, payload.type)
    if previous:
        elapsed = (now - max(r.timestamp for r in previous)).total_seconds()
        if elapsed < cooldown_seconds:
            raise CooldownError(math.ceil(cooldown_seconds - elapsed))

    entry = AttendanceEntry(
        id=generate_placeholder_id(),
        timestamp=payload.timestamp or now,
        **payload.model_dump(exclude={"timestamp"}),
    )
    await storage.save(OfflineData(attendance_records=[entry]))
    logger.info("Passage enregistré localement : %s (%s)", entry.student_name, entry.type)

    if not connectivity.online:
        return entry

    try:
        created = await remote.insert_attendance(entry)
    except RemoteError as exc:
        logger.info("Mode hors ligne : passage conservé localement (%s)", exc)
        return entry

    await storage.save(OfflineData(attendance_records=[created], removed_attendance_ids=[entry.id]))
    return created


async def get_current_status(
    storage: StorageManager,
    remote: RemoteBackend,
    connectivity: ConnectivityMonitor,
    identifier: str,
) -> StudentStatus:
    """checked-in / checked-out selon le dernier passage, unknown sans historique."""
    entries = await _recent_entries(storage, remote, connectivity, identifier)
    if not entries:
        return StudentStatus(identifier=identifier, status="unknown")
    last = max(entries, key=lambda r: r.timestamp)
    status = "checked-in" if last.type == "check-in" else "checked-out"
    return StudentStatus(identifier=identifier, status=status, last_timestamp=last.timestamp)
