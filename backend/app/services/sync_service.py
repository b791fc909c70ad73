"""
Orchestrateur de synchronisation local ↔ distant.

Cycle : Idle → (Throttled : ignoré) → Running{push, pull} → Idle
- Déclencheurs : job périodique (60 s), passage hors ligne → en ligne
  (détecté par sondage ou signalé par l'hôte), synchronisation forcée.
- Espacement minimal de 30 s entre deux cycles, sauf synchronisation forcée.
- Un verrou empêche deux cycles simultanés, même forcés.
- Un cycle ne lève jamais : il retourne un SyncReport.

Push : élèves placeholder → insertion distante et réécriture de l'id ;
passages locaux récents (7 jours) → requête d'idempotence ±10 s puis
réécriture vers l'id trouvé ou insertion ; élèves modifiés hors ligne → mise à jour.
Les anciens ids sont envoyés en tombstones, l'enveloppe n'est écrite qu'une fois.

Pull : bootstrap (tout l'historique) tant que full_sync_completed est faux,
sinon fenêtre de 30 jours. Les données locales non synchronisées sont
conservées, les passages fusionnés (fenêtre floue de 10 s).
Un échec réseau interrompt le pull sans modifier l'état local.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from app.exceptions import RemoteError, StorageError
from app.schemas.attendance import AttendanceEntry
from app.schemas.offline import OfflineData
from app.schemas.student import Student
from app.schemas.sync import SyncReport, SyncStatus
from app.services.connectivity import ConnectivityMonitor
from app.services.dedup_service import merge_attendance, superseded_ids
from app.services.identifiers import is_local_only, is_placeholder
from app.services.remote_client import RemoteBackend
from app.storage.manager import StorageManager

logger = logging.getLogger(__name__)

IDLE = "IDLE"
RUNNING = "RUNNING"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncOrchestrator:
    def __init__(
        self,
        storage: StorageManager,
        remote: RemoteBackend,
        connectivity: ConnectivityMonitor,
        settings,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.storage = storage
        self.remote = remote
        self.connectivity = connectivity
        self.settings = settings
        self._clock = clock
        self._lock = asyncio.Lock()
        self._last_cycle_at: Optional[datetime] = None
        self._last_known_online = connectivity.online
        self.last_report: Optional[SyncReport] = None

    @property
    def state(self) -> str:
        return RUNNING if self._lock.locked() else IDLE

    @property
    def duplicate_window(self) -> timedelta:
        return timedelta(seconds=self.settings.DUPLICATE_WINDOW_SECONDS)

    # ------------------------------------------------------------------
    # Déclencheurs
    # ------------------------------------------------------------------

    async def start(self) -> Optional[SyncReport]:
        """Au démarrage : un cycle immédiat si le backend est joignable."""
        online = await self.connectivity.check()
        self._last_known_online = online
        if online:
            logger.info("Démarrage en ligne : vérification des données en attente.")
            return await self.run_cycle()
        return None

    async def startup_check(self) -> Optional[SyncReport]:
        """Vérification différée : rattrape un passage en ligne manqué au démarrage."""
        if self._last_known_online:
            return None
        if await self.connectivity.check():
            logger.info("Démarrage : connexion détectée par la vérification différée.")
            self._last_known_online = True
            return await self.run_cycle()
        return None

    async def on_interval(self) -> Optional[SyncReport]:
        """Job périodique : sonde la connectivité, force un cycle sur transition hors ligne → en ligne."""
        online = await self.connectivity.check()
        transition = online and not self._last_known_online
        self._last_known_online = online
        if transition:
            logger.info("Passage en ligne détecté par sondage : synchronisation forcée.")
            return await self.run_cycle(force=True)
        if online:
            return await self.run_cycle()
        return None

    async def notify_online(self) -> SyncReport:
        logger.info("Connexion rétablie : démarrage de la synchronisation.")
        self.connectivity.mark_online()
        self._last_known_online = True
        return await self.run_cycle()

    def notify_offline(self) -> None:
        self.connectivity.mark_offline()
        self._last_known_online = False

    async def force_sync(self) -> SyncReport:
        return await self.run_cycle(force=True)

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def run_cycle(self, force: bool = False) -> SyncReport:
        now = self._clock()
        if self._lock.locked():
            logger.debug("Cycle déjà en cours, déclenchement ignoré.")
            return SyncReport(status="in_flight", forced=force, started_at=now)

        spacing = timedelta(seconds=self.settings.MIN_SYNC_SPACING_SECONDS)
        if not force and self._last_cycle_at is not None and now - self._last_cycle_at < spacing:
            logger.debug("Synchronisation limitée : trop tôt depuis le dernier cycle.")
            return SyncReport(status="throttled", started_at=now)

        if not self.connectivity.online:
            return SyncReport(status="offline", forced=force, started_at=now)

        async with self._lock:
            self._last_cycle_at = now
            report = SyncReport(status="completed", forced=force, started_at=now)
            try:
                await self._push(report)
                await self._pull(report)
            except (RemoteError, StorageError) as exc:
                report.status = "failed"
                report.errors.append(str(exc))
                logger.error("Échec de la synchronisation automatique : %s", exc)
            else:
                logger.info(
                    "Synchronisation terminée : %d élèves et %d passages envoyés, %d passages reçus",
                    report.pushed_students, report.pushed_attendance, report.pulled_attendance,
                )
            self.last_report = report
            return report

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    def _push_grace(self) -> timedelta:
        # Le tier sqlite n'est pas partagé avec le flux temps réel : pas de délai
        if self.storage.get_current_driver_name() == "sqlite":
            return timedelta(0)
        return timedelta(seconds=self.settings.PUSH_GRACE_SECONDS)

    async def _push(self, report: SyncReport) -> None:
        data = await self.storage.load()
        now = self._clock()
        students: List[Student] = []
        records: List[AttendanceEntry] = []
        removed_students: List[str] = []
        removed_attendance: List[str] = []
        rewritten_ids: Dict[str, str] = {}

        for student in data.students:
            if not is_placeholder(student.id):
                continue
            try:
                created = await self.remote.insert_student(student)
            except RemoteError as exc:
                logger.error("Échec de l'envoi de l'élève %s : %s", student.student_id, exc)
                report.errors.append(str(exc))
                continue
            students.append(created)
            removed_students.append(student.id)
            rewritten_ids[student.id] = created.id
            report.pushed_students += 1
            logger.info("Élève synchronisé : %s (%s → %s)", student.student_id, student.id, created.id)

        since = now - timedelta(days=self.settings.PUSH_WINDOW_DAYS)
        grace = self._push_grace()
        candidates = [
            r for r in data.attendance_records
            if is_local_only(r.id) and r.timestamp >= since and now - r.timestamp >= grace
        ]
        for record in candidates:
            if record.student_database_id in rewritten_ids:
                record = record.model_copy(update={"student_database_id": rewritten_ids[record.student_database_id]})
            try:
                existing = await self.remote.find_attendance_near(record, self.duplicate_window)
                if existing is not None:
                    records.append(existing)
                    report.replaced_attendance += 1
                    logger.info("Passage local remplacé par le passage distant existant : %s", existing.id)
                else:
                    created = await self.remote.insert_attendance(record)
                    records.append(created)
                    report.pushed_attendance += 1
                    logger.info("Passage synchronisé : %s (%s)", record.student_name, record.type)
            except RemoteError as exc:
                logger.error("Échec de l'envoi du passage %s : %s", record.id, exc)
                report.errors.append(str(exc))
                continue
            removed_attendance.append(record.id)

        # Passages non envoyés ce cycle (délai de grâce, hors fenêtre) : lien élève réécrit aussi
        handled = set(removed_attendance) | {r.id for r in records}
        for record in data.attendance_records:
            if record.id in handled or record.student_database_id not in rewritten_ids:
                continue
            records.append(record.model_copy(
                update={"student_database_id": rewritten_ids[record.student_database_id]}
            ))

        for student in data.students:
            if is_local_only(student.id) or not student.dirty:
                continue
            try:
                updated = await self.remote.update_student(student)
            except RemoteError as exc:
                logger.error("Échec de la mise à jour de l'élève %s : %s", student.student_id, exc)
                report.errors.append(str(exc))
                continue
            students.append(updated)
            report.updated_students += 1

        if not (students or records):
            logger.debug("Aucune donnée locale en attente.")
            return

        # Un id déjà présent localement (tiré plus tôt) ne doit pas être supprimé
        kept_ids = {r.id for r in records}
        await self.storage.save(OfflineData(
            students=students,
            attendance_records=records,
            removed_student_ids=removed_students,
            removed_attendance_ids=[i for i in removed_attendance if i not in kept_ids],
        ))

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------

    async def _pull(self, report: SyncReport) -> None:
        data = await self.storage.load()
        now = self._clock()
        bootstrap = not data.full_sync_completed
        report.bootstrap = bootstrap

        if bootstrap:
            logger.info("Premier démarrage : téléchargement de tout l'historique.")
            since = None
        else:
            since = now - timedelta(days=self.settings.PULL_WINDOW_DAYS)

        remote_students = await self.remote.fetch_students()
        remote_records = await self.remote.fetch_attendance(since)
        report.pulled_students = len(remote_students)
        report.pulled_attendance = len(remote_records)

        dirty = {s.id: s for s in data.students if s.dirty and not is_local_only(s.id)}
        students = [dirty.get(s.id, s) for s in remote_students]

        remote_keys = {s.student_id for s in remote_students}
        removed_students: List[str] = []
        for student in data.students:
            if not is_local_only(student.id):
                continue
            if student.student_id in remote_keys:
                # Déjà connu du backend sous cette clé métier : la ligne distante fait foi
                removed_students.append(student.id)
                continue
            students.append(student)

        local_since = now - timedelta(days=self.settings.LOCAL_WINDOW_DAYS)
        local_only = [
            r for r in data.attendance_records
            if is_local_only(r.id) and r.timestamp >= local_since
        ]
        merged = merge_attendance(remote_records + local_only, self.duplicate_window)

        await self.storage.save(OfflineData(
            students=students,
            attendance_records=merged,
            last_sync=now.isoformat(),
            full_sync_completed=True,
            removed_student_ids=removed_students,
            removed_attendance_ids=superseded_ids(local_only, merged),
        ))

    # ------------------------------------------------------------------
    # État
    # ------------------------------------------------------------------

    async def status(self) -> SyncStatus:
        data = await self.storage.load()
        return SyncStatus(
            online=self.connectivity.online,
            running=self.state == RUNNING,
            storage_engine=self.storage.get_current_driver_name(),
            last_sync=data.last_sync,
            full_sync_completed=bool(data.full_sync_completed),
            last_report=self.last_report,
        )
