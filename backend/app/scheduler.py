"""
Planificateur APScheduler des tâches de synchronisation.

Minuteurs nommés :
- auto_sync            : job périodique (60 s) → SyncOrchestrator.on_interval
- startup_online_check : vérification différée (2 s) d'un passage en ligne manqué au démarrage
- realtime_flush       : écriture groupée des changements temps réel (ponctuel, 2 s)

Le planificateur tourne sur la boucle asyncio de l'application : les jobs
sont des coroutines exécutées sur le même fil que le reste du noyau.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = logging.getLogger(__name__)

AUTO_SYNC_JOB_ID = "auto_sync"
STARTUP_CHECK_JOB_ID = "startup_online_check"

Job = Callable[[], Awaitable[object]]


async def _run_job(job_id: str, func: Job) -> None:
    """Enveloppe des tâches planifiées : une erreur est journalisée, jamais propagée."""
    try:
        await func()
    except Exception as exc:
        logger.error("Erreur lors de la tâche planifiée %s : %s", job_id, exc, exc_info=True)


class SyncScheduler:
    def __init__(self, scheduler: Optional[AsyncIOScheduler] = None):
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)

    def start_auto_sync(self, on_interval: Job, interval_seconds: int) -> None:
        self.scheduler.add_job(
            _run_job,
            trigger="interval",
            seconds=interval_seconds,
            args=[AUTO_SYNC_JOB_ID, on_interval],
            id=AUTO_SYNC_JOB_ID,
            replace_existing=True,
        )
        logger.info("Synchronisation automatique toutes les %d s.", interval_seconds)

    def schedule_once(self, job_id: str, delay_seconds: float, func: Job) -> None:
        """Arme (ou réarme) un minuteur ponctuel nommé."""
        self.scheduler.add_job(
            _run_job,
            trigger="date",
            run_date=datetime.now(timezone.utc) + timedelta(seconds=delay_seconds),
            args=[job_id, func],
            id=job_id,
            replace_existing=True,
        )

    def cancel(self, job_id: str) -> None:
        try:
            self.scheduler.remove_job(job_id)
        except JobLookupError:
            logger.debug("Minuteur %s déjà échu ou absent.", job_id)

    def start(self) -> None:
        """Démarre le planificateur (appelé au démarrage de l'API, boucle asyncio active)."""
        self.scheduler.start()
        logger.info("Scheduler démarré.")

    def stop(self) -> None:
        """Arrête le planificateur proprement (appelé à l'arrêt de l'API)."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler arrêté.")
