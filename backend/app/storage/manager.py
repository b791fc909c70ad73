"""
StorageManager : choisit, initialise et bascule entre les drivers locaux.

Ordre de préférence : sqlite → embedded → flat.
- init : adopte le premier driver disponible qui réussit un load d'essai
- load / save / clear : délèguent au driver actif ; en cas d'échec, essaient
  les drivers de préférence inférieure et basculent définitivement sur le
  premier qui réussit (pas de retour automatique vers un driver supérieur)
- si tous échouent : NoStorageAvailableError ; l'appelant peut basculer
  en mode mémoire (degrade_to_memory)
"""

import logging
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

from app.exceptions import NoStorageAvailableError, StorageError, StorageUnavailableError
from app.schemas.offline import OfflineData, StorageStatus
from app.storage.base import StorageDriver
from app.storage.flat_driver import MemoryStoreDriver

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StorageManager:
    def __init__(self, drivers: Sequence[StorageDriver]):
        self.drivers: List[StorageDriver] = list(drivers)
        self.current_driver: Optional[StorageDriver] = None

    async def init(self) -> None:
        if self.current_driver is not None:
            return

        for driver in self.drivers:
            if not await driver.is_available():
                logger.info("Driver %s indisponible, suivant.", driver.name)
                continue
            try:
                await driver.load()
            except StorageError as exc:
                logger.warning("Driver %s : échec du chargement d'essai (%s)", driver.name, exc)
                continue
            self.current_driver = driver
            if driver is not self.drivers[0]:
                logger.warning("Stockage en mode repli : %s", driver.name)
            logger.info("Moteur de stockage initialisé : %s", driver.name)
            return

        raise NoStorageAvailableError("Aucun driver de stockage disponible.")

    def degrade_to_memory(self) -> None:
        """Aucun driver persistant : les données ne vivent plus que le temps du processus."""
        driver = MemoryStoreDriver()
        self.drivers = [driver]
        self.current_driver = driver
        logger.critical("Aucun stockage persistant disponible : mode mémoire, les données seront perdues à l'arrêt.")

    def get_current_driver_name(self) -> str:
        return self.current_driver.name if self.current_driver else "unknown"

    def driver_names(self) -> List[str]:
        return [d.name for d in self.drivers]

    async def _with_fallback(self, operation: str, call: Callable[[StorageDriver], Awaitable[T]]) -> T:
        await self.init()
        current = self.current_driver
        try:
            return await call(current)
        except StorageError as exc:
            logger.error("%s échoué avec %s, tentative de repli : %s", operation, current.name, exc)
            first_error = exc

        start = self.drivers.index(current) + 1
        for fallback in self.drivers[start:]:
            if not await fallback.is_available():
                continue
            try:
                result = await call(fallback)
            except StorageError as exc:
                logger.error("Le driver de repli %s a aussi échoué : %s", fallback.name, exc)
                continue
            self.current_driver = fallback
            logger.warning("Bascule sur le driver de repli : %s", fallback.name)
            return result

        raise NoStorageAvailableError(f"{operation} impossible sur tous les drivers.") from first_error

    async def load(self) -> OfflineData:
        return await self._with_fallback("Chargement", lambda d: d.load())

    async def save(self, data: OfflineData) -> None:
        await self._with_fallback("Enregistrement", lambda d: d.save(data))

    async def clear(self) -> None:
        await self._with_fallback("Effacement", lambda d: d.clear())

    async def migrate(self, target_name: str) -> None:
        """Copie les données du driver actif vers target_name puis bascule dessus."""
        await self.init()
        target = next((d for d in self.drivers if d.name == target_name), None)
        if target is None:
            raise ValueError(f"Driver {target_name} introuvable.")
        if not await target.is_available():
            raise StorageUnavailableError(f"Driver {target_name} indisponible.")

        data = await self.load()
        await target.save(data)
        self.current_driver = target
        logger.info("Données migrées vers %s", target_name)

    async def status(self) -> StorageStatus:
        data = await self.load()
        return StorageStatus(
            engine=self.get_current_driver_name(),
            student_count=len(data.students),
            attendance_count=len(data.attendance_records),
            last_sync=data.last_sync,
            full_sync_completed=bool(data.full_sync_completed),
        )
