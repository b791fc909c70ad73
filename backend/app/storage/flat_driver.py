"""
Driver `flat` : repli ultime, toute l'enveloppe sérialisée en un seul blob JSON
sous une clé fixe d'un magasin clé/valeur simple.

Le blob n'étant pas interrogeable, save relit le contenu existant et fusionne
avant d'écrire (lecture-fusion-écriture, jamais d'écrasement).
"""

import asyncio
import dbm
import logging
from pathlib import Path
from typing import Dict, Optional, Protocol

from pydantic import ValidationError

from app.exceptions import StorageError, StorageUnavailableError
from app.schemas.offline import OfflineData
from app.storage.base import StorageDriver, composite_key, merge_students

logger = logging.getLogger(__name__)

STORAGE_KEY = "library-attendance-offline"

_STORE_ERRORS = (OSError,) + tuple(dbm.error)


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class DbmKeyValueStore:
    """Magasin clé/valeur fichier (module dbm de la bibliothèque standard)."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def get(self, key: str) -> Optional[str]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with dbm.open(str(self.path), "c") as db:
            raw = db.get(key)
        return raw.decode("utf-8") if raw is not None else None

    def set(self, key: str, value: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with dbm.open(str(self.path), "c") as db:
            db[key] = value.encode("utf-8")

    def delete(self, key: str) -> None:
        with dbm.open(str(self.path), "c") as db:
            if key in db:
                del db[key]


class MemoryKeyValueStore:
    """Magasin en mémoire (mode dégradé sans disque, tests)."""

    def __init__(self):
        self.values: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self.values.get(key)

    def set(self, key: str, value: str) -> None:
        self.values[key] = value

    def delete(self, key: str) -> None:
        self.values.pop(key, None)


class FlatStoreDriver(StorageDriver):
    name = "flat"

    def __init__(self, store: Optional[KeyValueStore]):
        self.store = store

    async def is_available(self) -> bool:
        return self.store is not None

    def _require_store(self) -> KeyValueStore:
        if self.store is None:
            raise StorageUnavailableError("Aucun magasin clé/valeur disponible.")
        return self.store

    async def load(self) -> OfflineData:
        store = self._require_store()
        try:
            raw = await asyncio.to_thread(store.get, STORAGE_KEY)
        except _STORE_ERRORS as exc:
            raise StorageError(f"Lecture du blob impossible : {exc}") from exc
        return self._decode(raw)

    @staticmethod
    def _decode(raw: Optional[str]) -> OfflineData:
        if not raw:
            return OfflineData.empty()
        try:
            data = OfflineData.model_validate_json(raw)
        except ValidationError as exc:
            logger.error("Blob offline corrompu, enveloppe vide utilisée : %s", exc)
            return OfflineData.empty()
        if data.documents is None:
            data.documents = []
        if data.full_sync_completed is None:
            data.full_sync_completed = False
        return data

    async def save(self, data: OfflineData) -> None:
        store = self._require_store()
        existing = await self.load()

        removed_attendance = set(data.removed_attendance_ids)
        by_key = {
            composite_key(r): r
            for r in existing.attendance_records
            if r.id not in removed_attendance
        }
        incoming_ids = {r.id for r in data.attendance_records}
        # Un passage réécrit (même id, autre clé) ne doit pas rester en double
        by_key = {k: r for k, r in by_key.items() if r.id not in incoming_ids}
        for record in data.attendance_records:
            by_key[composite_key(record)] = record

        removed_students = set(data.removed_student_ids)
        students = merge_students(
            (s for s in existing.students if s.id not in removed_students),
            data.students,
        )

        merged = OfflineData(
            students=students,
            attendance_records=list(by_key.values()),
            documents=data.documents if data.documents is not None else existing.documents,
            last_sync=data.last_sync or existing.last_sync,
            full_sync_completed=(
                data.full_sync_completed
                if data.full_sync_completed is not None
                else existing.full_sync_completed
            ),
        )
        payload = merged.model_dump_json(exclude={"removed_student_ids", "removed_attendance_ids"})
        try:
            await asyncio.to_thread(store.set, STORAGE_KEY, payload)
        except _STORE_ERRORS as exc:
            raise StorageError(f"Écriture du blob impossible : {exc}") from exc
        logger.debug(
            "Blob offline enregistré (%d élèves, %d passages)",
            len(merged.students), len(merged.attendance_records),
        )

    async def clear(self) -> None:
        store = self._require_store()
        try:
            await asyncio.to_thread(store.delete, STORAGE_KEY)
        except _STORE_ERRORS as exc:
            raise StorageError(f"Suppression du blob impossible : {exc}") from exc


class MemoryStoreDriver(FlatStoreDriver):
    """Mode dégradé : même format que `flat`, mais rien n'est écrit sur disque."""

    name = "memory"

    def __init__(self):
        super().__init__(MemoryKeyValueStore())
