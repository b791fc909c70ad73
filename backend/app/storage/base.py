"""
Contrat commun des drivers de persistance locale.

Trois implémentations interchangeables (par ordre de préférence) :
- sqlite   : base relationnelle fichier, hôte avec accès direct au disque
- embedded : magasin d'objets transactionnel embarqué
- flat     : blob sérialisé unique dans un magasin clé/valeur

Toutes les opérations sont asynchrones. Un driver ne laisse sortir que
StorageUnavailableError (facilité absente) ou StorageError (échec d'E/S) ;
le repli entre drivers est la responsabilité du StorageManager.
"""

import abc
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Tuple

from app.schemas.attendance import AttendanceEntry
from app.schemas.offline import OfflineData
from app.schemas.student import Student

CompositeKey = Tuple[str, str, str]


class StorageDriver(abc.ABC):
    name: str = ""

    @abc.abstractmethod
    async def is_available(self) -> bool:
        """Vrai si la facilité requise par ce driver est présente."""

    @abc.abstractmethod
    async def load(self) -> OfflineData:
        ...

    @abc.abstractmethod
    async def save(self, data: OfflineData) -> None:
        """Enregistre une enveloppe partielle (fusion, jamais écrasement aveugle)."""

    @abc.abstractmethod
    async def clear(self) -> None:
        ...


def composite_key(entry: AttendanceEntry) -> CompositeKey:
    """Clé (élève, horodatage, type) utilisée pour la déduplication exacte au stockage."""
    return (entry.student_id, entry.timestamp.astimezone(timezone.utc).isoformat(), entry.type)


def merge_students(existing: Iterable[Student], incoming: Iterable[Student]) -> List[Student]:
    """Fusion par clé métier : la version entrante remplace l'existante."""
    by_key: Dict[str, Student] = {s.student_id: s for s in existing}
    for student in incoming:
        by_key[student.student_id] = student
    return list(by_key.values())


def to_naive_utc(value: datetime) -> datetime:
    """SQLite stocke des DateTime naïfs : on y range de l'UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
