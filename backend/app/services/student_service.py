"""
Service des élèves exposé à l'interface.

En ligne : insertion / mise à jour distante directe, la version du backend
est enregistrée localement. Hors ligne (ou backend en erreur) : élève
enregistré avec un placeholder, ou marqué `dirty` pour le prochain push.
"""

import logging
from typing import List, Optional

from app.exceptions import RemoteError
from app.schemas.offline import OfflineData
from app.schemas.student import Student, StudentCreate, StudentUpdate
from app.services.connectivity import ConnectivityMonitor
from app.services.identifiers import generate_placeholder_id, is_local_only
from app.services.remote_client import RemoteBackend
from app.storage.manager import StorageManager

logger = logging.getLogger(__name__)


async def list_students(storage: StorageManager, library: Optional[str] = None) -> List[Student]:
    """Élèves triés par nom, filtrés par bibliothèque si demandé."""
    data = await storage.load()
    students = [s for s in data.students if library is None or s.library == library]
    return sorted(students, key=lambda s: s.name.lower())


async def get_student(storage: StorageManager, student_id: str) -> Optional[Student]:
    data = await storage.load()
    return next((s for s in data.students if s.student_id == student_id), None)


async def find_by_rfid(storage: StorageManager, rfid: str) -> Optional[Student]:
    data = await storage.load()
    return next((s for s in data.students if s.rfid and s.rfid == rfid), None)


async def register_student(
    storage: StorageManager,
    remote: RemoteBackend,
    connectivity: ConnectivityMonitor,
    payload: StudentCreate,
) -> Student:
    """
    Inscrit un élève. Lève ValueError si la clé métier existe déjà localement.
    """
    if await get_student(storage, payload.student_id) is not None:
        raise ValueError(f"Un élève avec l'identifiant {payload.student_id} existe déjà.")

    student = Student(id=generate_placeholder_id(), **payload.model_dump())

    if connectivity.online:
        try:
            student = await remote.insert_student(student)
        except RemoteError as exc:
            logger.info("Inscription conservée localement (%s) : %s", payload.student_id, exc)

    await storage.save(OfflineData(students=[student]))
    logger.info("Élève inscrit : %s (%s)", student.student_id, student.id)
    return student


async def update_student(
    storage: StorageManager,
    remote: RemoteBackend,
    connectivity: ConnectivityMonitor,
    student_id: str,
    payload: StudentUpdate,
) -> Optional[Student]:
    """Met à jour les champs fournis. Retourne None si l'élève est introuvable."""
    current = await get_student(storage, student_id)
    if current is None:
        return None

    updated = current.model_copy(update=payload.model_dump(exclude_unset=True))

    if is_local_only(updated.id):
        # Placeholder local_ : inséré tel quel au prochain push.
        # Ancien id local (numérique) : ni inséré ni mis à jour, reste uniquement local.
        await storage.save(OfflineData(students=[updated]))
        return updated

    if connectivity.online:
        try:
            updated = await remote.update_student(updated)
        except RemoteError as exc:
            logger.info("Modification de %s conservée localement : %s", student_id, exc)
            updated = updated.model_copy(update={"dirty": True})
    else:
        updated = updated.model_copy(update={"dirty": True})

    await storage.save(OfflineData(students=[updated]))
    return updated
