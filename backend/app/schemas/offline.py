"""
Schémas Pydantic pour l'enveloppe de données offline.

L'enveloppe est l'agrégat persisté par le StorageManager : tous les élèves,
une fenêtre récente de passages (ou tout l'historique au premier bootstrap),
les liens de documents (transmis tels quels), l'horodatage de la dernière
synchronisation réussie et le drapeau de téléchargement complet.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.schemas.attendance import AttendanceEntry
from app.schemas.student import Student


class OfflineData(BaseModel):
    """
    Enveloppe complète ou partielle (save).

    Pour un save partiel, `None` signifie « champ non fourni ».
    Les listes `removed_*` sont des tombstones transitoires : appliquées par
    les drivers au moment du save, jamais renvoyées par load.
    """

    students: List[Student] = Field(default_factory=list)
    attendance_records: List[AttendanceEntry] = Field(default_factory=list)
    documents: Optional[List[Dict[str, Any]]] = None
    last_sync: Optional[str] = None
    full_sync_completed: Optional[bool] = None
    removed_student_ids: List[str] = Field(default_factory=list)
    removed_attendance_ids: List[str] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> "OfflineData":
        return cls(documents=[], full_sync_completed=False)


class StorageStatus(BaseModel):
    """État du stockage local exposé à l'interface."""

    engine: str
    student_count: int
    attendance_count: int
    last_sync: Optional[str]
    full_sync_completed: bool


class DeduplicationReport(BaseModel):
    before: int
    after: int
    removed: int


class BackupInfo(BaseModel):
    name: str
    size: int


class BackupRestoreRequest(BaseModel):
    name: str


class MaintenanceReport(BaseModel):
    """Résultat de la maintenance de la base SQLite (intégrité, VACUUM)."""

    integrity_ok: bool
    students: int
    attendance_records: int
