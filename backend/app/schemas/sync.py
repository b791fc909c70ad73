"""
Schémas Pydantic pour la synchronisation locale ↔ distante et le flux temps réel.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

VALID_CHANGE_TYPES = {"INSERT", "UPDATE", "DELETE"}
STUDENTS_TABLE = "students"
ATTENDANCE_TABLE = "attendance_records"


class SyncReport(BaseModel):
    """Rapport d'un cycle de synchronisation."""

    status: str                   # completed, throttled, in_flight, offline, failed
    forced: bool = False
    bootstrap: bool = False
    pushed_students: int = 0
    updated_students: int = 0
    pushed_attendance: int = 0
    replaced_attendance: int = 0
    pulled_students: int = 0
    pulled_attendance: int = 0
    errors: List[str] = Field(default_factory=list)
    started_at: Optional[datetime] = None


class SyncStatus(BaseModel):
    """État en ligne / hors ligne et moteur de stockage actif, pour l'interface."""

    online: bool
    running: bool
    storage_engine: str
    last_sync: Optional[str]
    full_sync_completed: bool
    last_report: Optional[SyncReport] = None


class ChangeEvent(BaseModel):
    """
    Notification de changement poussée par le webhook de base de données du backend.
    `record` porte la nouvelle ligne (INSERT/UPDATE), `old_record` l'ancienne (DELETE).
    """

    type: str
    table: str
    record: Optional[Dict[str, Any]] = None
    old_record: Optional[Dict[str, Any]] = None

    @field_validator("type")
    @classmethod
    def valid_type(cls, v: str) -> str:
        v = v.upper()
        if v not in VALID_CHANGE_TYPES:
            raise ValueError(f"Type de changement invalide. Valeurs acceptées : {VALID_CHANGE_TYPES}")
        return v

    @field_validator("table")
    @classmethod
    def known_table(cls, v: str) -> str:
        if v not in (STUDENTS_TABLE, ATTENDANCE_TABLE):
            raise ValueError(f"Table inconnue : {v}")
        return v

    @property
    def entity_id(self) -> Optional[str]:
        for row in (self.record, self.old_record):
            if row and row.get("id"):
                return str(row["id"])
        return None


class StorageMigrationRequest(BaseModel):
    target: str
