"""
Schémas Pydantic pour les passages (check-in / check-out).
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, field_validator

VALID_TYPES = {"check-in", "check-out"}
VALID_METHODS = {"barcode", "biometric", "manual", "rfid"}


def _as_utc(v: datetime) -> datetime:
    # Les horodatages naïfs (ancienne base locale) sont considérés comme UTC
    if v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v.astimezone(timezone.utc)


class AttendanceEntry(BaseModel):
    """
    Passage enregistré. Les champs dénormalisés (student_id, student_name)
    rendent l'événement autonome même si l'élève est absent localement.
    Les visiteurs ont une clé métier synthétique et un motif/contact.
    """

    id: str
    student_database_id: Optional[str] = None
    student_id: str
    student_name: str
    timestamp: datetime
    type: str = "check-in"
    method: str = "manual"
    barcode: Optional[str] = None
    purpose: Optional[str] = None
    contact: Optional[str] = None
    library: str = "notre-dame"
    course: Optional[str] = None
    year: Optional[str] = None
    user_type: Optional[str] = "student"
    student_type: Optional[str] = None
    level: Optional[str] = None
    strand: Optional[str] = None

    @field_validator("timestamp")
    @classmethod
    def timestamp_utc(cls, v: datetime) -> datetime:
        return _as_utc(v)


class AttendanceCreate(BaseModel):
    """Passage saisi par l'interface (POST /api/v1/attendance)."""

    student_database_id: Optional[str] = None
    student_id: str
    student_name: str
    timestamp: Optional[datetime] = None   # Défaut : maintenant
    type: str = "check-in"
    method: str = "manual"
    barcode: Optional[str] = None
    purpose: Optional[str] = None
    contact: Optional[str] = None
    library: str = "notre-dame"
    course: Optional[str] = None
    year: Optional[str] = None
    user_type: Optional[str] = "student"
    student_type: Optional[str] = None
    level: Optional[str] = None
    strand: Optional[str] = None

    @field_validator("type")
    @classmethod
    def valid_type(cls, v: str) -> str:
        if v not in VALID_TYPES:
            raise ValueError(f"Type de passage invalide. Valeurs acceptées : {VALID_TYPES}")
        return v

    @field_validator("method")
    @classmethod
    def valid_method(cls, v: str) -> str:
        if v not in VALID_METHODS:
            raise ValueError(f"Méthode de capture invalide. Valeurs acceptées : {VALID_METHODS}")
        return v

    @field_validator("student_id", "student_name")
    @classmethod
    def not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Le champ ne peut pas être vide.")
        return v.strip()

    @field_validator("timestamp")
    @classmethod
    def timestamp_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v) if v is not None else v


class StudentStatus(BaseModel):
    """Statut courant d'un élève déduit de son dernier passage."""

    identifier: str
    status: str  # checked-in, checked-out, unknown
    last_timestamp: Optional[datetime] = None
