"""
Schémas Pydantic pour les élèves (domaine interne + requêtes de l'interface).
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, EmailStr, field_validator

VALID_LIBRARIES = {"notre-dame", "ibed"}
VALID_USER_TYPES = {"student", "teacher"}


class Student(BaseModel):
    """
    Élève (ou membre du personnel) tel que manipulé par le noyau.

    `id` est un placeholder `local_...` tant que le backend n'a pas attribué d'UUID.
    `student_id` est la clé métier, stable entre les systèmes.
    `dirty` marque une modification locale pas encore poussée.
    """

    id: str
    student_id: str
    name: str
    email: Optional[str] = None
    contact_number: Optional[str] = None
    course: Optional[str] = None
    year: Optional[str] = None
    level: Optional[str] = None
    strand: Optional[str] = None
    library: str = "notre-dame"
    user_type: str = "student"
    student_type: Optional[str] = None
    rfid: Optional[str] = None
    biometric_data: Optional[str] = None
    last_scan: Optional[datetime] = None
    registration_date: Optional[datetime] = None
    dirty: bool = False

    @field_validator("last_scan", "registration_date")
    @classmethod
    def dates_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class StudentCreate(BaseModel):
    """Inscription d'un élève depuis l'interface (POST /api/v1/students)."""

    student_id: str
    name: str
    email: Optional[EmailStr] = None
    contact_number: Optional[str] = None
    course: Optional[str] = None
    year: Optional[str] = None
    level: Optional[str] = None
    strand: Optional[str] = None
    library: str = "notre-dame"
    user_type: str = "student"
    student_type: Optional[str] = None
    rfid: Optional[str] = None
    biometric_data: Optional[str] = None

    @field_validator("student_id", "name")
    @classmethod
    def not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Le champ ne peut pas être vide.")
        return v.strip()

    @field_validator("library")
    @classmethod
    def valid_library(cls, v: str) -> str:
        if v not in VALID_LIBRARIES:
            raise ValueError(f"Bibliothèque invalide. Valeurs acceptées : {VALID_LIBRARIES}")
        return v

    @field_validator("user_type")
    @classmethod
    def valid_user_type(cls, v: str) -> str:
        if v not in VALID_USER_TYPES:
            raise ValueError(f"Type d'utilisateur invalide. Valeurs acceptées : {VALID_USER_TYPES}")
        return v


class StudentUpdate(BaseModel):
    """Modification d'un profil (PUT /api/v1/students/{student_id}). Champs absents inchangés."""

    name: Optional[str] = None
    email: Optional[EmailStr] = None
    contact_number: Optional[str] = None
    course: Optional[str] = None
    year: Optional[str] = None
    level: Optional[str] = None
    strand: Optional[str] = None
    library: Optional[str] = None
    rfid: Optional[str] = None
    biometric_data: Optional[str] = None

    @field_validator("name")
    @classmethod
    def not_empty(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("Le champ ne peut pas être vide.")
        return v.strip() if v else v

    @field_validator("library")
    @classmethod
    def valid_library(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in VALID_LIBRARIES:
            raise ValueError(f"Bibliothèque invalide. Valeurs acceptées : {VALID_LIBRARIES}")
        return v
