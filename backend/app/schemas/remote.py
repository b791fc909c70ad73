"""
Format filaire du backend distant (colonnes snake_case PostgREST) et
fonctions de conversion explicites champ par champ vers le domaine interne.

Toute donnée qui franchit la frontière locale ↔ distante passe par ces
fonctions : aucune correspondance implicite de forme.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel

from app.schemas.attendance import AttendanceEntry
from app.schemas.student import Student
from app.services.identifiers import is_uuid


class RemoteStudentRow(BaseModel):
    """Ligne de la table distante `students`."""

    id: str
    student_id: str
    name: str
    email: Optional[str] = None
    contact_number: Optional[str] = None
    course: Optional[str] = None
    year: Optional[str] = None
    level: Optional[str] = None
    strand: Optional[str] = None
    library: Optional[str] = None
    user_type: Optional[str] = None
    student_type: Optional[str] = None
    rfid: Optional[str] = None
    biometric_data: Optional[str] = None
    created_at: Optional[datetime] = None


class RemoteAttendanceRow(BaseModel):
    """Ligne de la table distante `attendance_records`."""

    id: str
    student_database_id: Optional[str] = None
    student_id: str
    student_name: str
    timestamp: datetime
    type: Optional[str] = None
    method: Optional[str] = None
    barcode: Optional[str] = None
    purpose: Optional[str] = None
    contact: Optional[str] = None
    library: Optional[str] = None
    course: Optional[str] = None
    year: Optional[str] = None
    user_type: Optional[str] = None
    student_type: Optional[str] = None
    level: Optional[str] = None
    strand: Optional[str] = None


def student_from_remote(row: RemoteStudentRow) -> Student:
    return Student(
        id=row.id,
        student_id=row.student_id,
        name=row.name,
        email=row.email or None,
        contact_number=row.contact_number,
        course=row.course,
        year=row.year,
        level=row.level,
        strand=row.strand,
        library=row.library or "notre-dame",
        user_type=row.user_type or "student",
        student_type=row.student_type,
        rfid=row.rfid or None,
        biometric_data=row.biometric_data or None,
        registration_date=row.created_at,
    )


def student_to_remote(student: Student) -> Dict[str, Any]:
    """Charge utile d'insertion / mise à jour (sans id, attribué par le backend)."""
    return {
        "student_id": student.student_id,
        "name": student.name,
        "email": student.email,
        "contact_number": student.contact_number,
        "course": student.course,
        "year": student.year,
        "level": student.level,
        "strand": student.strand,
        "library": student.library or "notre-dame",
        "user_type": student.user_type or "student",
        "student_type": student.student_type,
        "rfid": student.rfid,
        "biometric_data": student.biometric_data,
    }


def attendance_from_remote(row: RemoteAttendanceRow) -> AttendanceEntry:
    return AttendanceEntry(
        id=row.id,
        student_database_id=row.student_database_id,
        student_id=row.student_id,
        student_name=row.student_name,
        timestamp=row.timestamp,
        type=row.type or "check-in",
        method=row.method or "manual",
        barcode=row.barcode,
        purpose=row.purpose,
        contact=row.contact,
        library=row.library or "notre-dame",
        course=row.course,
        year=row.year,
        user_type=row.user_type,
        student_type=row.student_type,
        level=row.level,
        strand=row.strand,
    )


def attendance_to_remote(entry: AttendanceEntry) -> Dict[str, Any]:
    """
    Charge utile d'insertion. student_database_id est forcé à null s'il ne
    s'agit pas d'un UUID (sinon violation de contrainte côté backend).
    """
    return {
        "student_database_id": entry.student_database_id if is_uuid(entry.student_database_id) else None,
        "student_id": entry.student_id,
        "student_name": entry.student_name,
        "timestamp": entry.timestamp.isoformat(),
        "type": entry.type or "check-in",
        "method": entry.method,
        "barcode": entry.barcode,
        "purpose": entry.purpose,
        "contact": entry.contact,
        "library": entry.library or "notre-dame",
        "course": entry.course,
        "year": entry.year,
        "user_type": entry.user_type or "student",
        "student_type": entry.student_type,
        "level": entry.level,
        "strand": entry.strand,
    }
