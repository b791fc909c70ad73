"""
Maintenance du stockage local.

- déduplication exacte des passages (tous tiers)
- sauvegardes de la base SQLite (dossier backups/, 7 dernières conservées)
  et restauration (la base courante est sauvegardée d'abord)
- import unique de l'ancien fichier JSON `library-attendance-data.json`
"""

import json
import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from app.models.sync_metadata import LAST_SYNC_KEY
from app.schemas.attendance import AttendanceEntry
from app.schemas.offline import OfflineData
from app.schemas.student import Student
from app.services.dedup_service import deduplicate_attendance, superseded_ids
from app.services.identifiers import generate_placeholder_id
from app.storage.local_database import LocalDatabase
from app.storage.manager import StorageManager

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "library-attendance-"
BACKUP_SUFFIX = ".db"
LEGACY_JSON_NAME = "library-attendance-data.json"


async def deduplicate(storage: StorageManager) -> Dict[str, int]:
    """Supprime les doublons exacts (même élève, même type, même seconde)."""
    data = await storage.load()
    kept = deduplicate_attendance(data.attendance_records)
    removed = superseded_ids(data.attendance_records, kept)
    if removed:
        await storage.save(OfflineData(attendance_records=kept, removed_attendance_ids=removed))
        logger.info("Déduplication : %d passages en double supprimés", len(removed))
    return {"before": len(data.attendance_records), "after": len(kept), "removed": len(removed)}


# ----------------------------------------------------------------------
# Sauvegardes
# ----------------------------------------------------------------------

def list_backups(backup_dir: Path) -> List[Path]:
    """Sauvegardes existantes, de la plus récente à la plus ancienne."""
    if not backup_dir.exists():
        return []
    backups = [
        p for p in backup_dir.iterdir()
        if p.name.startswith(BACKUP_PREFIX) and p.name.endswith(BACKUP_SUFFIX)
    ]
    return sorted(backups, key=lambda p: p.name, reverse=True)


def _clean_old_backups(backup_dir: Path, retention: int) -> None:
    for old in list_backups(backup_dir)[retention:]:
        old.unlink()
        logger.info("Ancienne sauvegarde supprimée : %s", old.name)


def create_backup(
    database: LocalDatabase,
    backup_dir: Path,
    retention: Optional[int] = 7,
    now: Optional[datetime] = None,
) -> Path:
    """Copie la base SQLite dans backup_dir et ne garde que les `retention` dernières (None : aucune purge)."""
    now = now or datetime.now(timezone.utc)
    database.checkpoint()
    backup_dir.mkdir(parents=True, exist_ok=True)
    target = backup_dir / f"{BACKUP_PREFIX}{now.strftime('%Y-%m-%dT%H-%M-%S-%f')}{BACKUP_SUFFIX}"
    shutil.copy2(database.path, target)
    logger.info("Sauvegarde créée : %s", target)
    if retention is not None:
        _clean_old_backups(backup_dir, retention)
    return target


def restore_backup(
    database: LocalDatabase,
    backup_path: Path,
    backup_dir: Path,
    retention: int = 7,
) -> Path:
    """
    Remplace la base par backup_path. La base courante est d'abord sauvegardée.
    Retourne le chemin de cette sauvegarde de sécurité.
    """
    if not backup_path.exists():
        raise FileNotFoundError(f"Sauvegarde introuvable : {backup_path}")

    # Purge après la copie : la sauvegarde choisie peut être la plus ancienne
    safety = create_backup(database, backup_dir, retention=None)
    database.close()
    for suffix in ("-wal", "-shm"):
        journal = database.path.with_name(database.path.name + suffix)
        if journal.exists():
            journal.unlink()
    shutil.copy2(backup_path, database.path)
    _clean_old_backups(backup_dir, retention)
    logger.info("Base restaurée depuis %s", backup_path)
    return safety


# ----------------------------------------------------------------------
# Import de l'ancien fichier JSON
# ----------------------------------------------------------------------

def _pick(raw: Dict[str, Any], camel: str, snake: str) -> Any:
    return raw.get(camel) if raw.get(camel) is not None else raw.get(snake)


def _legacy_student(raw: Dict[str, Any]) -> Student:
    return Student(
        id=str(raw.get("id") or generate_placeholder_id()),
        student_id=_pick(raw, "studentId", "student_id"),
        name=raw["name"],
        email=raw.get("email") or None,
        contact_number=_pick(raw, "contactNumber", "contact_number"),
        course=raw.get("course"),
        year=raw.get("year"),
        level=raw.get("level"),
        strand=raw.get("strand"),
        library=raw.get("library") or "notre-dame",
        user_type=_pick(raw, "userType", "user_type") or "student",
        student_type=_pick(raw, "studentType", "student_type"),
        rfid=raw.get("rfid") or None,
        biometric_data=_pick(raw, "biometricData", "biometric_data") or None,
        registration_date=_pick(raw, "registrationDate", "registration_date"),
        last_scan=_pick(raw, "lastScan", "last_scan"),
    )


def _legacy_attendance(raw: Dict[str, Any]) -> AttendanceEntry:
    return AttendanceEntry(
        id=str(raw.get("id") or generate_placeholder_id()),
        student_database_id=_pick(raw, "studentDatabaseId", "student_database_id"),
        student_id=_pick(raw, "studentId", "student_id"),
        student_name=_pick(raw, "studentName", "student_name"),
        timestamp=raw["timestamp"],
        type=raw.get("type") or "check-in",
        method=raw.get("method") or "manual",
        barcode=raw.get("barcode"),
        purpose=raw.get("purpose"),
        contact=raw.get("contact"),
        library=raw.get("library") or "notre-dame",
        course=raw.get("course"),
        year=raw.get("year"),
        user_type=_pick(raw, "userType", "user_type"),
        student_type=_pick(raw, "studentType", "student_type"),
        level=raw.get("level"),
        strand=raw.get("strand"),
    )


def import_legacy_json(database: LocalDatabase, data_dir: Path) -> Dict[str, Any]:
    """
    Migre une fois l'ancien fichier JSON vers la base SQLite, si la base est vide.
    Le fichier est ensuite renommé en `.backup`.
    """
    json_path = Path(data_dir) / LEGACY_JSON_NAME
    if not json_path.exists():
        return {"migrated": False, "reason": "no_json_file"}

    stats = database.stats()
    if stats["students"] > 0 or stats["attendance_records"] > 0:
        logger.info("La base contient déjà des données, import JSON ignoré.")
        return {"migrated": False, "reason": "database_not_empty"}

    logger.info("Import de l'ancien fichier JSON vers SQLite…")
    data = json.loads(json_path.read_text(encoding="utf-8"))

    students = [_legacy_student(s) for s in data.get("students") or []]
    records = [_legacy_attendance(r) for r in data.get("attendanceRecords") or []]
    student_count = database.save_students(students) if students else 0
    attendance_count = database.save_attendance_records(records) if records else 0
    if data.get("lastSync"):
        database.set_metadata(LAST_SYNC_KEY, data["lastSync"])

    backup_path = json_path.with_name(json_path.name + ".backup")
    json_path.replace(backup_path)
    logger.info(
        "Import JSON terminé : %d élèves, %d passages (ancien fichier : %s)",
        student_count, attendance_count, backup_path,
    )
    return {"migrated": True, "student_count": student_count, "attendance_count": attendance_count}
