"""
Base SQLite locale du tier `sqlite` (fichier unique dans le répertoire privé
de l'application).

Opérations synchrones : le driver les exécute dans un thread de travail.
Les colonnes sensibles sont chiffrées quand un FieldCipher est fourni ;
chaque ligne mémorise si elle l'est (data_encrypted), ce qui permet de relire
des lignes mixtes pendant une migration.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from sqlalchemy import and_, delete, func, select, text
from sqlalchemy.orm import Session

import app.models  # noqa: F401 (enregistre les tables dans Base.metadata)
from app.database import Base, make_engine, make_session_factory
from app.exceptions import StorageError
from app.models.attendance import LocalAttendance
from app.models.student import LocalStudent
from app.models.sync_metadata import ENCRYPTION_KEY_REF, SyncMetadata
from app.schemas.attendance import AttendanceEntry
from app.schemas.student import Student
from app.storage.base import to_naive_utc
from app.storage.crypto import FieldCipher, search_hash

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10000


class LocalDatabase:
    def __init__(self, path: Path, cipher: Optional[FieldCipher] = None):
        self.path = Path(path)
        self.cipher = cipher
        self._engine = None
        self._session_factory = None

    # ------------------------------------------------------------------
    # Cycle de vie
    # ------------------------------------------------------------------

    def init(self) -> None:
        if self._engine is not None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Initialisation de la base SQLite : %s", self.path)
        self._engine = make_engine(f"sqlite:///{self.path}")
        Base.metadata.create_all(self._engine)
        self._session_factory = make_session_factory(self._engine)
        if self.cipher is not None:
            self.set_metadata(ENCRYPTION_KEY_REF, "file:.encryption-key")

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Base SQLite fermée.")

    def _session(self):
        if self._session_factory is None:
            self.init()
        return self._session_factory.begin()

    # ------------------------------------------------------------------
    # Élèves
    # ------------------------------------------------------------------

    def save_students(self, students: Iterable[Student]) -> int:
        count = 0
        with self._session() as session:
            for student in students:
                row = self._find_student(session, student)
                if row is None:
                    row = LocalStudent()
                    session.add(row)
                self._fill_student(row, student)
                session.flush()
                count += 1
        return count

    def _find_student(self, session: Session, student: Student) -> Optional[LocalStudent]:
        by_key = session.execute(
            select(LocalStudent).where(LocalStudent.student_id == student.student_id)
        ).scalar()
        by_id = session.execute(
            select(LocalStudent).where(LocalStudent.record_id == student.id)
        ).scalar()
        if by_key is not None and by_id is not None and by_key is not by_id:
            # La clé métier a changé : l'ancienne ligne est remplacée
            session.delete(by_id)
            session.flush()
        return by_key or by_id

    def _fill_student(self, row: LocalStudent, student: Student) -> None:
        encrypt = self.cipher.encrypt if self.cipher else (lambda v: v or None)
        row.record_id = student.id
        row.student_id = student.student_id
        row.name = encrypt(student.name)
        row.email = encrypt(student.email)
        row.contact_number = encrypt(student.contact_number)
        row.biometric_data = encrypt(student.biometric_data)
        row.rfid = encrypt(student.rfid)
        row.rfid_hash = search_hash(student.rfid) if self.cipher else None
        row.course = student.course
        row.year = student.year
        row.level = student.level
        row.strand = student.strand
        row.library = student.library
        row.user_type = student.user_type
        row.student_type = student.student_type
        row.registration_date = to_naive_utc(student.registration_date) if student.registration_date else None
        row.last_scan = to_naive_utc(student.last_scan) if student.last_scan else None
        row.dirty = student.dirty
        row.data_encrypted = self.cipher is not None

    def _decrypt(self, row_encrypted: bool, value: Optional[str]) -> Optional[str]:
        if not row_encrypted or value is None:
            return value
        if self.cipher is None:
            raise StorageError("Ligne chiffrée rencontrée sans clé de chiffrement configurée.")
        return self.cipher.decrypt(value)

    def _student_from_row(self, row: LocalStudent) -> Student:
        enc = bool(row.data_encrypted)
        return Student(
            id=row.record_id,
            student_id=row.student_id,
            name=self._decrypt(enc, row.name) or "",
            email=self._decrypt(enc, row.email),
            contact_number=self._decrypt(enc, row.contact_number),
            biometric_data=self._decrypt(enc, row.biometric_data),
            rfid=self._decrypt(enc, row.rfid),
            course=row.course,
            year=row.year,
            level=row.level,
            strand=row.strand,
            library=row.library or "notre-dame",
            user_type=row.user_type or "student",
            student_type=row.student_type,
            registration_date=row.registration_date,
            last_scan=row.last_scan,
            dirty=bool(row.dirty),
        )

    def get_students(self, library: Optional[str] = None, limit: int = DEFAULT_LIMIT) -> List[Student]:
        with self._session() as session:
            query = select(LocalStudent)
            if library:
                query = query.where(LocalStudent.library == library)
            rows = session.execute(
                query.order_by(LocalStudent.updated_at.desc()).limit(limit)
            ).scalars().all()
            if len(rows) >= limit:
                logger.warning("Lecture des élèves tronquée à %d lignes.", limit)
            return [self._student_from_row(r) for r in rows]

    def get_student_by_business_key(self, student_id: str) -> Optional[Student]:
        with self._session() as session:
            row = session.execute(
                select(LocalStudent).where(LocalStudent.student_id == student_id)
            ).scalar()
            return self._student_from_row(row) if row else None

    def get_student_by_rfid(self, rfid: str) -> Optional[Student]:
        """Recherche par empreinte (lignes chiffrées) puis en clair (lignes non chiffrées)."""
        with self._session() as session:
            row = session.execute(
                select(LocalStudent).where(LocalStudent.rfid_hash == search_hash(rfid))
            ).scalar()
            if row is None:
                row = session.execute(
                    select(LocalStudent).where(
                        LocalStudent.rfid == rfid, LocalStudent.data_encrypted.is_(False)
                    )
                ).scalar()
            return self._student_from_row(row) if row else None

    def delete_students(self, record_ids: Iterable[str]) -> int:
        ids = list(record_ids)
        if not ids:
            return 0
        with self._session() as session:
            result = session.execute(delete(LocalStudent).where(LocalStudent.record_id.in_(ids)))
            return result.rowcount or 0

    # ------------------------------------------------------------------
    # Passages
    # ------------------------------------------------------------------

    def save_attendance_records(self, records: Iterable[AttendanceEntry]) -> int:
        count = 0
        with self._session() as session:
            for entry in records:
                row = self._find_attendance(session, entry)
                if row is None:
                    row = LocalAttendance()
                    session.add(row)
                self._fill_attendance(row, entry)
                session.flush()
                count += 1
        return count

    def _find_attendance(self, session: Session, entry: AttendanceEntry) -> Optional[LocalAttendance]:
        """
        Retrouve la ligne correspondant au passage : par identifiant d'abord
        (réécriture d'id, mise à jour), sinon par clé composite exacte.
        Si les deux désignent des lignes différentes, la ligne composite est
        supprimée pour ne pas violer l'index unique.
        """
        by_id = session.execute(
            select(LocalAttendance).where(LocalAttendance.record_id == entry.id)
        ).scalar()
        by_key = session.execute(
            select(LocalAttendance).where(
                and_(
                    LocalAttendance.student_id == entry.student_id,
                    LocalAttendance.timestamp == to_naive_utc(entry.timestamp),
                    LocalAttendance.type == entry.type,
                )
            )
        ).scalar()
        if by_id is not None and by_key is not None and by_id is not by_key:
            session.delete(by_key)
            session.flush()
        return by_id or by_key

    def _fill_attendance(self, row: LocalAttendance, entry: AttendanceEntry) -> None:
        encrypt = self.cipher.encrypt if self.cipher else (lambda v: v or None)
        row.record_id = entry.id
        row.student_database_id = entry.student_database_id
        row.student_id = entry.student_id
        row.student_name = encrypt(entry.student_name)
        row.contact = encrypt(entry.contact)
        row.timestamp = to_naive_utc(entry.timestamp)
        row.type = entry.type
        row.method = entry.method
        row.barcode = entry.barcode
        row.purpose = entry.purpose
        row.library = entry.library
        row.course = entry.course
        row.year = entry.year
        row.user_type = entry.user_type
        row.student_type = entry.student_type
        row.level = entry.level
        row.strand = entry.strand
        row.data_encrypted = self.cipher is not None

    def _attendance_from_row(self, row: LocalAttendance) -> AttendanceEntry:
        enc = bool(row.data_encrypted)
        return AttendanceEntry(
            id=row.record_id,
            student_database_id=row.student_database_id,
            student_id=row.student_id,
            student_name=self._decrypt(enc, row.student_name) or "",
            contact=self._decrypt(enc, row.contact),
            timestamp=row.timestamp,
            type=row.type,
            method=row.method or "manual",
            barcode=row.barcode,
            purpose=row.purpose,
            library=row.library or "notre-dame",
            course=row.course,
            year=row.year,
            user_type=row.user_type,
            student_type=row.student_type,
            level=row.level,
            strand=row.strand,
        )

    def get_attendance_records(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        library: Optional[str] = None,
        limit: int = DEFAULT_LIMIT,
    ) -> List[AttendanceEntry]:
        with self._session() as session:
            query = select(LocalAttendance)
            if start is not None:
                query = query.where(LocalAttendance.timestamp >= to_naive_utc(start))
            if end is not None:
                query = query.where(LocalAttendance.timestamp <= to_naive_utc(end))
            if library:
                query = query.where(LocalAttendance.library == library)
            rows = session.execute(
                query.order_by(LocalAttendance.timestamp.desc()).limit(limit)
            ).scalars().all()
            if len(rows) >= limit:
                logger.warning("Lecture des passages tronquée à %d lignes (les plus anciens sont ignorés).", limit)
            return [self._attendance_from_row(r) for r in rows]

    def get_last_attendance(self, student_id: str, type: Optional[str] = None) -> Optional[AttendanceEntry]:
        with self._session() as session:
            query = select(LocalAttendance).where(LocalAttendance.student_id == student_id)
            if type:
                query = query.where(LocalAttendance.type == type)
            row = session.execute(query.order_by(LocalAttendance.timestamp.desc()).limit(1)).scalar()
            return self._attendance_from_row(row) if row else None

    def delete_attendance(self, record_ids: Iterable[str]) -> int:
        ids = list(record_ids)
        if not ids:
            return 0
        with self._session() as session:
            result = session.execute(delete(LocalAttendance).where(LocalAttendance.record_id.in_(ids)))
            return result.rowcount or 0

    # ------------------------------------------------------------------
    # Métadonnées
    # ------------------------------------------------------------------

    def get_metadata(self, key: str) -> Optional[str]:
        with self._session() as session:
            row = session.get(SyncMetadata, key)
            return row.value if row else None

    def set_metadata(self, key: str, value: str) -> None:
        with self._session() as session:
            row = session.get(SyncMetadata, key)
            if row is None:
                session.add(SyncMetadata(key=key, value=value))
            else:
                row.value = value

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def stats(self) -> Dict[str, int]:
        with self._session() as session:
            return {
                "students": session.execute(select(func.count()).select_from(LocalStudent)).scalar() or 0,
                "attendance_records": session.execute(
                    select(func.count()).select_from(LocalAttendance)
                ).scalar() or 0,
            }

    def check_integrity(self) -> bool:
        with self._session() as session:
            return session.execute(text("PRAGMA integrity_check")).scalar() == "ok"

    def vacuum(self) -> None:
        if self._engine is None:
            self.init()
        logger.info("VACUUM de la base SQLite…")
        with self._engine.connect() as conn:
            conn.execution_options(isolation_level="AUTOCOMMIT").exec_driver_sql("VACUUM")

    def checkpoint(self) -> None:
        """Reporte le journal WAL dans le fichier principal (avant une copie de sauvegarde)."""
        with self._session() as session:
            session.execute(text("PRAGMA wal_checkpoint(TRUNCATE)"))

    def encrypt_plain_rows(self) -> Dict[str, int]:
        """Chiffre les lignes encore en clair (une fois, après activation du chiffrement)."""
        if self.cipher is None:
            raise StorageError("Chiffrement non initialisé.")
        with self._session() as session:
            students = session.execute(
                select(LocalStudent).where(LocalStudent.data_encrypted.is_(False))
            ).scalars().all()
            for row in students:
                self._fill_student(row, self._student_from_row(row))
            records = session.execute(
                select(LocalAttendance).where(LocalAttendance.data_encrypted.is_(False))
            ).scalars().all()
            for row in records:
                self._fill_attendance(row, self._attendance_from_row(row))
        logger.info("Chiffrement : %d élèves, %d passages migrés", len(students), len(records))
        return {"students": len(students), "attendance_records": len(records)}

    def clear_all(self) -> None:
        with self._session() as session:
            session.execute(delete(LocalStudent))
            session.execute(delete(LocalAttendance))
            session.execute(delete(SyncMetadata))
        logger.info("Toutes les données locales SQLite ont été supprimées.")
