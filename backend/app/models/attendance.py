"""
Modèle SQLAlchemy pour les passages du tier sqlite.

L'index UNIQUE (student_id, timestamp, type) est le garde-fou ultime contre
les doublons exacts ; les quasi-doublons (fenêtre de 10 s) sont traités en
amont par le moteur de fusion, pas par le stockage.
"""

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text, func

from app.database import Base


class LocalAttendance(Base):
    __tablename__ = "attendance_records"

    pk = Column(Integer, primary_key=True, autoincrement=True)
    record_id = Column(String(64), unique=True, nullable=False)
    student_database_id = Column(String(64), nullable=True)
    student_id = Column(String(100), nullable=False)
    student_name = Column(Text, nullable=False)
    timestamp = Column(DateTime, nullable=False)            # Heure de l'événement (UTC)
    type = Column(String(20), nullable=False)               # check-in, check-out
    method = Column(String(20), nullable=True)              # barcode, biometric, manual, rfid
    barcode = Column(String(100), nullable=True)
    purpose = Column(Text, nullable=True)
    contact = Column(Text, nullable=True)
    library = Column(String(50), nullable=True)
    course = Column(String(255), nullable=True)
    year = Column(String(50), nullable=True)
    user_type = Column(String(20), nullable=True)
    student_type = Column(String(20), nullable=True)
    level = Column(String(50), nullable=True)
    strand = Column(String(100), nullable=True)
    data_encrypted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    __table_args__ = (
        Index("idx_attendance_student_id", "student_id"),
        Index("idx_attendance_student_db_id", "student_database_id"),
        Index("idx_attendance_timestamp", "timestamp"),
        Index("idx_attendance_type", "type"),
        Index("idx_attendance_library", "library"),
        Index("idx_attendance_composite", "student_database_id", "type", "timestamp"),
        Index("idx_attendance_unique", "student_id", "timestamp", "type", unique=True),
    )
