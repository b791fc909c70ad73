"""
Magasins d'objets du tier `embedded`.

Même découpage logique que le tier sqlite (élèves, passages, métadonnées)
mais les valeurs sont des documents JSON ; seules les clés d'index sont des
colonnes : élèves indexés par clé métier et nom, passages par clé métier et
horodatage.
"""

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String

from app.database import EmbeddedBase


class StudentObject(EmbeddedBase):
    __tablename__ = "students"

    student_id = Column(String(100), primary_key=True)   # keyPath
    name = Column(String(255), nullable=True)
    value = Column(JSON, nullable=False)

    __table_args__ = (Index("by_name", "name"),)


class AttendanceObject(EmbeddedBase):
    __tablename__ = "attendance"

    key = Column(Integer, primary_key=True, autoincrement=True)
    record_id = Column(String(64), nullable=False, index=True)
    student_id = Column(String(100), nullable=False)
    timestamp = Column(DateTime, nullable=False)
    type = Column(String(20), nullable=False)
    value = Column(JSON, nullable=False)

    __table_args__ = (
        Index("by_student", "student_id"),
        Index("by_timestamp", "timestamp"),
    )


class MetadataObject(EmbeddedBase):
    __tablename__ = "metadata"

    key = Column(String(100), primary_key=True)
    value = Column(JSON, nullable=True)
