"""
Modèle SQLAlchemy pour la table students du tier sqlite (fichier local privé).

- record_id : identifiant applicatif (placeholder local_... ou UUID du backend)
- student_id : clé métier, unique
- data_encrypted : vrai si les colonnes sensibles de CETTE ligne sont chiffrées
  (lignes mixtes possibles pendant une migration)
- rfid_hash : empreinte déterministe du RFID pour la recherche sans déchiffrer
"""

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text, func

from app.database import Base


class LocalStudent(Base):
    __tablename__ = "students"

    pk = Column(Integer, primary_key=True, autoincrement=True)
    record_id = Column(String(64), unique=True, nullable=False)
    student_id = Column(String(100), unique=True, nullable=False)
    name = Column(Text, nullable=False)
    email = Column(Text, nullable=True)
    contact_number = Column(Text, nullable=True)
    course = Column(String(255), nullable=True)
    year = Column(String(50), nullable=True)
    level = Column(String(50), nullable=True)
    strand = Column(String(100), nullable=True)
    library = Column(String(50), nullable=True)
    user_type = Column(String(20), nullable=True)
    student_type = Column(String(20), nullable=True)
    rfid = Column(Text, nullable=True)
    rfid_hash = Column(String(64), nullable=True)
    biometric_data = Column(Text, nullable=True)
    registration_date = Column(DateTime, nullable=True)
    last_scan = Column(DateTime, nullable=True)
    dirty = Column(Boolean, default=False, nullable=False)
    data_encrypted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("idx_students_rfid", "rfid"),
        Index("idx_students_rfid_hash", "rfid_hash"),
        Index("idx_students_library", "library"),
        Index("idx_students_name", "name"),
    )
