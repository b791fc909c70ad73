"""
Table clé/valeur de métadonnées du tier sqlite.
Clés utilisées : lastSync, fullSyncCompleted, documents, encryptionKeyRef.
"""

from sqlalchemy import Column, DateTime, String, Text, func

from app.database import Base

LAST_SYNC_KEY = "lastSync"
FULL_SYNC_KEY = "fullSyncCompleted"
DOCUMENTS_KEY = "documents"
ENCRYPTION_KEY_REF = "encryptionKeyRef"


class SyncMetadata(Base):
    __tablename__ = "sync_metadata"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
