"""
Router pour le stockage local : état, migration entre drivers, effacement,
sauvegardes et maintenance de la base SQLite.
"""

from pathlib import Path
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from app.container import Container, get_container
from app.exceptions import StorageUnavailableError
from app.schemas.offline import (
    BackupInfo,
    BackupRestoreRequest,
    DeduplicationReport,
    MaintenanceReport,
    StorageStatus,
)
from app.schemas.sync import StorageMigrationRequest
from app.services import storage_service
from app.storage import crypto

router = APIRouter(prefix="/api/storage", tags=["Stockage local"])

KEY_BACKUP_NAME = "encryption-key.backup"


def _require_sqlite(container: Container) -> None:
    if container.storage.get_current_driver_name() != "sqlite":
        raise HTTPException(status_code=409, detail="Opération disponible uniquement avec la base SQLite.")


def _require_encryption(container: Container) -> None:
    if not container.settings.ENCRYPTION_ENABLED:
        raise HTTPException(status_code=409, detail="Le chiffrement local n'est pas activé.")


@router.get("/status", response_model=StorageStatus, summary="État du stockage local")
async def get_storage_status(container: Container = Depends(get_container)):
    return await container.storage.status()


@router.post("/migrate", response_model=StorageStatus, summary="Migrer vers un autre driver")
async def migrate_storage(data: StorageMigrationRequest, container: Container = Depends(get_container)):
    """Copie les données du driver actif vers le driver cible puis bascule dessus."""
    try:
        await container.storage.migrate(data.target)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StorageUnavailableError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return await container.storage.status()


@router.delete("", status_code=204, summary="Effacer toutes les données locales")
async def clear_storage(container: Container = Depends(get_container)):
    await container.storage.clear()


@router.post("/deduplicate", response_model=DeduplicationReport, summary="Supprimer les passages en double")
async def deduplicate(container: Container = Depends(get_container)):
    return await storage_service.deduplicate(container.storage)


# --- Sauvegardes (tier sqlite) ---

@router.get("/backups", response_model=List[BackupInfo], summary="Lister les sauvegardes")
def list_backups(container: Container = Depends(get_container)):
    return [
        BackupInfo(name=p.name, size=p.stat().st_size)
        for p in storage_service.list_backups(container.backup_dir)
    ]


@router.post("/backup", response_model=BackupInfo, status_code=201, summary="Créer une sauvegarde")
def create_backup(container: Container = Depends(get_container)):
    """Copie la base SQLite dans le dossier backups/ ; seules les 7 dernières sont conservées."""
    _require_sqlite(container)
    path = storage_service.create_backup(
        container.database, container.backup_dir, container.settings.BACKUP_RETENTION
    )
    return BackupInfo(name=path.name, size=path.stat().st_size)


@router.post("/restore", response_model=BackupInfo, summary="Restaurer une sauvegarde")
def restore_backup(data: BackupRestoreRequest, container: Container = Depends(get_container)):
    """La base courante est sauvegardée avant d'être remplacée. Retourne cette sauvegarde de sécurité."""
    _require_sqlite(container)
    if Path(data.name).name != data.name:
        raise HTTPException(status_code=400, detail="Nom de sauvegarde invalide.")
    try:
        safety = storage_service.restore_backup(
            container.database,
            container.backup_dir / data.name,
            container.backup_dir,
            container.settings.BACKUP_RETENTION,
        )
    except FileNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return BackupInfo(name=safety.name, size=safety.stat().st_size)


@router.post("/key/backup", response_model=BackupInfo, status_code=201, summary="Sauvegarder la clé de chiffrement")
def backup_encryption_key(container: Container = Depends(get_container)):
    """Copie le fichier de clé dans le dossier backups/ (clé perdue = données illisibles)."""
    _require_encryption(container)
    container.backup_dir.mkdir(parents=True, exist_ok=True)
    target = container.backup_dir / KEY_BACKUP_NAME
    try:
        crypto.backup_key(container.settings.DATA_DIR, target)
    except FileNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return BackupInfo(name=target.name, size=target.stat().st_size)


@router.post("/key/restore", status_code=204, summary="Restaurer la clé de chiffrement")
def restore_encryption_key(data: BackupRestoreRequest, container: Container = Depends(get_container)):
    """Remplace la clé courante ; prise en compte au prochain démarrage."""
    _require_encryption(container)
    if Path(data.name).name != data.name:
        raise HTTPException(status_code=400, detail="Nom de sauvegarde invalide.")
    source = container.backup_dir / data.name
    if not source.exists():
        raise HTTPException(status_code=404, detail=f"Sauvegarde introuvable : {data.name}")
    try:
        crypto.restore_key(container.settings.DATA_DIR, source)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/maintenance", response_model=MaintenanceReport, summary="Vérifier et compacter la base")
def run_maintenance(container: Container = Depends(get_container)):
    _require_sqlite(container)
    database = container.database
    integrity_ok = database.check_integrity()
    if integrity_ok:
        database.vacuum()
    stats = database.stats()
    return MaintenanceReport(integrity_ok=integrity_ok, **stats)
