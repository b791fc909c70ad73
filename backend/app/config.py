"""
Configuration centrale de l'application via variables d'environnement.
Charger depuis un fichier .env en développement.
"""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Backend distant (PostgREST / Supabase)
    REMOTE_URL: str = "http://localhost:54321"
    REMOTE_API_KEY: str = ""
    REMOTE_TIMEOUT_SECONDS: float = 15.0
    REMOTE_PAGE_SIZE: int = 1000

    # Stockage local
    DATA_DIR: Path = Path.home() / ".library-attendance"
    DESKTOP_MODE: bool = True                      # Hôte avec accès direct au système de fichiers
    SQLITE_FILE_NAME: str = "library-attendance.db"
    EMBEDDED_STORE_URL: str = ""                   # Vide → <DATA_DIR>/embedded-store.db
    FLAT_STORE_PATH: str = ""                      # Vide → <DATA_DIR>/flat-store
    BACKUP_RETENTION: int = 7

    # Chiffrement des colonnes sensibles (tier sqlite)
    ENCRYPTION_ENABLED: bool = False
    DB_ENCRYPTION_KEY: str = ""                    # 64 caractères hexadécimaux

    # Synchronisation
    SYNC_INTERVAL_SECONDS: int = 60
    MIN_SYNC_SPACING_SECONDS: int = 30
    PUSH_WINDOW_DAYS: int = 7
    PULL_WINDOW_DAYS: int = 30
    PUSH_GRACE_SECONDS: int = 15
    DUPLICATE_WINDOW_SECONDS: int = 10
    STARTUP_ONLINE_CHECK_SECONDS: int = 2

    # Temps réel
    REALTIME_FLUSH_SECONDS: float = 2.0

    # Règles métier
    COOLDOWN_SECONDS: int = 300
    LOCAL_WINDOW_DAYS: int = 30

    # Environnement
    ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def sqlite_path(self) -> Path:
        return self.DATA_DIR / self.SQLITE_FILE_NAME

    @property
    def embedded_store_url(self) -> str:
        return self.EMBEDDED_STORE_URL or f"sqlite:///{self.DATA_DIR / 'embedded-store.db'}"

    @property
    def flat_store_path(self) -> Path:
        return Path(self.FLAT_STORE_PATH) if self.FLAT_STORE_PATH else self.DATA_DIR / "flat-store"


settings = Settings()
