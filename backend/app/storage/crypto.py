"""
Chiffrement réversible des colonnes sensibles du tier sqlite (AES-256-GCM)
et gestion de la clé.

Format stocké : `iv:chiffré:tag` (hexadécimal). Chaque chiffrement tire un IV
aléatoire, donc deux chiffrements du même texte diffèrent ; pour la recherche
par RFID on stocke en plus une empreinte SHA-256 déterministe.

Priorité de la clé : variable d'environnement DB_ENCRYPTION_KEY > fichier
`.encryption-key` dans le répertoire de données > génération d'une nouvelle clé.
"""

import hashlib
import logging
import os
import re
import secrets
from pathlib import Path
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)

KEY_LENGTH = 32
IV_LENGTH = 12
TAG_LENGTH = 16
KEY_FILE_NAME = ".encryption-key"

_HEX_KEY_RE = re.compile(r"^[0-9a-f]{64}$", re.IGNORECASE)


class FieldCipher:
    """Chiffre/déchiffre des chaînes avec une clé de 256 bits."""

    def __init__(self, key_hex: str):
        if not key_hex or not _HEX_KEY_RE.match(key_hex):
            raise ValueError(f"La clé de chiffrement doit faire {KEY_LENGTH} octets ({KEY_LENGTH * 2} caractères hexadécimaux).")
        self._aead = AESGCM(bytes.fromhex(key_hex))

    def encrypt(self, text: Optional[str]) -> Optional[str]:
        if not text:
            return None
        iv = secrets.token_bytes(IV_LENGTH)
        sealed = self._aead.encrypt(iv, text.encode("utf-8"), None)
        encrypted, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return f"{iv.hex()}:{encrypted.hex()}:{tag.hex()}"

    def decrypt(self, value: Optional[str]) -> Optional[str]:
        """Retourne None (avec un avertissement) pour une valeur corrompue plutôt que d'échouer toute la lecture."""
        if not value:
            return None
        parts = value.split(":")
        if len(parts) != 3:
            logger.warning("Donnée chiffrée au format invalide, ignorée.")
            return None
        iv_hex, encrypted_hex, tag_hex = parts
        try:
            plain = self._aead.decrypt(bytes.fromhex(iv_hex), bytes.fromhex(encrypted_hex + tag_hex), None)
        except (InvalidTag, ValueError) as exc:
            logger.warning("Échec du déchiffrement d'une colonne : %s", exc.__class__.__name__)
            return None
        return plain.decode("utf-8")


def search_hash(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def generate_key() -> str:
    return secrets.token_hex(KEY_LENGTH)


def key_file_path(data_dir: Path) -> Path:
    return Path(data_dir) / KEY_FILE_NAME


def get_or_create_key(data_dir: Path, env_key: str = "") -> str:
    """
    Résout la clé de chiffrement.
    Lève RuntimeError si le fichier de clé existe mais est illisible :
    démarrer avec une nouvelle clé rendrait les données existantes illisibles.
    """
    if env_key:
        logger.info("Clé de chiffrement fournie par l'environnement.")
        return env_key

    path = key_file_path(data_dir)
    if path.exists():
        try:
            key = path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise RuntimeError("Impossible de lire le fichier de clé de chiffrement.") from exc
        logger.info("Clé de chiffrement chargée depuis %s", path)
        return key

    logger.warning("Aucune clé de chiffrement trouvée, génération d'une nouvelle clé.")
    key = generate_key()
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(key)
    logger.warning("Nouvelle clé enregistrée dans %s (à sauvegarder : clé perdue = données perdues).", path)
    return key


def backup_key(data_dir: Path, backup_path: Path) -> None:
    """Copie le fichier de clé vers backup_path (permissions 0600)."""
    source = key_file_path(data_dir)
    if not source.exists():
        raise FileNotFoundError("Aucun fichier de clé de chiffrement à sauvegarder.")
    fd = os.open(backup_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(source.read_text(encoding="utf-8"))
    logger.info("Clé de chiffrement sauvegardée vers %s", backup_path)


def restore_key(data_dir: Path, backup_path: Path) -> None:
    """Remplace la clé courante par celle du fichier de sauvegarde (validée)."""
    key = Path(backup_path).read_text(encoding="utf-8").strip()
    if not _HEX_KEY_RE.match(key):
        raise ValueError("Format de clé invalide dans le fichier de sauvegarde.")
    target = key_file_path(data_dir)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(key)
    logger.info("Clé de chiffrement restaurée depuis %s", backup_path)
