"""
Tests du chiffrement des colonnes sensibles et de la gestion de la clé.
"""

import os
import stat

import pytest

from app.storage.crypto import (
    KEY_FILE_NAME,
    FieldCipher,
    backup_key,
    generate_key,
    get_or_create_key,
    restore_key,
    search_hash,
)


# ============================================================
# FieldCipher
# ============================================================

def test_chiffrement_reversible():
    cipher = FieldCipher(generate_key())

    sealed = cipher.encrypt("Juan Dela Cruz")

    assert sealed.count(":") == 2
    assert cipher.decrypt(sealed) == "Juan Dela Cruz"


def test_iv_aleatoire():
    cipher = FieldCipher(generate_key())
    assert cipher.encrypt("RF-001") != cipher.encrypt("RF-001")


def test_valeurs_vides():
    cipher = FieldCipher(generate_key())

    assert cipher.encrypt("") is None
    assert cipher.encrypt(None) is None
    assert cipher.decrypt(None) is None


def test_donnee_corrompue():
    cipher = FieldCipher(generate_key())
    iv, encrypted, tag = cipher.encrypt("Juan").split(":")

    assert cipher.decrypt("pas-chiffre") is None
    assert cipher.decrypt(f"{iv}:{encrypted}:{'0' * len(tag)}") is None


def test_mauvaise_cle():
    sealed = FieldCipher(generate_key()).encrypt("Juan")
    assert FieldCipher(generate_key()).decrypt(sealed) is None


def test_cle_invalide():
    with pytest.raises(ValueError):
        FieldCipher("trop-courte")


def test_empreinte_deterministe():
    assert search_hash("RF-001") == search_hash("RF-001")
    assert len(search_hash("RF-001")) == 64
    assert search_hash(None) is None


# ============================================================
# Gestion de la clé
# ============================================================

def test_cle_environnement_prioritaire(tmp_path):
    key = generate_key()

    assert get_or_create_key(tmp_path, env_key=key) == key
    assert not (tmp_path / KEY_FILE_NAME).exists()


def test_cle_generee_puis_relue(tmp_path):
    key = get_or_create_key(tmp_path)

    path = tmp_path / KEY_FILE_NAME
    assert path.read_text(encoding="utf-8") == key
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
    assert get_or_create_key(tmp_path) == key


def test_sauvegarde_et_restauration_de_la_cle(tmp_path):
    key = get_or_create_key(tmp_path)
    backup_path = tmp_path / "encryption-key.backup"
    backup_key(tmp_path, backup_path)
    (tmp_path / KEY_FILE_NAME).write_text(generate_key(), encoding="utf-8")

    restore_key(tmp_path, backup_path)

    assert get_or_create_key(tmp_path) == key


def test_sauvegarde_sans_cle(tmp_path):
    with pytest.raises(FileNotFoundError):
        backup_key(tmp_path, tmp_path / "encryption-key.backup")


def test_restauration_cle_invalide(tmp_path):
    backup_path = tmp_path / "encryption-key.backup"
    backup_path.write_text("invalide", encoding="utf-8")

    with pytest.raises(ValueError):
        restore_key(tmp_path, backup_path)
