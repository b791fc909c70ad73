"""
Identifiants locaux vs identifiants distants.

Le backend attribue des UUID ; c'est le seul signal qui distingue un
enregistrement synchronisé d'un enregistrement encore local (placeholder
`local_<ms>_<aléa>` ou identifiant numérique d'une ancienne base SQLite).
"""

import re
import secrets
import string
import time

PLACEHOLDER_PREFIX = "local_"

_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)
_ALPHABET = string.ascii_lowercase + string.digits


def generate_placeholder_id() -> str:
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(9))
    return f"{PLACEHOLDER_PREFIX}{int(time.time() * 1000)}_{suffix}"


def is_uuid(value) -> bool:
    return value is not None and bool(_UUID_RE.match(str(value)))


def is_placeholder(value) -> bool:
    return str(value or "").startswith(PLACEHOLDER_PREFIX)


def is_local_only(value) -> bool:
    """Vrai si l'identifiant n'a jamais été attribué par le backend."""
    return is_placeholder(value) or not is_uuid(value)
