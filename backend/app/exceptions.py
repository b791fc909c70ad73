"""
Taxonomie des erreurs du noyau offline-first.

- StorageUnavailableError : la facilité requise par un driver est absente (non fatal → repli)
- StorageError            : échec ponctuel de lecture/écriture locale
- NoStorageAvailableError : aucun driver ne fonctionne (fatal, remonte à l'appelant)
- RemoteError             : échec réseau ou réponse en erreur du backend distant (timeouts inclus)
- CooldownError           : rejet métier volontaire (double scan trop rapproché)
"""

from typing import Optional


class StorageError(Exception):
    """Échec d'une opération de stockage local."""


class StorageUnavailableError(StorageError):
    """Le driver ne peut pas fonctionner dans cet environnement."""


class NoStorageAvailableError(StorageError):
    """Tous les drivers ont échoué."""


class RemoteError(Exception):
    """Erreur lors d'un appel au backend distant."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CooldownError(Exception):
    """Action identique trop rapprochée pour le même élève."""

    def __init__(self, remaining_seconds: int):
        self.remaining_seconds = remaining_seconds
        minutes, seconds = divmod(remaining_seconds, 60)
        super().__init__(f"Veuillez patienter {minutes} min {seconds:02d} s avant de répéter cette action.")
