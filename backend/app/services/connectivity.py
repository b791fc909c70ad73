"""
Suivi de l'état en ligne / hors ligne.

Deux sources : la sonde (ping du backend, interrogée par le job périodique)
et les événements signalés par l'hôte de l'interface (online / offline).
"""

import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    def __init__(self, probe: Callable[[], Awaitable[bool]], online: bool = False):
        self._probe = probe
        self.online = online

    async def check(self) -> bool:
        """Interroge la sonde et met à jour l'état. Retourne l'état courant."""
        online = await self._probe()
        if online != self.online:
            logger.info("Connectivité : %s", "en ligne" if online else "hors ligne")
        self.online = online
        return online

    def mark_online(self) -> None:
        self.online = True

    def mark_offline(self) -> None:
        if self.online:
            logger.info("Connexion perdue, passage en mode hors ligne.")
        self.online = False
