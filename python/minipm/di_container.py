"""Dependency injection container for MiniPM.

Lightweight wiring of services at application startup.
Uses lazy initialization; services are created on first access.
"""

import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class MiniPMContainer:
    """Central service container for the scheduler service."""

    def __init__(self) -> None:
        self._settings = None
        self._store = None

    @property
    def settings(self):
        if self._settings is None:
            from minipm.config.settings import get_settings
            self._settings = get_settings()
        return self._settings

    @property
    def store(self):
        if self._store is None:
            from minipm.storage.project_store import ProjectStore
            self._store = ProjectStore(storage_path=self.settings.data_path)
            logger.info("ProjectStore initialized (%s)", self.settings.data_path or "in-memory")
        return self._store

    def status(self) -> Dict[str, Any]:
        """Which services have been created so far."""
        return {
            "settings": self._settings is not None,
            "store": self._store is not None,
        }


_container: Optional[MiniPMContainer] = None


def get_container() -> MiniPMContainer:
    global _container
    if _container is None:
        _container = MiniPMContainer()
    return _container


def shutdown_container() -> None:
    global _container
    if _container is not None:
        logger.info("Shutting down container")
    _container = None
