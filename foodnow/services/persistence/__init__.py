"""
Persistence Provider Factory

Returns the in-memory or SQL provider based on ENV_MODE.
"""

import logging
from functools import lru_cache

from foodnow.core.config import get_settings
from foodnow.services.persistence.base import (
    BasePersistenceProvider,
    ChangeEvent,
    Record,
)
from foodnow.services.persistence.memory import InMemoryPersistenceProvider

logger = logging.getLogger(__name__)


@lru_cache()
def get_persistence_provider() -> BasePersistenceProvider:
    """Get the configured persistence provider."""
    settings = get_settings()

    if settings.is_development:
        logger.info("Persistence: Using InMemoryPersistenceProvider (development mode)")
        return InMemoryPersistenceProvider()
    else:
        from foodnow.services.persistence.sql import SQLPersistenceProvider

        logger.info(f"Persistence: Using SQLPersistenceProvider ({settings.env_mode.value} mode)")
        return SQLPersistenceProvider()


def reset_persistence_provider() -> None:
    """Clear the cached provider instance."""
    get_persistence_provider.cache_clear()


__all__ = [
    "get_persistence_provider",
    "reset_persistence_provider",
    "BasePersistenceProvider",
    "ChangeEvent",
    "InMemoryPersistenceProvider",
    "Record",
]
