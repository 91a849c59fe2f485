"""
Persistence Gateway Factory

Provides a single entry point for obtaining the persistence gateway.
The coordinators stay agnostic about which store is behind it.

Usage:
    from backoffice.services.persistence import get_persistence_gateway

    gateway = get_persistence_gateway()
    order = await gateway.load_order(42)

Environment Switching:
    - ENV_MODE=development → InMemoryGateway (seeded demo data)
    - ENV_MODE=staging → SqlAlchemyGateway
    - ENV_MODE=production → SqlAlchemyGateway
"""

import logging
from functools import lru_cache

from backoffice.core.config import get_settings
from backoffice.database import get_engine
from backoffice.seed import seed_gateway
from backoffice.services.persistence.base import BasePersistenceGateway
from backoffice.services.persistence.memory import InMemoryGateway
from backoffice.services.persistence.sql import SqlAlchemyGateway

logger = logging.getLogger(__name__)


@lru_cache()
def get_persistence_gateway() -> BasePersistenceGateway:
    """
    Get the configured persistence gateway instance.

    The instance is cached so every coordinator in the process
    shares the same store.

    Returns:
        BasePersistenceGateway: Configured gateway
    """
    settings = get_settings()

    if settings.use_database:
        logger.info(
            f"Persistence: Using SqlAlchemyGateway ({settings.env_mode.value} mode)"
        )
        return SqlAlchemyGateway(get_engine())

    logger.info("Persistence: Using InMemoryGateway (development mode)")
    gateway = InMemoryGateway()
    if settings.seed_demo_data:
        seed_gateway(gateway)
    return gateway


def reset_persistence_gateway() -> None:
    """
    Clear the cached gateway instance.

    Useful for testing or when configuration changes at runtime.
    """
    get_persistence_gateway.cache_clear()
    logger.debug("Persistence gateway cache cleared")


__all__ = [
    "get_persistence_gateway",
    "reset_persistence_gateway",
    "BasePersistenceGateway",
    "InMemoryGateway",
    "SqlAlchemyGateway",
]
