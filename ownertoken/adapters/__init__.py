"""Token and owner store adapters."""
from typing import Optional
import structlog

from .base import OwnerStore, TokenStore
from .memory import InMemoryOwnerStore, InMemoryTokenStore
from .redis_store import RedisTokenStore
from ..config import Settings, get_settings

log = structlog.get_logger()


def create_token_store(collection: str, settings: Optional[Settings] = None) -> TokenStore:
    """
    Create the token store for one collection based on configuration.

    Returns:
        TokenStore instance based on the STORE_ADAPTER setting
    """
    settings = settings or get_settings()
    if settings.STORE_ADAPTER == "redis":
        if not settings.REDIS_URL:
            log.warning(
                "store.fallback",
                requested="redis",
                actual="memory",
                reason="REDIS_URL not configured",
                collection=collection,
            )
            return InMemoryTokenStore(collection, settings.CLEANUP_INTERVAL_SECONDS)

        log.info("store.selected", type="redis", collection=collection)
        return RedisTokenStore(collection, redis_url=str(settings.REDIS_URL))

    log.info("store.selected", type="memory", collection=collection)
    return InMemoryTokenStore(collection, settings.CLEANUP_INTERVAL_SECONDS)


__all__ = [
    "TokenStore",
    "OwnerStore",
    "InMemoryTokenStore",
    "InMemoryOwnerStore",
    "RedisTokenStore",
    "create_token_store",
]
