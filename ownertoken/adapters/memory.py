"""In-memory token and owner stores."""
import threading
from typing import Any, Dict, Optional
import structlog
from .base import OwnerStore, TokenStore
from ..token_models import TokenRecord, owner_identifier

log = structlog.get_logger()


class InMemoryTokenStore(TokenStore):
    """
    Thread-safe in-memory store for token records with automatic expiry cleanup
    """

    def __init__(self, collection: str = "tokens", cleanup_interval_seconds: Optional[int] = 60):
        """
        Initialize token store

        Args:
            collection: Name of the collection this store holds
            cleanup_interval_seconds: Interval for automatic cleanup of expired
                records, None disables the background sweep
        """
        self.collection = collection
        self._records: Dict[str, TokenRecord] = {}
        self._lock = threading.RLock()
        self._cleanup_interval = cleanup_interval_seconds
        self._cleanup_timer: Optional[threading.Timer] = None
        self._shutdown = False

        self._schedule_cleanup()

    async def insert(self, record: TokenRecord) -> TokenRecord:
        with self._lock:
            self._records[record.id] = record.model_copy(deep=True)
            log.debug(
                "store.inserted",
                collection=self.collection,
                record_id=record.id[:8],
                expires_at=record.expires_at,
            )
        return record

    async def find(self, query: dict[str, Any]) -> list[TokenRecord]:
        with self._lock:
            self._purge_expired()
            return [
                record.model_copy(deep=True) for record in self._records.values()
                if record.matches(query)
            ]

    async def delete_many(self, query: dict[str, Any]) -> int:
        with self._lock:
            self._purge_expired()
            doomed = [
                record_id for record_id, record in self._records.items()
                if record.matches(query)
            ]
            for record_id in doomed:
                del self._records[record_id]
            log.debug("store.deleted", collection=self.collection, count=len(doomed))
            return len(doomed)

    async def health_check(self) -> bool:
        """In-memory store is always healthy."""
        return True

    def cleanup_expired(self) -> int:
        """
        Remove all expired records from the store

        Returns:
            Number of records removed
        """
        with self._lock:
            removed = self._purge_expired()
            if removed:
                log.info("store.expired_cleaned", collection=self.collection, count=removed)
            return removed

    def count_all(self) -> int:
        """
        Get count of all records (including expired ones not yet purged)
        """
        with self._lock:
            return len(self._records)

    def clear(self) -> None:
        """Clear all records from the store"""
        with self._lock:
            self._records.clear()
            log.info("store.cleared", collection=self.collection)

    def _purge_expired(self) -> int:
        expired_ids = [
            record_id for record_id, record in self._records.items()
            if record.is_expired
        ]
        for record_id in expired_ids:
            del self._records[record_id]
        return len(expired_ids)

    def _schedule_cleanup(self) -> None:
        """Schedule the next automatic cleanup"""
        if self._shutdown or not self._cleanup_interval:
            return

        self._cleanup_timer = threading.Timer(
            self._cleanup_interval,
            self._run_cleanup
        )
        self._cleanup_timer.daemon = True
        self._cleanup_timer.start()

    def _run_cleanup(self) -> None:
        """Run cleanup and schedule next one"""
        try:
            self.cleanup_expired()
        except Exception as e:
            log.error("store.cleanup_failed", collection=self.collection, error=str(e))
        finally:
            if not self._shutdown:
                self._schedule_cleanup()

    async def close(self) -> None:
        self.shutdown()

    def shutdown(self) -> None:
        """Shutdown the store and cancel cleanup timer"""
        self._shutdown = True
        if self._cleanup_timer:
            self._cleanup_timer.cancel()
            self._cleanup_timer = None

    def __len__(self) -> int:
        with self._lock:
            self._purge_expired()
            return len(self._records)


class InMemoryOwnerStore(OwnerStore):
    """
    Owner lookup backed by a dict, keyed by the owner identifier
    """

    def __init__(self, id_field: str = "id"):
        self._id_field = id_field
        self._owners: Dict[str, Any] = {}

    def add(self, owner: Any) -> Any:
        owner_id = owner_identifier(owner, self._id_field)
        if owner_id is None:
            raise ValueError(f"Owner has no '{self._id_field}' identifier")
        self._owners[owner_id] = owner
        return owner

    def discard(self, owner: Any) -> None:
        owner_id = owner_identifier(owner, self._id_field)
        if owner_id is not None:
            self._owners.pop(owner_id, None)

    async def get(self, owner_id: str) -> Optional[Any]:
        return self._owners.get(str(owner_id))
