"""Base interfaces for token and owner stores."""
from abc import ABC, abstractmethod
from typing import Any, Optional
from ..token_models import TokenRecord


class TokenStore(ABC):
    """Abstract interface for token record persistence.

    A store instance holds the records of a single collection (one token
    type). Expired records must never be returned by a query; how they are
    purged is up to the implementation.
    """

    @abstractmethod
    async def insert(self, record: TokenRecord) -> TokenRecord:
        """
        Persist a new token record.

        Args:
            record: The record to store

        Returns:
            The stored record
        """
        pass

    @abstractmethod
    async def find(self, query: dict[str, Any]) -> list[TokenRecord]:
        """
        Find every live record matching all fields of the query.

        Args:
            query: Field name to exact value mapping; empty matches all

        Returns:
            Matching records, oldest first
        """
        pass

    async def find_one(self, query: dict[str, Any]) -> Optional[TokenRecord]:
        """Find the first live record matching the query."""
        records = await self.find(query)
        return records[0] if records else None

    @abstractmethod
    async def delete_many(self, query: dict[str, Any]) -> int:
        """
        Delete every record matching the query.

        Returns:
            Number of records deleted
        """
        pass

    async def count(self, query: Optional[dict[str, Any]] = None) -> int:
        """Count live records matching the query."""
        return len(await self.find(query or {}))

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Check if the backend is healthy and accessible.

        Returns:
            True if backend is healthy, False otherwise
        """
        pass

    async def close(self) -> None:
        """Release backend resources."""
        return None


class OwnerStore(ABC):
    """Lookup of owning records by their identifier."""

    @abstractmethod
    async def get(self, owner_id: str) -> Optional[Any]:
        """
        Fetch the live owner record.

        Returns:
            The owner, or None if no such owner exists
        """
        pass
