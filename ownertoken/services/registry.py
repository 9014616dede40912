"""
TokenRegistry: issuance, removal and lookup of owner-bound tokens
"""

import asyncio
import copy
import time
import weakref
from typing import Any, Awaitable, Mapping, Optional, TypeVar, Union

import structlog

from ..adapters.base import OwnerStore, TokenStore
from ..errors import (
    ConfigurationError,
    InvalidCredential,
    InvalidOwner,
    PersistenceFailed,
)
from ..metrics.collector import (
    MetricsCollector,
    collector,
    TOKENS_CREATED_TOTAL,
    TOKENS_REMOVED_TOTAL,
    TOKEN_LOOKUP_FAILURES_TOTAL,
    TOKEN_CREATE_LATENCY_MS,
    TOKEN_STORE_UP,
)
from ..token_models import (
    PROTECTED_FIELDS,
    RemovalResult,
    TokenOptions,
    TokenRecord,
    owner_identifier,
    utcnow,
)
from .crypto import CredentialGenerator

log = structlog.get_logger()

T = TypeVar("T")


class TokenRegistry:
    """
    Registry for one token type

    Provides:
    - Token creation, replacing the owner's previous tokens when unique
    - Removal of all tokens of an owner
    - Lookup by owner, by arbitrary filter, and by key, secret, key and
      secret, or single token value
    - Resolution of a found token back to its owning record

    In unique mode, creations and removals for the same owner are serialized
    within this process. Writers in other processes are not coordinated.
    """

    def __init__(
        self,
        options: TokenOptions,
        store: TokenStore,
        generator: Optional[CredentialGenerator] = None,
        owner_store: Optional[OwnerStore] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        """
        Initialize TokenRegistry

        Args:
            options: Token type configuration
            store: Store holding this token type's records
            generator: Credential generator (shares its salt cache)
            owner_store: Default store used to resolve owners
            metrics: Metrics collector (default: module collector)
        """
        self._options = options
        self._store = store
        self._generator = generator or CredentialGenerator()
        self._owner_store = owner_store
        self._metrics = metrics or collector
        self._logger = options.logger or log
        self._labels = {"type": options.type_tag}
        self._owner_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    @property
    def options(self) -> TokenOptions:
        return self._options

    @property
    def name(self) -> str:
        return self._options.table_name

    @property
    def type_tag(self) -> str:
        return self._options.type_tag

    @property
    def unique(self) -> bool:
        return self._options.unique

    @property
    def store(self) -> TokenStore:
        return self._store

    @property
    def generator(self) -> CredentialGenerator:
        return self._generator

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_token(
        self,
        owner: Any,
        extra_fields: Optional[Mapping[str, Any]] = None,
    ) -> TokenRecord:
        """
        Issue a new token for an owner

        Args:
            owner: Owning record exposing the configured identifier field
            extra_fields: Extension values for this record; they override
                schema defaults but never the generated fields

        Returns:
            The persisted TokenRecord

        Raises:
            InvalidOwner: If owner is None or has no identifier
            CredentialGenerationFailed: If hashing fails
            PersistenceFailed: If the store fails
        """
        owner_id = self._owner_id(owner)
        start_time = time.time()

        if self._options.unique:
            async with self._owner_lock(owner_id):
                # Prior tokens must be gone before the insert is issued
                await self._remove(owner_id)
                record = await self._issue(owner_id, extra_fields)
        else:
            record = await self._issue(owner_id, extra_fields)

        self._metrics.increment(TOKENS_CREATED_TOTAL, labels=self._labels)
        self._metrics.record_latency(TOKEN_CREATE_LATENCY_MS, start_time, labels=self._labels)
        self._log(
            "info",
            "token.created",
            record_id=record.id[:8],
            owner_id=owner_id,
            expires_at=record.expires_at,
        )
        return record

    async def remove_token(self, owner: Any) -> RemovalResult:
        """
        Remove every token of an owner. Removing nothing is not an error.

        Raises:
            InvalidOwner: If owner is None or has no identifier
            PersistenceFailed: If the store fails
        """
        owner_id = self._owner_id(owner)
        if self._options.unique:
            async with self._owner_lock(owner_id):
                return await self._remove(owner_id)
        return await self._remove(owner_id)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def find(self, query: Optional[Mapping[str, Any]] = None) -> list[TokenRecord]:
        """Find every token matching all fields of ``query``"""
        return await self._guard("lookup", self._store.find(_store_query(query)))

    async def find_one(self, query: Mapping[str, Any]) -> Optional[TokenRecord]:
        """Find the first token matching all fields of ``query``"""
        return await self._guard("lookup", self._store.find_one(_store_query(query)))

    async def count(self, query: Optional[Mapping[str, Any]] = None) -> int:
        return await self._guard("count", self._store.count(_store_query(query)))

    async def find_by_owner(self, owner: Any) -> Union[Optional[TokenRecord], list[TokenRecord]]:
        """
        Find the tokens of an owner

        Returns:
            The token or None in unique mode, otherwise a possibly empty list
        """
        owner_id = self._owner_id(owner)
        if self._options.unique:
            return await self.find_one({"owner_id": owner_id})
        return await self.find({"owner_id": owner_id})

    async def find_by_key(self, key: str) -> TokenRecord:
        """
        Raises:
            InvalidCredential: If no token has this key
        """
        return await self._find_credential(key=key)

    async def find_by_secret(self, secret: str) -> TokenRecord:
        """
        Raises:
            InvalidCredential: If no token has this secret
        """
        return await self._find_credential(secret=secret)

    async def find_by_key_and_secret(self, key: str, secret: str) -> TokenRecord:
        """
        Find the token holding both values. A key in place of the secret, or
        the other way round, never matches.

        Raises:
            InvalidCredential: If no single token holds both values
        """
        return await self._find_credential(key=key, secret=secret)

    async def find_by_token(self, token: str) -> TokenRecord:
        """
        Raises:
            InvalidCredential: If no token has this value
        """
        return await self._find_credential(token=token)

    async def resolve_owner(
        self,
        record: Optional[TokenRecord],
        owner_store: Optional[OwnerStore] = None,
    ) -> Any:
        """
        Resolve a found token to its live owning record

        Args:
            record: Token found by a lookup, None when the lookup found nothing
            owner_store: Owner store to query (default: the registry's)

        Raises:
            InvalidCredential: If record is None or its owner no longer exists
            ConfigurationError: If no owner store is available
            PersistenceFailed: If the owner store fails
        """
        if record is None:
            self._lookup_failed("not_found")
            raise InvalidCredential()

        owner_store = owner_store or self._owner_store
        if owner_store is None:
            raise ConfigurationError(
                f"No owner store configured to resolve '{self.name}' tokens"
            )

        owner = await self._guard("owner_lookup", owner_store.get(record.owner_id))
        if owner is None:
            self._lookup_failed("owner_missing")
            raise InvalidCredential()
        return owner

    async def find_owner_by_key(self, key: str, owner_store: Optional[OwnerStore] = None) -> Any:
        return await self.resolve_owner(await self.find_by_key(key), owner_store)

    async def find_owner_by_secret(self, secret: str, owner_store: Optional[OwnerStore] = None) -> Any:
        return await self.resolve_owner(await self.find_by_secret(secret), owner_store)

    async def find_owner_by_key_and_secret(
        self,
        key: str,
        secret: str,
        owner_store: Optional[OwnerStore] = None,
    ) -> Any:
        record = await self.find_by_key_and_secret(key, secret)
        return await self.resolve_owner(record, owner_store)

    async def find_owner_by_token(self, token: str, owner_store: Optional[OwnerStore] = None) -> Any:
        return await self.resolve_owner(await self.find_by_token(token), owner_store)

    # ------------------------------------------------------------------
    # Owner-bound view and shared utilities
    # ------------------------------------------------------------------

    def bind(self, owner: Any) -> "OwnerTokens":
        """
        Get the operations of this registry bound to one owner

        Raises:
            InvalidOwner: If owner is None or has no identifier
        """
        self._owner_id(owner)
        return OwnerTokens(self, owner)

    async def salt(self, cost_factor: Optional[int] = None) -> str:
        return await self._generator.salt_for(self._cost_factor(cost_factor))

    async def hash(self, value: str, cost_factor: Optional[int] = None) -> str:
        return await self._generator.hash(value, self._cost_factor(cost_factor))

    async def health_check(self) -> bool:
        """Check the token store, recording the result as a gauge"""
        healthy = await self._store.health_check()
        self._metrics.gauge(TOKEN_STORE_UP, 1.0 if healthy else 0.0, labels=self._labels)
        if not healthy:
            self._log("warning", "token.store_unhealthy")
        return healthy

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _issue(
        self,
        owner_id: str,
        extra_fields: Optional[Mapping[str, Any]],
    ) -> TokenRecord:
        fields = self._extension_fields(extra_fields)
        cost_factor = self._cost_factor(None)

        if self._options.mode == "token":
            credentials = {"token": await self._generator.generate_token(owner_id, cost_factor)}
        else:
            pair = await self._generator.generate_key_and_secret(owner_id, cost_factor)
            credentials = pair.model_dump()

        created_at = utcnow()
        record = TokenRecord(
            type=self._options.type_tag,
            owner_id=owner_id,
            created_at=created_at,
            expires_at=self._options.expiry_from(created_at),
            **credentials,
            **fields,
        )
        return await self._guard("save", self._store.insert(record))

    async def _remove(self, owner_id: str) -> RemovalResult:
        deleted = await self._guard("removal", self._store.delete_many({"owner_id": owner_id}))
        if deleted:
            self._metrics.increment(TOKENS_REMOVED_TOTAL, value=deleted, labels=self._labels)
        self._log("debug", "token.removed", owner_id=owner_id, count=deleted)
        return RemovalResult(owner_id=owner_id, deleted_count=deleted)

    async def _find_credential(self, **credentials: str) -> TokenRecord:
        allowed = ("token",) if self._options.mode == "token" else ("key", "secret")
        well_formed = all(
            field in allowed and isinstance(value, str) and value
            for field, value in credentials.items()
        )
        if not well_formed:
            self._lookup_failed("malformed")
            raise InvalidCredential()

        record = await self.find_one(credentials)
        if record is None:
            self._lookup_failed("not_found")
            raise InvalidCredential()
        return record

    def _extension_fields(self, extra_fields: Optional[Mapping[str, Any]]) -> dict[str, Any]:
        fields = {}
        for name, default in self._options.extension_schema.items():
            fields[name] = default() if callable(default) else copy.deepcopy(default)
        for name, value in (extra_fields or {}).items():
            if name in PROTECTED_FIELDS:
                self._log("warning", "token.protected_field_ignored", field=name)
                continue
            fields[name] = value
        return fields

    def _owner_id(self, owner: Any) -> str:
        if owner is None:
            raise InvalidOwner(f"No owner given for '{self.name}' token")
        owner_id = owner_identifier(owner, self._options.owner_id_field)
        if owner_id is None:
            raise InvalidOwner(
                f"Owner has no '{self._options.owner_id_field}' identifier"
            )
        return owner_id

    def _owner_lock(self, owner_id: str) -> asyncio.Lock:
        lock = self._owner_locks.get(owner_id)
        if lock is None:
            lock = asyncio.Lock()
            self._owner_locks[owner_id] = lock
        return lock

    def _cost_factor(self, cost_factor: Optional[int]) -> Optional[int]:
        if cost_factor is not None:
            return cost_factor
        return self._options.cost_factor

    async def _guard(self, action: str, operation: Awaitable[T]) -> T:
        try:
            return await operation
        except Exception as e:
            self._log("error", f"token.{action}_failed", error=str(e))
            raise PersistenceFailed(f"Error during token {action}: {e}", e) from e

    def _lookup_failed(self, reason: str) -> None:
        self._metrics.increment(TOKEN_LOOKUP_FAILURES_TOTAL, labels=self._labels)
        self._log("debug", "token.lookup_failed", reason=reason)

    def _log(self, level: str, event: str, **fields: Any) -> None:
        # Logging is best-effort and must not fail the operation
        try:
            getattr(self._logger, level)(event, token_type=self.type_tag, **fields)
        except Exception:
            pass


class OwnerTokens:
    """
    Registry operations bound to one owner
    """

    def __init__(self, registry: TokenRegistry, owner: Any):
        self._registry = registry
        self._owner = owner

    @property
    def registry(self) -> TokenRegistry:
        return self._registry

    @property
    def owner(self) -> Any:
        return self._owner

    async def create(self, extra_fields: Optional[Mapping[str, Any]] = None) -> TokenRecord:
        return await self._registry.create_token(self._owner, extra_fields)

    async def remove(self) -> RemovalResult:
        return await self._registry.remove_token(self._owner)

    async def find(self) -> Union[Optional[TokenRecord], list[TokenRecord]]:
        return await self._registry.find_by_owner(self._owner)


def _store_query(query: Optional[Mapping[str, Any]]) -> dict[str, Any]:
    """Copy a filter, stringifying ``owner_id`` the way records store it"""
    query = dict(query or {})
    if query.get("owner_id") is not None:
        query["owner_id"] = str(query["owner_id"])
    return query
