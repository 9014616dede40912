"""Redis token store adapter."""
import math
from typing import Any, Iterable, Optional
import structlog
import orjson
from redis.asyncio import Redis
from redis.exceptions import RedisError
from .base import TokenStore
from ..token_models import TokenRecord, utcnow

log = structlog.get_logger()

# Fields with an exact-value index
INDEXED_FIELDS = ("key", "secret", "token")


class RedisTokenStore(TokenStore):
    """Redis implementation of the token store.

    Each record is a JSON document under ``<collection>:record:<id>``.
    Credential values are indexed as ``<collection>:<field>:<value> -> id``,
    and ids are grouped in an owner set and a collection-wide set. Record and
    index keys carry the record's remaining lifetime, so Redis expires them;
    set members left behind by an expiry are pruned when next read. A record
    is written and deleted with its indexes in one MULTI/EXEC transaction.
    """

    def __init__(
        self,
        collection: str,
        redis_url: str | None = None,
        client: Redis | None = None,
    ):
        """
        Initialize Redis token store.

        Args:
            collection: Key prefix of this token collection
            redis_url: Redis connection URL
            client: Pre-built client, takes precedence over redis_url
        """
        if client is None and not redis_url:
            raise ValueError("RedisTokenStore needs a redis_url or a client")
        self.collection = collection
        self.redis_url = redis_url
        self._client: Redis | None = client

    def _get_client(self) -> Redis:
        """Get or create Redis client."""
        if self._client is None:
            self._client = Redis.from_url(
                self.redis_url,
                decode_responses=False,
                socket_connect_timeout=5,
                socket_timeout=5
            )
        return self._client

    @property
    def _ids_key(self) -> str:
        return f"{self.collection}:ids"

    def _record_key(self, record_id: str) -> str:
        return f"{self.collection}:record:{record_id}"

    def _index_key(self, field: str, value: str) -> str:
        return f"{self.collection}:{field}:{value}"

    def _owner_key(self, owner_id: str) -> str:
        return f"{self.collection}:owner:{owner_id}"

    async def insert(self, record: TokenRecord) -> TokenRecord:
        """
        Store a record and its indexes.

        Raises:
            RedisError: If unable to write to Redis
        """
        ttl = _ttl_seconds(record)
        try:
            async with self._get_client().pipeline(transaction=True) as pipe:
                pipe.set(
                    self._record_key(record.id),
                    orjson.dumps(record.to_document()),
                    ex=ttl,
                )
                for field in INDEXED_FIELDS:
                    value = getattr(record, field)
                    if value:
                        pipe.set(self._index_key(field, value), record.id, ex=ttl)
                pipe.sadd(self._owner_key(record.owner_id), record.id)
                pipe.sadd(self._ids_key, record.id)
                await pipe.execute()

            log.debug(
                "store.inserted",
                collection=self.collection,
                record_id=record.id[:8],
                ttl=ttl,
                adapter="redis",
            )
            return record

        except RedisError as e:
            log.error("redis.insert_failed", error=str(e), collection=self.collection)
            raise

    async def find(self, query: dict[str, Any]) -> list[TokenRecord]:
        """
        Find live records matching the query.

        Raises:
            RedisError: If unable to read from Redis
        """
        try:
            client = self._get_client()
            candidate_ids = await self._candidate_ids(client, query)

            records = []
            missing = []
            for record_id in candidate_ids:
                raw = await client.get(self._record_key(record_id))
                if raw is None:
                    missing.append(record_id)
                    continue
                record = TokenRecord.model_validate(orjson.loads(raw))
                if not record.is_expired and record.matches(query):
                    records.append(record)

            if missing:
                await self._prune(client, missing, query.get("owner_id"))

            records.sort(key=lambda r: r.created_at)
            return records

        except RedisError as e:
            log.error("redis.find_failed", error=str(e), collection=self.collection)
            raise

    async def delete_many(self, query: dict[str, Any]) -> int:
        """
        Delete matching records and their indexes.

        Raises:
            RedisError: If unable to write to Redis
        """
        records = await self.find(query)
        try:
            if records:
                async with self._get_client().pipeline(transaction=True) as pipe:
                    for record in records:
                        keys = [self._record_key(record.id)]
                        keys.extend(
                            self._index_key(field, getattr(record, field))
                            for field in INDEXED_FIELDS
                            if getattr(record, field)
                        )
                        pipe.delete(*keys)
                        pipe.srem(self._owner_key(record.owner_id), record.id)
                        pipe.srem(self._ids_key, record.id)
                    await pipe.execute()

            log.debug(
                "store.deleted",
                collection=self.collection,
                count=len(records),
                adapter="redis",
            )
            return len(records)

        except RedisError as e:
            log.error("redis.delete_failed", error=str(e), collection=self.collection)
            raise

    async def health_check(self) -> bool:
        """
        Check Redis connection health.

        Returns:
            True if Redis is accessible, False otherwise
        """
        try:
            client = self._get_client()
            return bool(await client.ping())
        except Exception as e:
            log.warning("redis.health_check_failed", error=str(e))
            return False

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _candidate_ids(self, client: Redis, query: dict[str, Any]) -> list[str]:
        for field in INDEXED_FIELDS:
            if field in query:
                value = query[field]
                if not value:
                    return []
                record_id = await client.get(self._index_key(field, value))
                return [_decode(record_id)] if record_id is not None else []

        if "id" in query:
            return [query["id"]]

        if "owner_id" in query:
            members = await client.smembers(self._owner_key(query["owner_id"]))
        else:
            members = await client.smembers(self._ids_key)
        return sorted(_decode(member) for member in members)

    async def _prune(self, client: Redis, record_ids: Iterable[str], owner_id: Optional[str]) -> None:
        record_ids = list(record_ids)
        await client.srem(self._ids_key, *record_ids)
        if owner_id:
            await client.srem(self._owner_key(owner_id), *record_ids)
        log.debug("store.pruned", collection=self.collection, count=len(record_ids))


def _decode(value: bytes | str) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value


def _ttl_seconds(record: TokenRecord) -> Optional[int]:
    """Remaining lifetime in whole seconds, rounded up, None if the record never expires"""
    if record.expires_at is None:
        return None
    remaining = (record.expires_at - utcnow()).total_seconds()
    return max(1, math.ceil(remaining))
