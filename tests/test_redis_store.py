"""Tests for the Redis token store."""
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import orjson
import pytest
from redis.exceptions import RedisError

from ownertoken import CredentialGenerator, PersistenceFailed, TokenOptions, TokenRegistry
from ownertoken.adapters.redis_store import RedisTokenStore
from ownertoken.token_models import TokenRecord, utcnow


class FakePipeline:
    """Queues commands and applies them together on execute, like MULTI/EXEC."""

    def __init__(self, redis, transaction):
        self.redis = redis
        self.transaction = transaction
        self.commands = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self.commands = []

    def _queue(self, command, *args, **kwargs):
        self.commands.append((command, args, kwargs))
        return self

    def set(self, name, value, ex=None):
        return self._queue("set", name, value, ex=ex)

    def delete(self, *names):
        return self._queue("delete", *names)

    def sadd(self, name, *members):
        return self._queue("sadd", name, *members)

    def srem(self, name, *members):
        return self._queue("srem", name, *members)

    async def execute(self):
        for command, args, _ in self.commands:
            if self.redis.fail_on and self.redis.fail_on(command, args[0]):
                raise RedisError(f"{command} {args[0]} failed")
        self.redis.executed.append([command for command, _, _ in self.commands])
        results = []
        for command, args, kwargs in self.commands:
            results.append(await getattr(self.redis, command)(*args, **kwargs))
        self.commands = []
        return results


class FakeRedis:
    """Minimal async Redis double holding strings and sets in dicts."""

    def __init__(self):
        self.values: dict[str, bytes] = {}
        self.ttls: dict[str, int | None] = {}
        self.sets: dict[str, set[bytes]] = {}
        self.fail_on = None
        self.executed: list[list[str]] = []
        self.transactional = True

    def pipeline(self, transaction=True):
        self.transactional = transaction
        return FakePipeline(self, transaction)

    async def set(self, name, value, ex=None):
        if isinstance(value, str):
            value = value.encode()
        self.values[name] = value
        self.ttls[name] = ex
        return True

    async def get(self, name):
        return self.values.get(name)

    async def delete(self, *names):
        removed = 0
        for name in names:
            if self.values.pop(name, None) is not None:
                removed += 1
        return removed

    async def sadd(self, name, *members):
        self.sets.setdefault(name, set()).update(m.encode() for m in members)
        return len(members)

    async def srem(self, name, *members):
        members = {m.encode() for m in members}
        self.sets.get(name, set()).difference_update(members)
        return len(members)

    async def smembers(self, name):
        return set(self.sets.get(name, set()))

    async def ping(self):
        return True

    async def aclose(self):
        return None

    def expire_now(self, name):
        """Simulate Redis expiring a key."""
        self.values.pop(name, None)


def make_record(owner_id="a1", expires_in=None, **fields) -> TokenRecord:
    expires_at = utcnow() + expires_in if expires_in is not None else None
    return TokenRecord(type="apikey", owner_id=owner_id, expires_at=expires_at, **fields)


@pytest.fixture
def fake():
    return FakeRedis()


@pytest.fixture
def store(fake):
    return RedisTokenStore("ownertoken:apikey", client=fake)


@pytest.mark.asyncio
async def test_insert_writes_record_and_indexes(store, fake):
    """Test that insert stores the JSON document and credential indexes."""
    record = make_record(key="k1", secret="s1", label="ci")

    await store.insert(record)

    document = orjson.loads(fake.values[f"ownertoken:apikey:record:{record.id}"])
    assert document["owner_id"] == "a1"
    assert document["key"] == "k1"
    assert document["label"] == "ci"
    assert fake.values["ownertoken:apikey:key:k1"] == record.id.encode()
    assert fake.values["ownertoken:apikey:secret:s1"] == record.id.encode()
    assert "ownertoken:apikey:token:None" not in fake.values
    assert fake.sets["ownertoken:apikey:owner:a1"] == {record.id.encode()}
    assert fake.sets["ownertoken:apikey:ids"] == {record.id.encode()}


@pytest.mark.asyncio
async def test_insert_sets_ttl_for_expiring_records(store, fake):
    """Test that expiring records hand their lifetime to Redis."""
    record = make_record(key="k1", secret="s1", expires_in=timedelta(minutes=15))

    await store.insert(record)

    ttl = fake.ttls[f"ownertoken:apikey:record:{record.id}"]
    assert 899 <= ttl <= 900
    assert fake.ttls["ownertoken:apikey:key:k1"] == ttl


@pytest.mark.asyncio
async def test_insert_without_expiry_has_no_ttl(store, fake):
    """Test that records without expiry are stored without TTL."""
    record = make_record(key="k1", secret="s1")

    await store.insert(record)

    assert fake.ttls[f"ownertoken:apikey:record:{record.id}"] is None


@pytest.mark.asyncio
async def test_find_by_indexed_fields(store):
    """Test lookups through the credential indexes."""
    record = make_record(key="k1", secret="s1")
    await store.insert(record)
    await store.insert(make_record(owner_id="a2", key="k2", secret="s2"))

    found = await store.find_one({"key": "k1"})

    assert found.id == record.id
    assert found.created_at == record.created_at
    assert (await store.find_one({"key": "k1", "secret": "s1"})).id == record.id
    assert await store.find({"key": "k1", "secret": "s2"}) == []
    assert await store.find({"key": "s1"}) == []


@pytest.mark.asyncio
async def test_find_by_owner_and_scan(store):
    """Test owner set lookups and full scans."""
    first = make_record(label="ci", created_at=utcnow() - timedelta(seconds=2))
    second = make_record(label="laptop", created_at=utcnow() - timedelta(seconds=1))
    other = make_record(owner_id="a2")
    for record in (first, second, other):
        await store.insert(record)

    by_owner = await store.find({"owner_id": "a1"})
    scanned = await store.find({"label": "laptop"})

    assert [r.id for r in by_owner] == [first.id, second.id]
    assert [r.id for r in scanned] == [second.id]
    assert await store.count() == 3


@pytest.mark.asyncio
async def test_expired_keys_are_pruned(store, fake):
    """Test that records expired by Redis vanish from queries and sets."""
    record = make_record(key="k1", secret="s1", expires_in=timedelta(minutes=1))
    await store.insert(record)

    fake.expire_now(f"ownertoken:apikey:record:{record.id}")

    assert await store.find({"owner_id": "a1"}) == []
    assert fake.sets["ownertoken:apikey:owner:a1"] == set()
    assert fake.sets["ownertoken:apikey:ids"] == set()


@pytest.mark.asyncio
async def test_delete_many(store, fake):
    """Test that deletion removes records, indexes and set members."""
    record = make_record(key="k1", secret="s1")
    await store.insert(record)
    await store.insert(make_record(owner_id="a2", key="k2", secret="s2"))

    deleted = await store.delete_many({"owner_id": "a1"})

    assert deleted == 1
    assert f"ownertoken:apikey:record:{record.id}" not in fake.values
    assert "ownertoken:apikey:key:k1" not in fake.values
    assert "ownertoken:apikey:secret:s1" not in fake.values
    assert fake.sets["ownertoken:apikey:owner:a1"] == set()
    assert await store.count() == 1
    assert await store.delete_many({"owner_id": "a1"}) == 0


def fail_on_owner_set(command, name):
    return command in ("sadd", "srem") and ":owner:" in name


@pytest.mark.asyncio
async def test_insert_is_one_transaction(store, fake):
    """Test that a record and its indexes are written in a single MULTI/EXEC."""
    await store.insert(make_record(key="k1", secret="s1"))

    assert fake.transactional is True
    assert fake.executed == [["set", "set", "set", "sadd", "sadd"]]


@pytest.mark.asyncio
async def test_failed_insert_leaves_no_keys(store, fake):
    """Test that a write failing part way leaves no record or index behind."""
    fake.fail_on = fail_on_owner_set

    with pytest.raises(RedisError):
        await store.insert(make_record(key="k1", secret="s1"))

    assert fake.values == {}
    assert fake.sets == {}
    assert await store.find({"key": "k1"}) == []


@pytest.mark.asyncio
async def test_failed_delete_keeps_record_whole(store, fake):
    """Test that a deletion failing part way leaves the record fully indexed."""
    record = make_record(key="k1", secret="s1")
    await store.insert(record)
    fake.fail_on = fail_on_owner_set

    with pytest.raises(RedisError):
        await store.delete_many({"owner_id": "a1"})

    fake.fail_on = None
    assert (await store.find_one({"key": "k1"})).id == record.id
    assert fake.sets["ownertoken:apikey:owner:a1"] == {record.id.encode()}
    assert await store.delete_many({"owner_id": "a1"}) == 1
    assert fake.values == {}


@pytest.mark.asyncio
async def test_failed_create_leaves_no_live_credential(fake):
    """Test that a token whose write failed can never be looked up."""
    registry = TokenRegistry(
        TokenOptions(table_name="ApiKey"),
        RedisTokenStore("ownertoken:apikey", client=fake),
        generator=CredentialGenerator(cost_factor=4),
    )
    fake.fail_on = fail_on_owner_set

    with pytest.raises(PersistenceFailed):
        await registry.create_token({"id": "a1"})

    fake.fail_on = None
    assert [name for name in fake.values if ":record:" in name or ":key:" in name] == []
    assert await registry.count() == 0
    assert (await registry.remove_token({"id": "a1"})).deleted_count == 0


@pytest.mark.asyncio
async def test_redis_errors_propagate(fake):
    """Test that Redis failures are raised to the caller."""
    fake.set = AsyncMock(side_effect=RedisError("connection refused"))
    store = RedisTokenStore("ownertoken:apikey", client=fake)

    with pytest.raises(RedisError):
        await store.insert(make_record())


@pytest.mark.asyncio
async def test_health_check(store):
    """Test Redis health check success."""
    assert await store.health_check() is True


@pytest.mark.asyncio
async def test_health_check_failure(fake):
    """Test Redis health check when Redis is unavailable."""
    fake.ping = AsyncMock(side_effect=RedisError("down"))
    store = RedisTokenStore("ownertoken:apikey", client=fake)

    assert await store.health_check() is False


@pytest.mark.asyncio
async def test_client_created_from_url():
    """Test that the client is built lazily from the URL."""
    with patch("ownertoken.adapters.redis_store.Redis") as mock_redis_class:
        mock_client = MagicMock()
        mock_client.ping = AsyncMock(return_value=True)
        mock_client.aclose = AsyncMock()
        mock_redis_class.from_url.return_value = mock_client

        store = RedisTokenStore("ownertoken:apikey", redis_url="redis://localhost:6379/0")
        assert await store.health_check() is True
        await store.close()

        mock_redis_class.from_url.assert_called_once()
        assert mock_redis_class.from_url.call_args[0][0] == "redis://localhost:6379/0"
        mock_client.aclose.assert_awaited_once()


def test_requires_url_or_client():
    """Test that a store needs somewhere to connect."""
    with pytest.raises(ValueError):
        RedisTokenStore("ownertoken:apikey")
