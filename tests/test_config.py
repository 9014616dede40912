"""Tests for settings, store selection and logging setup."""
import json

import pytest
import structlog

from ownertoken.adapters import InMemoryTokenStore, RedisTokenStore, create_token_store
from ownertoken.config import Settings, get_settings
from ownertoken.logging import get_logger, setup_logging, setup_logging_from_settings


def test_settings_defaults(monkeypatch):
    """Test default settings."""
    for name in ("OWNERTOKEN_STORE_ADAPTER", "OWNERTOKEN_REDIS_URL", "OWNERTOKEN_HASH_COST_FACTOR"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings()

    assert settings.STORE_ADAPTER == "memory"
    assert settings.REDIS_URL is None
    assert settings.KEY_PREFIX == "ownertoken"
    assert settings.HASH_COST_FACTOR == 4


def test_settings_from_environment(monkeypatch):
    """Test that prefixed environment variables are read."""
    monkeypatch.setenv("OWNERTOKEN_STORE_ADAPTER", "redis")
    monkeypatch.setenv("OWNERTOKEN_REDIS_URL", "redis://cache:6379/1")
    monkeypatch.setenv("OWNERTOKEN_HASH_COST_FACTOR", "6")

    settings = Settings()

    assert settings.STORE_ADAPTER == "redis"
    assert str(settings.REDIS_URL) == "redis://cache:6379/1"
    assert settings.HASH_COST_FACTOR == 6


def test_get_settings_is_cached():
    """Test that settings are built once."""
    assert get_settings() is get_settings()


def test_memory_store_selected():
    """Test the default store adapter."""
    store = create_token_store("ownertoken:apikey", Settings(STORE_ADAPTER="memory", CLEANUP_INTERVAL_SECONDS=None))

    assert isinstance(store, InMemoryTokenStore)
    assert store.collection == "ownertoken:apikey"


def test_redis_store_selected():
    """Test Redis store selection."""
    settings = Settings(STORE_ADAPTER="redis", REDIS_URL="redis://localhost:6379/0")

    store = create_token_store("ownertoken:apikey", settings)

    assert isinstance(store, RedisTokenStore)
    assert store.redis_url == "redis://localhost:6379/0"


def test_redis_without_url_falls_back():
    """Test fallback to memory when Redis is not configured."""
    settings = Settings(STORE_ADAPTER="redis", REDIS_URL=None, CLEANUP_INTERVAL_SECONDS=None)

    store = create_token_store("ownertoken:apikey", settings)

    assert isinstance(store, InMemoryTokenStore)


@pytest.mark.parametrize("json_output", [True, False])
def test_setup_logging(json_output, capsys):
    """Test that structured logs carry the standard fields."""
    setup_logging(json_output=json_output, service_name="ownertoken-test", level="debug")
    try:
        get_logger().info("token.created", token_type="apikey")
        output = capsys.readouterr().out

        assert "token.created" in output
        if json_output:
            entry = json.loads(output.strip().splitlines()[-1])
            assert entry["service"] == "ownertoken-test"
            assert entry["level"] == "info"
            assert entry["token_type"] == "apikey"
            assert "ts" in entry
    finally:
        structlog.reset_defaults()


def test_setup_logging_from_settings(capsys):
    """Test that LOG_LEVEL filters log entries."""
    setup_logging_from_settings(Settings(LOG_JSON=True, LOG_LEVEL="WARNING"))
    try:
        log = get_logger()
        log.info("token.created")
        log.warning("token.protected_field_ignored", field="key")
        output = capsys.readouterr().out

        assert "token.created" not in output
        assert "token.protected_field_ignored" in output
    finally:
        structlog.reset_defaults()
