from pydantic import AnyUrl
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Literal

class Settings(BaseSettings):
    # Token store selection: "memory" or "redis"
    STORE_ADAPTER: Literal["memory", "redis"] = "memory"
    REDIS_URL: AnyUrl | None = None
    KEY_PREFIX: str = "ownertoken"
    CLEANUP_INTERVAL_SECONDS: int | None = 60
    # Work factor for token hashing, log2 of the PBKDF2 iteration count
    HASH_COST_FACTOR: int = 4
    LOG_JSON: bool = True
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="OWNERTOKEN_",
        env_file=".env",
        extra="ignore",
    )

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
