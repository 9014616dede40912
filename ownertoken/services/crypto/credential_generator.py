"""
Credential generator for owner-bound tokens

Produces opaque key/secret pairs and single token values by hashing the
owner identifier with a per-cost-factor salt. The salt is generated once
per cost factor and cached on the generator, so every hash at a given cost
factor shares it. Values are opaque identifiers, not password hashes: the
cost factor is kept low for throughput.
"""

import asyncio
import secrets
import time
from collections.abc import Mapping, MutableMapping
from typing import Optional

import structlog

from ...config import get_settings
from ...errors import HashGenerationFailed, SaltGenerationFailed
from ...token_models import KeySecretPair
from .hash_backend import HashBackend, Pbkdf2HashBackend

log = structlog.get_logger()


class CredentialGenerator:
    """
    Generates token credentials with a read-through salt cache.

    Share one instance between registries to share the salt cache.
    """

    def __init__(
        self,
        backend: Optional[HashBackend] = None,
        cost_factor: Optional[int] = None,
        salt_cache: Optional[MutableMapping[int, str]] = None,
    ):
        """
        Initialize CredentialGenerator.

        Args:
            backend: Hash primitive (default: PBKDF2-HMAC-SHA256)
            cost_factor: Fixed cost factor (default: settings HASH_COST_FACTOR)
            salt_cache: Mapping of cost factor to salt, populated on first use
        """
        self._backend = backend or Pbkdf2HashBackend()
        self._cost_factor = cost_factor if cost_factor is not None else get_settings().HASH_COST_FACTOR
        self._salts: MutableMapping[int, str] = salt_cache if salt_cache is not None else {}

    @property
    def cost_factor(self) -> int:
        return self._cost_factor

    @property
    def salt_cache(self) -> Mapping[int, str]:
        return dict(self._salts)

    async def salt_for(self, cost_factor: Optional[int] = None) -> str:
        """
        Get the salt for a cost factor, generating it on first use.

        Failures are not cached; the next call retries generation.

        Raises:
            SaltGenerationFailed: If the backend cannot generate a salt
        """
        cost_factor = self._resolve(cost_factor)
        salt = self._salts.get(cost_factor)
        if salt is not None:
            return salt

        try:
            salt = await asyncio.to_thread(self._backend.gen_salt, cost_factor)
        except Exception as e:
            log.error("salt.generation_failed", cost_factor=cost_factor, error=str(e))
            raise SaltGenerationFailed(f"Error generating salt: {e}", e) from e

        # Concurrent first calls may both generate; the first stored wins
        salt = self._salts.setdefault(cost_factor, salt)
        log.debug("salt.generated", cost_factor=cost_factor)
        return salt

    async def hash(self, value: str, cost_factor: Optional[int] = None) -> str:
        """
        Hash a value with the cached salt for the cost factor.

        Raises:
            SaltGenerationFailed: If the salt cannot be generated
            HashGenerationFailed: If the backend cannot hash the value
        """
        salt = await self.salt_for(cost_factor)
        try:
            return await asyncio.to_thread(self._backend.hash, value, salt)
        except Exception as e:
            log.error("hash.generation_failed", error=str(e))
            raise HashGenerationFailed(f"Error generating hash: {e}", e) from e

    async def generate_key_and_secret(
        self,
        owner_id: str,
        cost_factor: Optional[int] = None,
    ) -> KeySecretPair:
        """
        Generate a key/secret pair for an owner.

        The secret is the hash of the key, so the key is hashed first.
        """
        key = await self.hash(self._seed(owner_id), cost_factor)
        secret = await self.hash(key, cost_factor)
        return KeySecretPair(key=key, secret=secret)

    async def generate_token(self, owner_id: str, cost_factor: Optional[int] = None) -> str:
        """Generate a single token value for an owner."""
        return await self.hash(self._seed(owner_id), cost_factor)

    def _resolve(self, cost_factor: Optional[int]) -> int:
        return self._cost_factor if cost_factor is None else cost_factor

    @staticmethod
    def _seed(owner_id: str) -> str:
        # Salts are shared, so the nonce keeps same-instant seeds apart
        return f"{owner_id}{time.time_ns()}{secrets.token_hex(8)}"
