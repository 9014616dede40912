"""
Hashing primitives used to derive opaque token values

Implements:
- Salt generation for a given cost factor
- PBKDF2-HMAC-SHA256 one-way hashing with a modular-crypt style output
"""

import secrets
from abc import ABC, abstractmethod
from base64 import urlsafe_b64decode, urlsafe_b64encode
from typing import Tuple

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


class HashBackend(ABC):
    """
    One-way hash primitive parameterized by a cost factor.

    Implementations are synchronous; callers run them off the event loop.
    """

    @abstractmethod
    def gen_salt(self, cost_factor: int) -> str:
        """Generate a salt encoding the cost factor"""
        pass

    @abstractmethod
    def hash(self, value: str, salt: str) -> str:
        """Hash ``value`` with ``salt``"""
        pass


class Pbkdf2HashBackend(HashBackend):
    """
    PBKDF2-HMAC-SHA256 backend.

    The cost factor is the base-2 logarithm of the iteration count, so it
    reads like a bcrypt work factor. Salts look like
    ``$pbkdf2-sha256$<cost>$<salt>`` and hashes append ``$<digest>``, both
    url-safe base64 without padding.
    """

    SCHEME = "pbkdf2-sha256"
    MIN_COST_FACTOR = 1
    MAX_COST_FACTOR = 31
    DEFAULT_SALT_LENGTH = 16    # 128 bits
    DIGEST_LENGTH = 32          # 256 bits

    def gen_salt(self, cost_factor: int) -> str:
        """
        Generate a random salt.

        Raises:
            ValueError: If the cost factor is out of range
        """
        self._check_cost_factor(cost_factor)
        raw = secrets.token_bytes(self.DEFAULT_SALT_LENGTH)
        return f"${self.SCHEME}${cost_factor}${_b64encode(raw)}"

    def hash(self, value: str, salt: str) -> str:
        """
        Derive the hash of ``value``.

        Raises:
            ValueError: If the salt is malformed
        """
        cost_factor, raw_salt = self._parse_salt(salt)
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=self.DIGEST_LENGTH,
            salt=raw_salt,
            iterations=2 ** cost_factor,
        )
        digest = kdf.derive(value.encode("utf-8"))
        return f"{salt}${_b64encode(digest)}"

    def _parse_salt(self, salt: str) -> Tuple[int, bytes]:
        parts = salt.split("$")
        if len(parts) != 4 or parts[0] or parts[1] != self.SCHEME:
            raise ValueError("Malformed salt")
        try:
            cost_factor = int(parts[2])
            raw_salt = _b64decode(parts[3])
        except ValueError as e:
            raise ValueError(f"Malformed salt: {e}")
        self._check_cost_factor(cost_factor)
        return cost_factor, raw_salt

    def _check_cost_factor(self, cost_factor: int) -> None:
        if not self.MIN_COST_FACTOR <= cost_factor <= self.MAX_COST_FACTOR:
            raise ValueError(
                f"Cost factor must be between {self.MIN_COST_FACTOR} "
                f"and {self.MAX_COST_FACTOR}, got {cost_factor}"
            )


def _b64encode(raw: bytes) -> str:
    return urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    return urlsafe_b64decode(text + "=" * (-len(text) % 4))
