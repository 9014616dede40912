"""
ownertoken - opaque credential tokens bound to owning records.

Issues key/secret pairs (or single token values) for an owner, keeps at
most one live token per owner when configured unique, and resolves
presented credentials back to the owning record.
"""

from .adapters import (
    InMemoryOwnerStore,
    InMemoryTokenStore,
    OwnerStore,
    RedisTokenStore,
    TokenStore,
    create_token_store,
)
from .logging import get_logger, setup_logging
from .errors import (
    ConfigurationError,
    CredentialGenerationFailed,
    DuplicateTokenName,
    HashGenerationFailed,
    InvalidCredential,
    InvalidOwner,
    PersistenceFailed,
    SaltGenerationFailed,
    TokenError,
)
from .services import OwnerTokens, TokenBindings, TokenRegistry, create_registry
from .services.crypto import CredentialGenerator, HashBackend, Pbkdf2HashBackend
from .token_models import KeySecretPair, RemovalResult, TokenOptions, TokenRecord

__version__ = "0.1.0"

__all__ = [
    "setup_logging",
    "get_logger",
    "TokenBindings",
    "TokenRegistry",
    "OwnerTokens",
    "create_registry",
    "CredentialGenerator",
    "HashBackend",
    "Pbkdf2HashBackend",
    "TokenStore",
    "OwnerStore",
    "InMemoryTokenStore",
    "InMemoryOwnerStore",
    "RedisTokenStore",
    "create_token_store",
    "TokenOptions",
    "TokenRecord",
    "KeySecretPair",
    "RemovalResult",
    "TokenError",
    "ConfigurationError",
    "DuplicateTokenName",
    "InvalidOwner",
    "InvalidCredential",
    "CredentialGenerationFailed",
    "SaltGenerationFailed",
    "HashGenerationFailed",
    "PersistenceFailed",
]
