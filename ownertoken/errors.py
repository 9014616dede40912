"""
Error taxonomy for token issuance and lookup.

Every operational error carries the exception that caused it both as
``__cause__`` (raised with ``from``) and on ``.cause``.
"""

from typing import Optional


class TokenError(Exception):
    """Base exception for ownertoken errors"""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class ConfigurationError(TokenError):
    """Raised when token options are missing or inconsistent"""
    pass


class DuplicateTokenName(ConfigurationError):
    """Raised when a token name is attached twice to the same host"""
    pass


class InvalidOwner(TokenError):
    """Raised when an operation is given no owner, or an owner without an id"""
    pass


class InvalidCredential(TokenError):
    """
    Raised when a token, key or secret does not resolve to an owner.

    The message is identical for every failure so callers cannot tell
    which half of a key/secret pair was wrong.
    """

    MESSAGE = "api.error.invalid"

    def __init__(self, cause: Optional[BaseException] = None):
        super().__init__(self.MESSAGE, cause)


class CredentialGenerationFailed(TokenError):
    """Raised when the hashing backend fails to produce a credential"""
    pass


class SaltGenerationFailed(CredentialGenerationFailed):
    """Raised when salt generation fails"""
    pass


class HashGenerationFailed(CredentialGenerationFailed):
    """Raised when hashing fails"""
    pass


class PersistenceFailed(TokenError):
    """Raised when the token store fails on insert, delete or find"""
    pass
