"""
Credential generation for owner-bound tokens

Provides:
- Salt generation and one-way hashing behind a swappable backend
- Key/secret pair and single token generation with a per-cost-factor salt cache
"""

from .credential_generator import CredentialGenerator
from .hash_backend import HashBackend, Pbkdf2HashBackend

__all__ = [
    "CredentialGenerator",
    "HashBackend",
    "Pbkdf2HashBackend",
]
