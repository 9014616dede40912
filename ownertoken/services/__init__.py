from .bindings import TokenBindings, build_options, create_registry
from .registry import OwnerTokens, TokenRegistry

__all__ = [
    "TokenBindings",
    "TokenRegistry",
    "OwnerTokens",
    "build_options",
    "create_registry",
]
