"""
Attachment of token types to an owner-record definition
"""

from typing import Any, Callable, Iterator, Mapping, Optional, Union

import structlog
from pydantic import ValidationError

from ..adapters import create_token_store
from ..adapters.base import OwnerStore, TokenStore
from ..config import Settings, get_settings
from ..errors import ConfigurationError, DuplicateTokenName
from ..token_models import TokenOptions
from .crypto import CredentialGenerator
from .registry import OwnerTokens, TokenRegistry

log = structlog.get_logger()

StoreFactory = Callable[[str], TokenStore]


def build_options(options: Union[TokenOptions, Mapping[str, Any], None] = None, **kwargs: Any) -> TokenOptions:
    """
    Validate token options from a TokenOptions, a mapping and/or keywords

    Raises:
        ConfigurationError: If the options are missing or invalid
    """
    if isinstance(options, TokenOptions):
        if not kwargs:
            return options
        values = {**options.model_dump(exclude={"extension_schema", "logger"}),
                  "schema": options.extension_schema, "logger": options.logger}
    else:
        values = dict(options or {})
    values.update(kwargs)

    try:
        return TokenOptions.model_validate(values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid token options: {e}", e) from e


class TokenBindings:
    """
    Token types attached to one owner-record definition

    Every attached name gets its own TokenRegistry. Names are unique per
    bindings object, compared case-insensitively, and all registries share
    one credential generator.
    """

    def __init__(
        self,
        host: Any = None,
        owner_store: Optional[OwnerStore] = None,
        generator: Optional[CredentialGenerator] = None,
        store_factory: Optional[StoreFactory] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize TokenBindings

        Args:
            host: The owner-record definition, used in logs and errors
            owner_store: Store resolving owners of found tokens
            generator: Credential generator shared by every registry
            store_factory: Builds the token store of a collection
            settings: Settings (default: environment settings)
        """
        self._settings = settings or get_settings()
        self._host = host
        self._owner_store = owner_store
        self._generator = generator or CredentialGenerator(cost_factor=self._settings.HASH_COST_FACTOR)
        self._store_factory = store_factory or (
            lambda collection: create_token_store(collection, self._settings)
        )
        self._registries: dict[str, TokenRegistry] = {}

    @property
    def host_name(self) -> str:
        if self._host is None:
            return "owner"
        return getattr(self._host, "__name__", None) or str(self._host)

    @property
    def generator(self) -> CredentialGenerator:
        return self._generator

    def attach(
        self,
        options: Union[TokenOptions, Mapping[str, Any], None] = None,
        *,
        store: Optional[TokenStore] = None,
        **kwargs: Any,
    ) -> TokenRegistry:
        """
        Attach a token type and build its registry

        Args:
            options: Token options (or a mapping of them)
            store: Token store to use instead of the store factory
            **kwargs: Option overrides, e.g. ``table_name="ApiKey"``

        Raises:
            ConfigurationError: If the options are invalid
            DuplicateTokenName: If the name is already attached
        """
        options = build_options(options, **kwargs)
        if options.type_tag in self._registries:
            raise DuplicateTokenName(
                f"The tableName '{options.table_name}' is not unique to {self.host_name}"
            )

        if store is None:
            store = self._store_factory(options.collection(self._settings.KEY_PREFIX))
        registry = TokenRegistry(
            options,
            store,
            generator=self._generator,
            owner_store=self._owner_store,
        )
        self._registries[options.type_tag] = registry

        log.info(
            "token.attached",
            host=self.host_name,
            token_type=options.type_tag,
            mode=options.mode,
            unique=options.unique,
            expire=options.expire,
        )
        return registry

    def registry(self, name: str) -> TokenRegistry:
        """
        Get the registry of an attached token name

        Raises:
            KeyError: If the name was never attached
        """
        try:
            return self._registries[name.lower()]
        except KeyError:
            raise KeyError(f"No token named '{name}' attached to {self.host_name}")

    def for_owner(self, owner: Any, name: str) -> OwnerTokens:
        """Get the operations of one token type bound to ``owner``"""
        return self.registry(name).bind(owner)

    def names(self) -> list[str]:
        return [registry.name for registry in self._registries.values()]

    async def health_check(self) -> dict[str, bool]:
        """Check every registry's store, keyed by token name"""
        return {
            registry.name: await registry.health_check()
            for registry in self._registries.values()
        }

    async def close(self) -> None:
        """Close every registry's store"""
        for registry in self._registries.values():
            await registry.store.close()

    def __getitem__(self, name: str) -> TokenRegistry:
        return self.registry(name)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._registries

    def __iter__(self) -> Iterator[TokenRegistry]:
        return iter(list(self._registries.values()))

    def __len__(self) -> int:
        return len(self._registries)


def create_registry(
    options: Union[TokenOptions, Mapping[str, Any], None] = None,
    *,
    store: Optional[TokenStore] = None,
    generator: Optional[CredentialGenerator] = None,
    owner_store: Optional[OwnerStore] = None,
    settings: Optional[Settings] = None,
    **kwargs: Any,
) -> TokenRegistry:
    """
    Build a standalone registry from options

    Raises:
        ConfigurationError: If the options are invalid
    """
    options = build_options(options, **kwargs)
    settings = settings or get_settings()
    if store is None:
        store = create_token_store(options.collection(settings.KEY_PREFIX), settings)
    return TokenRegistry(options, store, generator=generator, owner_store=owner_store)
