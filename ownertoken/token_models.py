"""
Token models and options for owner-bound credential tokens
"""

import re
import uuid
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

# Fields the generation protocol owns; extension data never overrides them
PROTECTED_FIELDS = frozenset(
    {"id", "type", "owner_id", "key", "secret", "token", "created_at", "expires_at"}
)

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h|d)?\s*$")
_DURATION_UNITS = {
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def owner_identifier(owner: Any, field: str = "id") -> Optional[str]:
    """
    Read the stable identifier of an owning record.

    Owners may be objects exposing ``field`` as an attribute or mappings
    holding it as a key. Returns None when the owner has no identifier.
    """
    if owner is None:
        return None
    if isinstance(owner, Mapping):
        value = owner.get(field)
    else:
        value = getattr(owner, field, None)
    if value is None:
        return None
    value = str(value)
    return value or None


def parse_duration(value: Any) -> timedelta:
    """
    Parse an expiry duration.

    Accepts a ``timedelta``, a number of seconds, or a string such as
    ``"15m"``, ``"2h"``, ``"30s"``, ``"1d"`` or ``"500ms"``. A bare numeric
    string is read as seconds.

    Raises:
        ValueError: If the value cannot be parsed or is not positive
    """
    if isinstance(value, timedelta):
        duration = value
    elif isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    elif isinstance(value, (int, float)):
        duration = timedelta(seconds=value)
    elif isinstance(value, str):
        match = _DURATION_RE.match(value)
        if not match:
            raise ValueError(f"Invalid duration: {value!r}")
        amount, unit = match.groups()
        duration = float(amount) * _DURATION_UNITS[unit or "s"]
    else:
        raise ValueError(f"Invalid duration: {value!r}")

    if duration <= timedelta(0):
        raise ValueError("Duration must be positive")
    return duration


class TokenOptions(BaseModel):
    """
    Configuration for one token type attached to an owner-record definition
    """
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    table_name: str = Field(
        ...,
        validation_alias=AliasChoices("table_name", "tableName", "token_name", "tokenName"),
        description="Unique token name on the host definition",
    )
    expire: bool = Field(default=False, description="Enable record expiry")
    expires: timedelta = Field(
        default=timedelta(minutes=15),
        description="Expiry duration, only used when expire is set",
    )
    unique: bool = Field(default=True, description="At most one token per owner")
    mode: Literal["key_secret", "token"] = Field(
        default="key_secret",
        description="Issue a key/secret pair or a single token value",
    )
    extension_schema: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("schema", "extension_schema"),
        description="Extra fields merged into every record; callables are invoked per record",
    )
    logger: Any = Field(default=None, description="structlog-compatible logger")
    cost_factor: Optional[int] = Field(default=None, ge=1, le=31)
    owner_id_field: str = Field(default="id", min_length=1)

    @field_validator("table_name")
    @classmethod
    def validate_table_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("You must specify a tableName when attaching a token")
        return v

    @field_validator("expires", mode="before")
    @classmethod
    def validate_expires(cls, v: Any) -> timedelta:
        return parse_duration(v)

    @field_validator("extension_schema")
    @classmethod
    def validate_extension_schema(cls, v: dict[str, Any]) -> dict[str, Any]:
        clashes = PROTECTED_FIELDS.intersection(v)
        if clashes:
            raise ValueError(f"Schema cannot redefine token fields: {sorted(clashes)}")
        return v

    @property
    def type_tag(self) -> str:
        """Constant type tag stored on every record"""
        return self.table_name.lower()

    @property
    def upper_name(self) -> str:
        return self.table_name[:1].upper() + self.table_name[1:]

    @property
    def lower_name(self) -> str:
        return self.table_name[:1].lower() + self.table_name[1:]

    def collection(self, prefix: str) -> str:
        """Name of the underlying record collection"""
        return f"{prefix}:{self.type_tag}"

    def operation_names(self) -> dict[str, str]:
        """Names the operations carry on the host definition, for diagnostics"""
        names = {
            "create": f"create{self.upper_name}",
            "remove": f"remove{self.upper_name}",
            "find": f"find{self.upper_name}",
            "find_by": f"findBy{self.upper_name}",
            "registry": self.lower_name,
        }
        if self.mode == "key_secret":
            names["find_by_key"] = f"findBy{self.upper_name}Key"
            names["find_by_secret"] = f"findBy{self.upper_name}Secret"
        return names

    def expiry_from(self, created_at: datetime) -> Optional[datetime]:
        if not self.expire:
            return None
        return created_at + self.expires


class TokenRecord(BaseModel):
    """
    Persisted credential bound to one owner.

    Extension fields from the registry schema or the caller are kept as
    pydantic extras.
    """
    model_config = ConfigDict(extra="allow")

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    type: str = Field(..., description="Token type tag")
    owner_id: str = Field(..., min_length=1, description="Identifier of the owning record")
    key: Optional[str] = None
    secret: Optional[str] = None
    token: Optional[str] = None
    valid: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: Optional[datetime] = None

    @property
    def is_expired(self) -> bool:
        """Check if the record has passed its expiry instant"""
        return self.expires_at is not None and utcnow() >= self.expires_at

    @property
    def ttl_remaining(self) -> Optional[float]:
        """Remaining time-to-live in seconds, None for records that never expire"""
        if self.expires_at is None:
            return None
        return max((self.expires_at - utcnow()).total_seconds(), 0.0)

    @property
    def extension(self) -> dict[str, Any]:
        """Extension fields carried by this record"""
        return dict(self.model_extra or {})

    def matches(self, query: dict[str, Any]) -> bool:
        """Exact-match every field of ``query`` against this record"""
        document = self.model_dump()
        for field, expected in query.items():
            if field not in document or document[field] != expected:
                return False
        return True

    def to_document(self) -> dict[str, Any]:
        """JSON-compatible representation for stores"""
        return self.model_dump(mode="json")


class KeySecretPair(BaseModel):
    """
    Generated credential pair, ``secret`` is the hash of ``key``
    """
    key: str
    secret: str


class RemovalResult(BaseModel):
    """
    Outcome of removing an owner's tokens
    """
    owner_id: str
    deleted_count: int = 0

    @property
    def removed(self) -> bool:
        return self.deleted_count > 0
