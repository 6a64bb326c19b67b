"""
Vault data models.

``VaultItem`` is the client-side view of one stored document. Crypto
parameters (``ciphertext``, ``salt``, ``iv``) are top-level fields and
never part of ``metadata``; they are hidden from ``repr``.

Update models distinguish three states per field through pydantic's
``model_fields_set``: absent (untouched), a value (set), or an explicit
``None`` (cleared from storage).
"""
from enum import Enum
from typing import Any, Optional
from datetime import datetime, timezone

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
)
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(dt: datetime) -> str:
    """Fixed-width UTC timestamp, so stored values sort as text."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class VaultItemType(str, Enum):
    PASSWORD = "password"
    NOTE = "note"
    CARD = "card"
    IDENTITY = "identity"
    DOCUMENT = "document"


class FileReference(BaseModel):
    """Attached file handle. The vault never decrypts attachments."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True
    )

    url: Optional[str] = None
    handle: Optional[str] = None
    name: Optional[str] = None
    content_type: Optional[str] = None


def _unique_tags(tags: list[str]) -> list[str]:
    seen: dict[str, None] = {}
    for tag in tags:
        tag = tag.strip()
        if tag:
            seen.setdefault(tag, None)
    return list(seen)


class VaultMetadata(BaseModel):
    """Plaintext, user-editable item metadata."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True
    )

    tags: list[str] = Field(default_factory=list)
    favorite: bool = False
    icon: Optional[str] = None
    category: Optional[str] = None
    file: Optional[FileReference] = None

    @field_validator("tags", mode="before")
    @classmethod
    def validate_tags(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, (set, frozenset)):
            return sorted(v)
        return v

    @field_validator("tags")
    @classmethod
    def dedup_tags(cls, v: list[str]) -> list[str]:
        return _unique_tags(v)

    def to_document(self) -> dict:
        """Plain dict for the document store, unset optionals dropped."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class MetadataUpdate(BaseModel):
    """Partial metadata change.

    Only fields present in ``model_fields_set`` are applied; a field
    given as ``None`` is removed from storage.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid"
    )

    tags: Optional[list[str]] = None
    favorite: Optional[bool] = None
    icon: Optional[str] = None
    category: Optional[str] = None
    file: Optional[FileReference] = None

    @field_validator("tags", mode="before")
    @classmethod
    def validate_tags(cls, v: Any) -> Any:
        if isinstance(v, (set, frozenset)):
            return sorted(v)
        return v

    @field_validator("tags")
    @classmethod
    def dedup_tags(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        return None if v is None else _unique_tags(v)

    def changes(self) -> tuple[dict, set[str]]:
        """Split into (values to set, stored keys to remove)."""
        to_set: dict[str, Any] = {}
        to_clear: set[str] = set()
        for name in self.model_fields_set:
            alias = to_camel(name)
            value = getattr(self, name)
            if value is None:
                to_clear.add(alias)
            elif isinstance(value, BaseModel):
                to_set[alias] = value.model_dump(
                    mode="json", by_alias=True, exclude_none=True
                )
            else:
                to_set[alias] = value
        return to_set, to_clear

    def apply(self, stored: dict) -> dict:
        """Merge into a stored metadata dict, returning a new dict."""
        to_set, to_clear = self.changes()
        merged = {k: v for k, v in (stored or {}).items() if k not in to_clear}
        merged.update(to_set)
        return merged


class ItemUpdate(BaseModel):
    """Changes accepted by ``VaultItemStore.update``."""

    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = None
    content: Optional[str] = None
    metadata: Optional[MetadataUpdate] = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("title cannot be empty")
        return v

    @property
    def is_empty(self) -> bool:
        return self.title is None and self.content is None and not (
            self.metadata and self.metadata.model_fields_set
        )


class VaultItem(BaseModel):
    """One vault item as returned to the client."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True
    )

    id: str
    owner_id: str
    type: VaultItemType
    title: str
    ciphertext: str = Field(default="", repr=False)
    salt: str = Field(default="", repr=False)
    iv: str = Field(default="", repr=False)
    metadata: VaultMetadata = Field(default_factory=VaultMetadata)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    accessed_at: Optional[datetime] = None

    @field_serializer("created_at", "updated_at", "accessed_at", when_used="json")
    def serialize_timestamp(self, value: Optional[datetime]) -> Optional[str]:
        return isoformat(value) if value is not None else None

    @property
    def has_content(self) -> bool:
        return bool(self.ciphertext)

    @classmethod
    def from_document(cls, document_id: str, fields: dict) -> "VaultItem":
        """Build an item from stored fields."""
        data = {k: v for k, v in fields.items() if k != "id"}
        data["id"] = document_id
        if data.get("metadata") is None:
            data["metadata"] = {}
        for key in ("ciphertext", "salt", "iv"):
            if data.get(key) is None:
                data[key] = ""
        return cls.model_validate(data)

    def to_document(self) -> dict:
        """Flat, JSON-safe field map for the document store (no id)."""
        fields = self.model_dump(
            mode="json", by_alias=True, exclude={"id", "metadata"}
        )
        fields["metadata"] = self.metadata.to_document()
        return fields
