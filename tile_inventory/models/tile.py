import base64
import binascii
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

# Stored when no model number prefix was given
NO_PREFIX = "N/A"


class TypeSuffix(str, Enum):
    """
    Stable tags for the tile types a record can carry.
    BASE is the model without a suffix and is stored as an empty string.
    Display labels are resolved at render time, never stored.
    """

    BASE = ""
    L = "L"
    HL1 = "HL-1"
    HL2 = "HL-2"
    HL4 = "HL-4"
    HL5 = "HL-5"
    D = "D"
    F = "F"

    @property
    def requires_prefix(self) -> bool:
        return self in (TypeSuffix.HL1, TypeSuffix.HL2, TypeSuffix.HL4, TypeSuffix.HL5)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TileRecord(BaseModel):
    """
    One persisted tile variant as read from Cosmos DB.
    Includes Cosmos DB system properties.
    """

    id: str
    user_id: Optional[str] = Field(default=None, alias="userId")  # partition key
    model_number_prefix: Optional[str] = Field(default=None, alias="modelNumberPrefix")
    type_suffix: str = Field(default="", alias="typeSuffix")
    width: Optional[float] = None
    height: Optional[float] = None
    quantity: Optional[int] = None
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")
    etag: Optional[str] = Field(default=None, alias="_etag")
    ts: Optional[int] = Field(default=None, alias="_ts")

    model_config = ConfigDict(populate_by_name=True, extra="ignore", protected_namespaces=())

    @field_validator("created_at", "updated_at")
    @classmethod
    def _normalize_timestamps(cls, value):
        return _as_utc(value)

    @field_validator("type_suffix", mode="before")
    @classmethod
    def _missing_suffix_is_base(cls, value):
        return "" if value is None else value

    @classmethod
    def model_validate(cls, obj, *args, **kwargs):
        """
        Accept documents written with the older ``modelPrefix`` field name.
        """
        if isinstance(obj, dict) and "modelNumberPrefix" not in obj and "modelPrefix" in obj:
            obj = {**obj, "modelNumberPrefix": obj["modelPrefix"]}

        return super().model_validate(obj, *args, **kwargs)


class TileCursor(BaseModel):
    """
    Position of a record in the ``createdAt DESC, id DESC`` ordering.
    Travels over REST as an opaque URL-safe token.
    """

    created_at: Optional[datetime] = None
    id: str

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_record(cls, record: TileRecord) -> "TileCursor":
        return cls(created_at=record.created_at, id=record.id)

    def encode(self) -> str:
        return base64.urlsafe_b64encode(self.model_dump_json().encode("utf-8")).decode("ascii")

    @classmethod
    def decode(cls, token: str) -> "TileCursor":
        try:
            raw = base64.urlsafe_b64decode(token.encode("ascii"))
            return cls.model_validate_json(raw)
        except (binascii.Error, UnicodeError, ValidationError) as e:
            raise ValueError("Invalid pagination cursor.") from e


class TileVariantDisplay(BaseModel):
    """
    One suffix-tagged entry within a display group.
    """

    id: str
    type_suffix: str = Field(alias="typeSuffix")  # raw stored tag
    label: str  # display-mapped tag
    quantity: Optional[int] = None
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class TileGroup(BaseModel):
    """
    Records sharing a model number prefix and dimensions.
    Derived on every change of the record set and never persisted.
    """

    group_key: str = Field(alias="groupKey")
    model_number_prefix: str = Field(alias="modelNumberPrefix")
    width: Optional[float] = None
    height: Optional[float] = None
    variants: List[TileVariantDisplay]
    group_created_at: Optional[datetime] = Field(default=None, alias="groupCreatedAt")

    model_config = ConfigDict(populate_by_name=True, frozen=True, protected_namespaces=())


class TileVariantInput(BaseModel):
    """
    A checked type on the save form with the quantity entered for it.
    """

    type_suffix: TypeSuffix = Field(alias="typeSuffix")
    quantity: Optional[int] = None

    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class TileGroupSave(BaseModel):
    """
    Fields a client provides to save a group of tile variants.
    """

    model_number_prefix: Optional[str] = Field(default=None, alias="modelNumberPrefix")
    types: List[TileVariantInput] = Field(default_factory=list)
    width: float = Field(..., gt=0)
    height: float = Field(..., gt=0)
    quantity: Optional[int] = None  # used for the base model when no type is checked

    model_config = ConfigDict(populate_by_name=True, extra="forbid", protected_namespaces=())

    @field_validator("model_number_prefix", mode="before")
    @classmethod
    def _blank_prefix_is_missing(cls, value):
        if value is None:
            return None
        text = str(value).strip()
        if text == "" or text == NO_PREFIX:
            return None
        try:
            number = float(text)
        except ValueError:
            raise ValueError("Model number prefix must be a number.")
        if number <= 0:
            raise ValueError("Model number prefix must be positive.")
        return text

    @model_validator(mode="after")
    def _check_types(self):
        seen = set()
        for variant in self.types:
            if variant.type_suffix in seen:
                raise ValueError(f"Type '{variant.type_suffix.value}' was given more than once.")
            seen.add(variant.type_suffix)
            if variant.type_suffix.requires_prefix and self.model_number_prefix is None:
                raise ValueError("A model number prefix is required for HL types.")
        return self

    @property
    def stored_prefix(self) -> str:
        return self.model_number_prefix if self.model_number_prefix is not None else NO_PREFIX


class TileGroupRef(BaseModel):
    """
    Identifies a display group by its prefix and dimensions.
    """

    model_number_prefix: str = Field(default=NO_PREFIX, alias="modelNumberPrefix")
    width: float
    height: float

    model_config = ConfigDict(populate_by_name=True, extra="forbid", protected_namespaces=())


class TileGroupUpdate(BaseModel):
    """
    Request model for editing every variant of one group in a single batch.
    """

    group: TileGroupRef
    changes: TileGroupSave

    model_config = ConfigDict(extra="forbid")


class TileGroupDeleteResult(BaseModel):
    deleted_ids: List[str] = Field(alias="deletedIds")

    model_config = ConfigDict(populate_by_name=True)


class TileList(BaseModel):
    """
    Response model for the paginated tile listing.

    Contains one page of records, their display groups and the cursors
    needed to move forward or backward from this page.
    """

    items: List[TileRecord]
    groups: List[TileGroup]
    next_cursor: Optional[str] = None
    prev_cursor: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class TileCount(BaseModel):
    total: int
