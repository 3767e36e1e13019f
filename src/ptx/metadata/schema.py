"""Typed records describing patches and the content they modify."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_SLOT = "main"


class RecordModel(BaseModel):
    """Base Pydantic model for immutable patch metadata."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class ContentType(str, Enum):
    """Kinds of content a patch can address."""

    MODULE = "MODULE"
    BUNDLE = "BUNDLE"
    MISC = "MISC"


class ModificationType(str, Enum):
    """Change applied to a single content item."""

    ADD = "ADD"
    MODIFY = "MODIFY"
    REMOVE = "REMOVE"


class PatchType(str, Enum):
    """Position of a patch within the version chain."""

    ONE_OFF = "ONE_OFF"
    CUMULATIVE = "CUMULATIVE"


class ModuleItem(RecordModel):
    """A module or bundle directory identified by name and slot."""

    content_type: Literal["MODULE", "BUNDLE"] = "MODULE"
    name: str
    slot: str = DEFAULT_SLOT
    content_hash: Optional[str] = None

    @property
    def relative_parts(self) -> Tuple[str, ...]:
        return (*self.name.split("."), self.slot)

    @property
    def relative_path(self) -> str:
        return "/".join(self.relative_parts)

    def with_hash(self, content_hash: str | None) -> "ModuleItem":
        return self.model_copy(update={"content_hash": content_hash})

    def __str__(self) -> str:
        return f"{self.content_type.lower()}:{self.name}:{self.slot}"


class MiscContentItem(RecordModel):
    """A file or directory addressed relative to the installation home."""

    content_type: Literal["MISC"] = "MISC"
    path: Tuple[str, ...]
    directory: bool = False
    content_hash: Optional[str] = None

    @field_validator("path")
    @classmethod
    def _validate_path(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        if not value:
            raise ValueError("misc content path must not be empty")
        for segment in value:
            if not segment or segment in {".", ".."} or "/" in segment or "\\" in segment:
                raise ValueError(f"invalid path segment: {segment!r}")
        return value

    @classmethod
    def from_relative(
        cls,
        relative: str,
        *,
        content_hash: str | None = None,
        directory: bool = False,
    ) -> "MiscContentItem":
        parts = tuple(part for part in relative.replace("\\", "/").split("/") if part)
        return cls(path=parts, content_hash=content_hash, directory=directory)

    @property
    def name(self) -> str:
        return self.path[-1]

    @property
    def relative_parts(self) -> Tuple[str, ...]:
        return self.path

    @property
    def relative_path(self) -> str:
        return "/".join(self.path)

    def with_hash(self, content_hash: str | None) -> "MiscContentItem":
        return self.model_copy(update={"content_hash": content_hash})

    def __str__(self) -> str:
        return f"misc:{self.relative_path}"


ContentItem = Annotated[Union[ModuleItem, MiscContentItem], Field(discriminator="content_type")]


class ContentModification(RecordModel):
    """A single add, modify or remove instruction for one content item."""

    type: ModificationType
    item: ContentItem
    existing_hash: Optional[str] = None
    condition: Optional[ContentItem] = None

    def describe(self) -> str:
        return f"{self.type.value} {self.item}"


class Patch(RecordModel):
    """A named, ordered set of content modifications."""

    patch_id: str
    patch_type: PatchType
    description: str = ""
    resulting_version: str
    applies_to: List[str] = Field(default_factory=list)
    modifications: List[ContentModification] = Field(default_factory=list)

    @field_validator("patch_id")
    @classmethod
    def _validate_patch_id(cls, value: str) -> str:
        candidate = value.strip()
        if not candidate or "/" in candidate or "\\" in candidate or candidate in {".", ".."}:
            raise ValueError(f"invalid patch id: {value!r}")
        return candidate

    @property
    def is_cumulative(self) -> bool:
        return self.patch_type is PatchType.CUMULATIVE


def item_content_type(item: ModuleItem | MiscContentItem) -> ContentType:
    """Return the :class:`ContentType` of ``item``."""
    return ContentType(item.content_type)
