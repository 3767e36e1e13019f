"""Error types raised while applying or reverting patches."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Tuple

if TYPE_CHECKING:
    from .metadata.schema import ContentItem, ContentModification

__all__ = [
    "PatchingError",
    "ConfigurationError",
    "ContentIOError",
    "ContentConflictError",
    "PersistenceError",
    "InapplicablePatchError",
    "UndoTaskError",
]


class PatchingError(RuntimeError):
    """Raised when a patch cannot be applied or rolled back."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class ConfigurationError(PatchingError):
    """A directory required by the transaction could not be created."""

    @classmethod
    def cannot_create_directory(cls, path: Any) -> "ConfigurationError":
        return cls(f"Cannot create directory {path}", details={"path": str(path)})


class ContentIOError(PatchingError):
    """Copying, writing or deleting a content item failed."""


class ContentConflictError(PatchingError):
    """Live content does not match what the patch expects to find."""

    def __init__(
        self,
        message: str,
        *,
        items: Iterable["ContentItem"] = (),
        details: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.items: Tuple["ContentItem", ...] = tuple(items)


class PersistenceError(PatchingError):
    """The version chain references could not be written."""


class InapplicablePatchError(PatchingError):
    """The patch does not target the installation's current state."""


@dataclass(slots=True)
class UndoTaskError:
    """Advisory record of an inverse modification that failed during undo.

    Undo is best effort, so these are collected rather than raised.
    """

    modification: "ContentModification"
    cause: BaseException

    def describe(self) -> str:
        return f"{self.modification.describe()}: {self.cause}"
