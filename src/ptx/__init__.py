"""Transactional patch apply and rollback for modular server installations.

The engine assumes a single writer per installation; serialise concurrent
``ptx`` invocations externally.
"""

from .errors import (
    ConfigurationError,
    ContentConflictError,
    ContentIOError,
    InapplicablePatchError,
    PatchingError,
    PersistenceError,
    UndoTaskError,
)
from .installation import DirectoryStructure, PatchInfo
from .metadata import ContentModification, MiscContentItem, ModificationType, ModuleItem, Patch, PatchType
from .runner import ContentVerificationPolicy, PatchingContext, PatchingResult, PatchTool

__all__ = [
    "ConfigurationError",
    "ContentConflictError",
    "ContentIOError",
    "ContentModification",
    "ContentVerificationPolicy",
    "DirectoryStructure",
    "InapplicablePatchError",
    "MiscContentItem",
    "ModificationType",
    "ModuleItem",
    "Patch",
    "PatchInfo",
    "PatchTool",
    "PatchType",
    "PatchingContext",
    "PatchingError",
    "PatchingResult",
    "PersistenceError",
    "UndoTaskError",
]
