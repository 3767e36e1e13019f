"""Patch metadata: content items, modifications and descriptors."""

from .descriptor import PATCH_DESCRIPTOR, dump_patch, load_patch
from .schema import (
    ContentItem,
    ContentModification,
    ContentType,
    MiscContentItem,
    ModificationType,
    ModuleItem,
    Patch,
    PatchType,
)

__all__ = [
    "PATCH_DESCRIPTOR",
    "ContentItem",
    "ContentModification",
    "ContentType",
    "MiscContentItem",
    "ModificationType",
    "ModuleItem",
    "Patch",
    "PatchType",
    "dump_patch",
    "load_patch",
]
