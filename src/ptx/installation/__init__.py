"""Installation layout and version chain persistence."""

from .patch_info import BASE, PatchInfo, load_patch_info, persist_patch_info
from .structure import DirectoryStructure, InstalledImage

__all__ = [
    "BASE",
    "DirectoryStructure",
    "InstalledImage",
    "PatchInfo",
    "load_patch_info",
    "persist_patch_info",
]
