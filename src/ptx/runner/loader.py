"""Resolve where a content item lives inside staged patch content."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ..errors import ContentIOError
from ..installation.structure import BUNDLES, MISC, MODULES
from ..metadata.schema import ContentType, MiscContentItem, ModuleItem


@dataclass(frozen=True, slots=True)
class PatchContentLoader:
    """Locate content for modules, bundles and misc files.

    Any root may be ``None`` when the loader is used in a mode that cannot
    provide that kind of content; asking for it raises
    :class:`~ptx.errors.ContentIOError`.
    """

    misc_root: Path | None
    bundles_root: Path | None
    modules_root: Path | None

    @classmethod
    def create(cls, root: Path) -> "PatchContentLoader":
        """Loader over an unpacked patch with ``misc``, ``bundles`` and ``modules``."""
        return cls(root / MISC, root / BUNDLES, root / MODULES)

    def get_file(self, item: ModuleItem | MiscContentItem) -> Path:
        if isinstance(item, MiscContentItem):
            root = self.misc_root
            if root is None:
                raise ContentIOError(f"No misc content available for {item}", details={"item": str(item)})
            return self.get_misc_path(root, item)
        root = self.bundles_root if item.content_type == ContentType.BUNDLE else self.modules_root
        if root is None:
            raise ContentIOError(f"No {item.content_type.lower()} content available for {item}", details={"item": str(item)})
        return self.get_module_path(root, item)

    @staticmethod
    def get_module_path(root: Path, item: ModuleItem) -> Path:
        return root.joinpath(*item.relative_parts)

    @staticmethod
    def get_misc_path(root: Path, item: MiscContentItem) -> Path:
        return root.joinpath(*item.relative_parts)
