"""Rules deciding how content mismatches and local changes are treated."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, ClassVar, FrozenSet, Iterable

from ..metadata.schema import MiscContentItem, ModuleItem

ItemPredicate = Callable[[ModuleItem | MiscContentItem], bool]


def _never(item: ModuleItem | MiscContentItem) -> bool:
    return False


def _always(item: ModuleItem | MiscContentItem) -> bool:
    return True


def item_key(item: ModuleItem | MiscContentItem) -> str:
    """Key used to address an item from operator input.

    Misc items use their relative path, modules and bundles ``name:slot``.
    """

    if isinstance(item, MiscContentItem):
        return item.relative_path
    return f"{item.name}:{item.slot}"


@dataclass(frozen=True, slots=True)
class ContentVerificationPolicy:
    """Pure decision object consulted by patching tasks.

    ``ignore_content_validation`` lets a task overwrite content whose hash
    differs from the expected one. ``preserve_existing`` keeps the live
    content untouched and skips the modification.

    ``OVERRIDE_ALL`` ignores validation but never preserves: it is the policy
    undo and rollback replay under, and a preserving policy would leave every
    changed file as it is. ``PRESERVE_ALL`` is the one that keeps everything.
    """

    name: str
    _ignore: ItemPredicate = _never
    _preserve: ItemPredicate = _never

    STRICT: ClassVar["ContentVerificationPolicy"]
    OVERRIDE_ALL: ClassVar["ContentVerificationPolicy"]
    PRESERVE_ALL: ClassVar["ContentVerificationPolicy"]

    def ignore_content_validation(self, item: ModuleItem | MiscContentItem) -> bool:
        return self._ignore(item)

    def preserve_existing(self, item: ModuleItem | MiscContentItem) -> bool:
        return self._preserve(item)

    @classmethod
    def selective(
        cls,
        *,
        override: Iterable[str] = (),
        preserve: Iterable[str] = (),
        override_all: bool = False,
    ) -> "ContentVerificationPolicy":
        """Build a policy from explicit item keys (see :func:`item_key`)."""
        overrides: FrozenSet[str] = frozenset(override)
        preserved: FrozenSet[str] = frozenset(preserve)
        if not overrides and not preserved:
            return cls.OVERRIDE_ALL if override_all else cls.STRICT

        def ignore(item: ModuleItem | MiscContentItem) -> bool:
            key = item_key(item)
            return override_all or key in overrides or key in preserved

        def keep(item: ModuleItem | MiscContentItem) -> bool:
            return item_key(item) in preserved

        return cls("selective", ignore, keep)

    def __repr__(self) -> str:
        return f"ContentVerificationPolicy({self.name})"


ContentVerificationPolicy.STRICT = ContentVerificationPolicy("strict")
ContentVerificationPolicy.OVERRIDE_ALL = ContentVerificationPolicy("override-all", _always, _never)
ContentVerificationPolicy.PRESERVE_ALL = ContentVerificationPolicy("preserve-all", _always, _always)
