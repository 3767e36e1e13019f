"""Execute single content modifications and derive their inverses."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Mapping

from ..errors import ContentConflictError, ContentIOError
from ..metadata.schema import (
    ContentModification,
    ContentType,
    MiscContentItem,
    ModificationType,
    ModuleItem,
    item_content_type,
)
from ..utils.files import copy_path, hash_path, remove_path

if TYPE_CHECKING:
    from .context import PatchingContext

__all__ = ["TaskBehavior", "MISC_TASK", "MODULE_TASK", "execute_task", "invert", "run_modification", "select_task"]

LOGGER = logging.getLogger(__name__)

Item = ModuleItem | MiscContentItem
PathResolver = Callable[["PatchingContext", Item], Path]
OptionalPathResolver = Callable[["PatchingContext", Item], "Path | None"]


@dataclass(frozen=True, slots=True)
class TaskBehavior:
    """Where a kind of content lives, for the shared task algorithm."""

    name: str
    target: PathResolver
    backup: OptionalPathResolver


MODULE_TASK = TaskBehavior(
    name="module",
    target=lambda context, item: context.get_installed_module_directory(item),
    backup=lambda context, item: context.get_module_backup_directory(item),
)

MISC_TASK = TaskBehavior(
    name="misc",
    target=lambda context, item: context.get_target_file(item),
    backup=lambda context, item: context.get_backup_file(item),
)

_BEHAVIOURS: Mapping[ContentType, TaskBehavior] = {
    ContentType.MODULE: MODULE_TASK,
    ContentType.BUNDLE: MODULE_TASK,
    ContentType.MISC: MISC_TASK,
}


def select_task(modification: ContentModification) -> TaskBehavior:
    """Return the behaviour that handles ``modification``'s content type."""
    return _BEHAVIOURS[item_content_type(modification.item)]


def run_modification(modification: ContentModification, context: "PatchingContext") -> ContentModification | None:
    return execute_task(select_task(modification), modification, context)


def _hash_or_fail(path: Path, item: Item) -> str | None:
    try:
        return hash_path(path)
    except OSError as error:
        raise ContentIOError(
            f"Failed to read {item} at {path}: {error}",
            details={"item": str(item), "path": path.as_posix()},
        ) from error


def _verify(modification: ContentModification, actual: str | None) -> None:
    expected = modification.existing_hash
    if modification.type is ModificationType.ADD:
        conflict = actual != expected
    else:
        conflict = expected is not None and actual != expected
    if conflict:
        raise ContentConflictError(
            f"Content conflict for {modification.item}",
            items=[modification.item],
            details={"item": str(modification.item), "expected": expected, "actual": actual},
        )


def invert(modification: ContentModification, before: str | None, after: str | None) -> ContentModification | None:
    """Build the modification that restores the state hashed as ``before``."""
    item = modification.item
    if before is None and after is None:
        return None
    if before is None:
        return ContentModification(type=ModificationType.REMOVE, item=item.with_hash(None), existing_hash=after)
    if after is None:
        return ContentModification(type=ModificationType.ADD, item=item.with_hash(before))
    return ContentModification(type=ModificationType.MODIFY, item=item.with_hash(before), existing_hash=after)


def _condition_met(condition: Item, context: "PatchingContext") -> bool:
    behaviour = _BEHAVIOURS[item_content_type(condition)]
    return behaviour.target(context, condition).exists()


def _staged_content(item: Item, context: "PatchingContext") -> Path:
    """Locate the content that replaces ``item`` and check it is what the patch declares."""
    source = context.loader.get_file(item)
    details = {"item": str(item), "path": source.as_posix()}
    if not source.exists():
        raise ContentIOError(f"Missing patch content for {item} at {source}", details=details)
    expects_directory = isinstance(item, ModuleItem) or item.directory
    if source.is_dir() != expects_directory:
        kind = "directory" if expects_directory else "file"
        raise ContentIOError(f"Patch content for {item} at {source} is not a {kind}", details=details)
    if item.content_hash is not None:
        actual = _hash_or_fail(source, item)
        if actual != item.content_hash:
            raise ContentIOError(
                f"Patch content for {item} does not match its content hash",
                details={**details, "expected": item.content_hash, "actual": actual},
            )
    return source


def execute_task(
    behavior: TaskBehavior,
    modification: ContentModification,
    context: "PatchingContext",
) -> ContentModification | None:
    """Apply ``modification`` and return its inverse.

    ``None`` is returned when nothing changed on disk: the modification's
    condition did not hold, the policy preserved the existing content, or a
    removal found nothing to remove. Staged content is checked against the
    item's kind and content hash before anything is backed up or written.
    """

    item = modification.item
    if modification.condition is not None and not _condition_met(modification.condition, context):
        LOGGER.info("Skipping %s: condition %s is not present", modification.describe(), modification.condition)
        return None
    if context.is_excluded(item):
        LOGGER.info("Preserving existing content for %s", item)
        return None

    target = behavior.target(context, item)
    before = _hash_or_fail(target, item)
    if not context.is_ignored(item):
        _verify(modification, before)
    source = None if modification.type is ModificationType.REMOVE else _staged_content(item, context)

    backup = behavior.backup(context, item)
    try:
        if backup is not None and before is not None:
            copy_path(target, backup)
        if source is None:
            remove_path(target)
        else:
            copy_path(source, target)
    except OSError as error:
        raise ContentIOError(
            f"Failed to {modification.type.value.lower()} {item}: {error}",
            details={"item": str(item), "path": target.as_posix()},
        ) from error

    after = _hash_or_fail(target, item)
    LOGGER.debug("%s task executed %s", behavior.name, modification.describe())
    return invert(modification, before, after)
