"""Apply and roll back patches against an installation."""

from __future__ import annotations

import logging
import tempfile
import zipfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Tuple

from ..errors import InapplicablePatchError, PatchingError
from ..installation.patch_info import BASE, PatchInfo, load_patch_info, read_ref
from ..installation.structure import CUMULATIVE, REFERENCES, DirectoryStructure
from ..metadata.descriptor import PATCH_DESCRIPTOR, dump_patch, load_patch
from ..metadata.schema import ModuleItem, Patch, PatchType
from ..telemetry import emit_event
from ..utils.files import remove_path
from .context import PatchingContext, PatchingResult, UndoReport
from .policy import ContentVerificationPolicy

__all__ = ["AppliedPatch", "PatchTool"]

LOGGER = logging.getLogger(__name__)

_RESERVED_IDS = frozenset({BASE, CUMULATIVE, REFERENCES})


@dataclass(frozen=True, slots=True)
class AppliedPatch:
    """A patch currently in effect, with its descriptor when available."""

    patch_id: str
    patch_type: PatchType
    descriptor: Patch | None = None


def _extract_zip(archive: Path, destination: Path) -> None:
    root = destination.resolve()
    with zipfile.ZipFile(archive) as bundle:
        for member in bundle.namelist():
            resolved = (root / member).resolve()
            if resolved != root and root not in resolved.parents:
                raise PatchingError(
                    f"Unsafe path in patch archive: {member}",
                    details={"archive": archive.as_posix(), "member": member},
                )
        bundle.extractall(root)


@contextmanager
def unpacked_patch(source: Path) -> Iterator[Path]:
    """Yield a directory holding the patch content of ``source``.

    ``source`` is either an unpacked patch directory or a ``.zip`` archive,
    which is extracted to a temporary directory for the duration.
    """

    if source.is_dir():
        yield source
        return
    if not source.is_file() or not zipfile.is_zipfile(source):
        raise PatchingError(f"Not a patch directory or archive: {source}")
    with tempfile.TemporaryDirectory(prefix="ptx-patch-") as temp_dir:
        work_dir = Path(temp_dir)
        _extract_zip(source, work_dir)
        yield work_dir


class PatchTool:
    """Validate patches and run them through a :class:`PatchingContext`.

    A single tool instance must be the only writer to its installation.
    """

    def __init__(self, structure: DirectoryStructure, base_version: str) -> None:
        self.structure = structure
        self.base_version = base_version

    @classmethod
    def for_home(cls, home: Path | str, base_version: str) -> "PatchTool":
        return cls(DirectoryStructure.for_home(home), base_version)

    def _descriptor(self, patch_id: str) -> Patch | None:
        path = self.structure.get_patch_dir(patch_id) / PATCH_DESCRIPTOR
        if not path.is_file():
            return None
        return load_patch(path)

    def current_info(self) -> PatchInfo:
        cumulative_id = read_ref(self.structure.get_cumulative_link(), BASE) or BASE
        versions: Tuple[tuple[str, str], ...] = ()
        if cumulative_id != BASE:
            descriptor = self._descriptor(cumulative_id)
            if descriptor is not None:
                versions = ((cumulative_id, descriptor.resulting_version),)
        return load_patch_info(self.structure, self.base_version, cumulative_versions=versions)

    def history(self) -> List[AppliedPatch]:
        """Patches in effect, most recent first."""
        info = self.current_info()
        entries: List[AppliedPatch] = []
        for patch_id in info.one_off_ids:
            entries.append(AppliedPatch(patch_id, PatchType.ONE_OFF, self._descriptor(patch_id)))
        if info.cumulative_id != BASE:
            entries.append(AppliedPatch(info.cumulative_id, PatchType.CUMULATIVE, self._descriptor(info.cumulative_id)))
        return entries

    def check_applicable(self, patch: Patch, info: PatchInfo) -> None:
        patch_id = patch.patch_id
        if patch_id in _RESERVED_IDS:
            raise InapplicablePatchError(f"Patch id {patch_id!r} is reserved", details={"patch_id": patch_id})
        if patch_id in info.applied_ids:
            raise InapplicablePatchError(f"Patch {patch_id} is already applied", details={"patch_id": patch_id})
        if info.version not in patch.applies_to:
            raise InapplicablePatchError(
                f"Patch {patch_id} does not apply to version {info.version}",
                details={"patch_id": patch_id, "version": info.version, "applies_to": list(patch.applies_to)},
            )
        history = self.structure.get_history_dir(patch_id)
        if history.exists():
            raise InapplicablePatchError(
                f"History for {patch_id} already exists at {history}; remove it before re-applying",
                details={"patch_id": patch_id, "history": history.as_posix()},
            )

    def apply(
        self,
        source: Path,
        policy: ContentVerificationPolicy = ContentVerificationPolicy.STRICT,
        *,
        backup_config: bool = True,
    ) -> PatchingResult:
        """Apply the patch at ``source`` and commit the new version chain.

        On failure every change made so far is undone best effort before the
        error propagates. Backups stay in the patch history directory.
        """

        with unpacked_patch(source) as work_dir:
            patch = load_patch(work_dir)
            info = self.current_info()
            self.check_applicable(patch, info)
            context = PatchingContext.create(patch, info, self.structure, policy, work_dir)
            emit_event(
                "patch.apply.start",
                patch_id=patch.patch_id,
                patch_type=patch.patch_type,
                policy=policy.name,
                modifications=len(patch.modifications),
            )
            try:
                dump_patch(patch, self.structure.get_patch_dir(patch.patch_id) / PATCH_DESCRIPTOR)
                if backup_config:
                    context.backup_configuration()
                context.execute()
                result = context.finish(patch)
            except Exception as error:
                report = context.undo()
                unresolved = self._restore_from_history(patch, info, report)
                LOGGER.error(
                    "Applying %s failed (%s); undo restored %d change(s), %d failed",
                    patch.patch_id,
                    error,
                    len(report.restored) + len(report.failures) - unresolved,
                    unresolved,
                )
                raise
        LOGGER.info("Applied patch %s", patch.patch_id)
        return result

    def _restore_from_history(self, patch: Patch, info: PatchInfo, report: UndoReport) -> int:
        """Restore module and bundle content that undo left behind.

        Undo only reads misc backups, so failed module inverses are replayed
        by a rollback-mode context over the patch's history directory.
        Returns the number of changes that are still not restored.
        """

        pending = [failure.modification for failure in report.failures if isinstance(failure.modification.item, ModuleItem)]
        unresolved = len(report.failures) - len(pending)
        if not pending:
            return unresolved
        with tempfile.TemporaryDirectory(prefix=f"ptx-restore-{patch.patch_id}-") as temp_dir:
            context = PatchingContext.create_for_rollback(patch, info, self.structure, True, Path(temp_dir))
            for modification in pending:
                try:
                    context.execute([modification])
                except PatchingError:
                    LOGGER.warning("Failed to restore %s from history", modification.item, exc_info=True)
                    unresolved += 1
        return unresolved

    def rollback(self, patch_id: str, *, override_all: bool = True) -> List[PatchingResult]:
        """Roll back ``patch_id`` and every patch applied on top of it."""
        info = self.current_info()
        if patch_id == BASE or patch_id not in info.applied_ids:
            raise PatchingError(f"Patch {patch_id} is not applied", details={"patch_id": patch_id})
        if patch_id in info.one_off_ids:
            index = info.one_off_ids.index(patch_id)
            targets = info.one_off_ids[: index + 1]
        else:
            targets = (*info.one_off_ids, patch_id)
        return [self._rollback_single(target, override_all=override_all) for target in targets]

    def _rollback_single(self, patch_id: str, *, override_all: bool) -> PatchingResult:
        info = self.current_info()
        rollback_patch = load_patch(self.structure.get_history_dir(patch_id))
        emit_event("patch.rollback.start", patch_id=patch_id, override_all=override_all)
        with tempfile.TemporaryDirectory(prefix=f"ptx-rollback-{patch_id}-") as temp_dir:
            context = PatchingContext.create_for_rollback(
                rollback_patch,
                info,
                self.structure,
                override_all,
                Path(temp_dir),
                history_id=patch_id,
            )
            try:
                context.execute()
                result = context.finish_rollback()
            except Exception as error:
                report = context.undo()
                LOGGER.error(
                    "Rolling back %s failed (%s); undo restored %d change(s), %d failed",
                    patch_id,
                    error,
                    len(report.restored),
                    len(report.failures),
                )
                raise
        self._discard(patch_id, cumulative=info.cumulative_id == patch_id)
        LOGGER.info("Rolled back patch %s", patch_id)
        return result

    def _discard(self, patch_id: str, *, cumulative: bool) -> None:
        paths = [self.structure.get_patch_dir(patch_id)]
        if cumulative:
            paths.append(self.structure.get_cumulative_refs(patch_id))
        for path in paths:
            try:
                remove_path(path)
            except OSError:
                LOGGER.warning("Failed to remove %s after rolling back %s", path, patch_id, exc_info=True)
