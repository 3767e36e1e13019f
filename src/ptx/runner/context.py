"""The patch transaction: backups, inverse log, commit and best-effort undo.

A context handles one apply or rollback attempt against one installation.
It assumes it is the only writer: nothing here locks the installation, so
callers must serialise concurrent patch operations themselves.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Sequence, Tuple

from ..errors import (
    ConfigurationError,
    ContentIOError,
    PatchingError,
    PersistenceError,
    UndoTaskError,
)
from ..installation.patch_info import (
    PatchInfo,
    persist_patch_info,
    read_ref,
    read_refs,
    write_ref,
    write_refs,
)
from ..installation.structure import (
    APP_CLIENT,
    BUNDLES,
    CONFIGURATION,
    CUMULATIVE,
    DOMAIN,
    MISC,
    MODULES,
    REFERENCES,
    STANDALONE,
    DirectoryStructure,
)
from ..metadata.descriptor import PATCH_DESCRIPTOR, dump_patch
from ..metadata.schema import (
    ContentModification,
    ContentType,
    MiscContentItem,
    ModuleItem,
    Patch,
    PatchType,
)
from ..telemetry import emit_event
from .loader import PatchContentLoader
from .policy import ContentVerificationPolicy
from .tasks import run_modification

__all__ = ["PatchingContext", "PatchingResult", "UndoReport", "build_rollback_patch"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class PatchingResult:
    """Outcome of a committed transaction."""

    patch_id: str
    patch_info: PatchInfo
    problems: List[ModuleItem | MiscContentItem] = field(default_factory=list)
    _restore: Callable[[], None] | None = None

    def has_failures(self) -> bool:
        return bool(self.problems)

    def rollback(self) -> None:
        """Re-persist the chain that was active before the transaction.

        Only the version pointer moves back; content files are not touched.
        """
        if self._restore is not None:
            self._restore()


@dataclass(slots=True)
class UndoReport:
    """Advisory outcome of :meth:`PatchingContext.undo`."""

    restored: List[ContentModification] = field(default_factory=list)
    failures: List[UndoTaskError] = field(default_factory=list)
    persist_error: BaseException | None = None

    @property
    def clean(self) -> bool:
        return not self.failures and self.persist_error is None


def build_rollback_patch(patch: Patch, info: PatchInfo, modifications: Sequence[ContentModification]) -> Patch:
    """Snapshot the patch that reverses ``patch`` applied on top of ``info``."""
    if patch.patch_type is PatchType.CUMULATIVE:
        applies_to = [patch.resulting_version]
    else:
        applies_to = [info.version]
    return Patch(
        patch_id=info.cumulative_id,
        patch_type=patch.patch_type,
        description=patch.description,
        resulting_version=info.version,
        applies_to=applies_to,
        modifications=list(modifications),
    )


def _backup_directory(source: Path, target: Path) -> None:
    try:
        target.mkdir(parents=True, exist_ok=False)
    except OSError as error:
        raise ConfigurationError.cannot_create_directory(target) from error
    try:
        for path in sorted(source.iterdir()):
            if path.is_file() and path.name.endswith(".xml"):
                shutil.copy2(path, target / path.name)
    except OSError as error:
        raise ContentIOError(
            f"Failed to back up configuration from {source}: {error}",
            details={"source": source.as_posix(), "target": target.as_posix()},
        ) from error


class PatchingContext:
    """Own a single patch application or rollback attempt."""

    def __init__(
        self,
        patch: Patch,
        info: PatchInfo,
        structure: DirectoryStructure,
        backup: Path | None,
        policy: ContentVerificationPolicy,
        loader: PatchContentLoader,
        *,
        history_id: str | None = None,
    ) -> None:
        self.patch = patch
        self.current_info = info
        self.structure = structure
        self.backup_root = backup
        self.verification_policy = policy
        self.loader = loader
        self.history_id = history_id or patch.patch_id
        self.target = structure.get_installed_image().home
        self.rollback_only = False
        self._inverse: List[ContentModification] = []

    @classmethod
    def create(
        cls,
        patch: Patch,
        info: PatchInfo,
        structure: DirectoryStructure,
        policy: ContentVerificationPolicy,
        work_dir: Path,
    ) -> "PatchingContext":
        """Context applying ``patch`` from the unpacked content in ``work_dir``."""
        backup = structure.get_history_dir(patch.patch_id)
        try:
            backup.mkdir(parents=True, exist_ok=False)
        except OSError as error:
            raise ConfigurationError.cannot_create_directory(backup) from error
        loader = PatchContentLoader.create(work_dir)
        return cls(patch, info, structure, backup, policy, loader)

    @classmethod
    def create_for_rollback(
        cls,
        patch: Patch,
        info: PatchInfo,
        structure: DirectoryStructure,
        override_all: bool,
        work_dir: Path,
        *,
        history_id: str | None = None,
    ) -> "PatchingContext":
        """Context replaying a stored rollback patch.

        Content is read from the backups recorded when the patch was applied;
        ``work_dir`` only receives throwaway backups.
        """

        patch_id = history_id or patch.patch_id
        history = structure.get_history_dir(patch_id)
        loader = PatchContentLoader(
            history / MISC,
            history / BUNDLES,
            history / MODULES,
        )
        policy = ContentVerificationPolicy.OVERRIDE_ALL if override_all else ContentVerificationPolicy.STRICT
        return cls(patch, info, structure, work_dir, policy, loader, history_id=patch_id)

    @property
    def recorded_inverse_modifications(self) -> Tuple[ContentModification, ...]:
        return tuple(self._inverse)

    def get_patch_info(self) -> PatchInfo:
        return self.current_info

    def get_module_backup_directory(self, item: ModuleItem) -> Path | None:
        if self.backup_root is None:
            return None
        kind = BUNDLES if item.content_type == ContentType.BUNDLE else MODULES
        return PatchContentLoader.get_module_path(self.backup_root / kind, item)

    def get_installed_module_directory(self, item: ModuleItem) -> Path:
        image = self.structure.get_installed_image()
        root = image.bundles_dir if item.content_type == ContentType.BUNDLE else image.modules_dir
        return PatchContentLoader.get_module_path(root, item)

    def get_target_file(self, item: MiscContentItem) -> Path:
        return PatchContentLoader.get_misc_path(self.target, item)

    def get_backup_file(self, item: MiscContentItem) -> Path | None:
        if self.backup_root is None:
            return None
        return PatchContentLoader.get_misc_path(self.backup_root / MISC, item)

    def is_ignored(self, item: ModuleItem | MiscContentItem) -> bool:
        return self.verification_policy.ignore_content_validation(item)

    def is_excluded(self, item: ModuleItem | MiscContentItem) -> bool:
        return self.verification_policy.preserve_existing(item)

    def record_rollback_action(self, modification: ContentModification) -> None:
        self._inverse.append(modification)

    def execute(self, modifications: Sequence[ContentModification] | None = None) -> None:
        """Run ``modifications`` (default: the patch's) in order, recording inverses.

        The first failure propagates; modifications already executed stay on
        disk together with their backups.
        """

        if self.rollback_only:
            raise RuntimeError("context has been rolled back")
        pending = self.patch.modifications if modifications is None else modifications
        for modification in pending:
            inverse = run_modification(modification, self)
            if inverse is not None:
                self.record_rollback_action(inverse)

    def backup_configuration(self) -> None:
        """Copy ``*.xml`` configuration files into the backup directory."""
        if self.backup_root is None:
            return
        image = self.structure.get_installed_image()
        config_backup = self.backup_root / CONFIGURATION
        roots = (
            (image.app_client_dir / CONFIGURATION, APP_CLIENT),
            (image.domain_dir / CONFIGURATION, DOMAIN),
            (image.standalone_dir / CONFIGURATION, STANDALONE),
        )
        for source, name in roots:
            if source.is_dir():
                _backup_directory(source, config_backup / name)

    def persist(self, info: PatchInfo) -> PatchInfo:
        try:
            return persist_patch_info(info)
        except ConfigurationError:
            raise
        except OSError as error:
            raise PersistenceError(
                f"Failed to persist patch info: {error}",
                details={"cumulative_id": info.cumulative_id},
            ) from error

    def _commit(self, patch_id: str, new_info: PatchInfo) -> PatchingResult:
        try:
            self.persist(new_info)
        except PatchingError as error:
            self._restore_previous_info()
            raise PersistenceError(
                f"Failed to persist patch info for {patch_id}: {error}",
                details={"patch_id": patch_id},
            ) from error

        previous = self.current_info

        def restore() -> None:
            self.persist(previous)

        return PatchingResult(patch_id=patch_id, patch_info=new_info, _restore=restore)

    def _restore_previous_info(self) -> None:
        try:
            self.persist(self.current_info)
        except PatchingError:
            LOGGER.debug("Failed to persist current version", exc_info=True)

    def finish(self, patch: Patch) -> PatchingResult:
        """Commit the transaction and persist the new version chain."""
        if self.rollback_only:
            raise RuntimeError("cannot finish a patch after undo")
        if self.backup_root is None:
            raise RuntimeError("cannot finish a patch without a backup directory")

        info = self.current_info
        if patch.patch_type is PatchType.ONE_OFF:
            new_info = info.with_one_off(patch.patch_id)
        else:
            new_info = info.with_cumulative(patch.patch_id, patch.resulting_version)

        try:
            write_ref(self.backup_root / CUMULATIVE, info.cumulative_id)
            write_refs(self.backup_root / REFERENCES, info.one_off_ids)
            dump_patch(
                build_rollback_patch(patch, info, self._inverse),
                self.backup_root / PATCH_DESCRIPTOR,
            )
        except OSError as error:
            raise PatchingError(
                f"Failed to record rollback information for {patch.patch_id}: {error}",
                details={"patch_id": patch.patch_id, "backup": self.backup_root.as_posix()},
            ) from error

        result = self._commit(patch.patch_id, new_info)
        emit_event(
            "patch.finish",
            patch_id=patch.patch_id,
            patch_type=patch.patch_type,
            cumulative_id=new_info.cumulative_id,
            one_off_ids=new_info.one_off_ids,
            inverse_count=len(self._inverse),
        )
        return result

    def finish_rollback(self) -> PatchingResult:
        """Commit a rollback-mode transaction.

        The chain recorded in the history directory when the patch was
        applied becomes the active one again.
        """

        if self.rollback_only:
            raise RuntimeError("cannot finish a rollback after undo")
        history = self.structure.get_history_dir(self.history_id)
        cumulative_id = read_ref(history / CUMULATIVE)
        if cumulative_id is None:
            raise PatchingError(
                f"No recorded patch chain for {self.history_id}",
                details={"history": history.as_posix()},
            )
        restored = PatchInfo(
            version=self.patch.resulting_version,
            cumulative_id=cumulative_id,
            one_off_ids=tuple(read_refs(history / REFERENCES)),
            environment=self.structure,
        )
        result = self._commit(self.history_id, restored)
        emit_event(
            "patch.rollback.finish",
            patch_id=self.history_id,
            cumulative_id=restored.cumulative_id,
            one_off_ids=restored.one_off_ids,
        )
        return result

    def undo(self) -> UndoReport:
        """Best-effort reversal of every modification executed so far.

        Inverses are replayed in recorded order from the misc backups. Added
        modules and bundles are removed again, but their previous content is
        only restored by a rollback-mode context over the history directory.
        Failures are logged and reported, never raised.
        """

        self.rollback_only = True
        report = UndoReport()
        misc_backup = self.backup_root / MISC if self.backup_root is not None else None
        loader = PatchContentLoader(misc_backup, None, None)
        undo_context = PatchingContext(
            self.patch,
            self.current_info,
            self.structure,
            None,
            ContentVerificationPolicy.OVERRIDE_ALL,
            loader,
            history_id=self.history_id,
        )

        for modification in self._inverse:
            try:
                run_modification(modification, undo_context)
            except Exception as error:
                LOGGER.warning("Failed to undo change (%s)", modification.describe(), exc_info=True)
                emit_event(
                    "patch.undo.item_failed",
                    patch_id=self.patch.patch_id,
                    modification=modification.describe(),
                    error=str(error),
                )
                report.failures.append(UndoTaskError(modification, error))
            else:
                report.restored.append(modification)

        try:
            self.persist(self.current_info)
        except Exception as error:
            LOGGER.warning("Failed to persist info (%s)", self.current_info, exc_info=True)
            report.persist_error = error

        emit_event(
            "patch.undo",
            patch_id=self.patch.patch_id,
            restored=len(report.restored),
            failed=len(report.failures),
        )
        return report
