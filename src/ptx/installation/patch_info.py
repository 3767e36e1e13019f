"""Persisted record of the cumulative and one-off patches in effect."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Iterable, Sequence, Tuple

from ..errors import ConfigurationError
from ..utils.files import write_lines_atomic, write_text_atomic
from .structure import DirectoryStructure

__all__ = [
    "BASE",
    "PatchInfo",
    "load_patch_info",
    "persist_patch_info",
    "read_ref",
    "read_refs",
    "write_ref",
    "write_refs",
]

BASE = "base"
LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PatchInfo:
    """Version chain of an installation.

    ``one_off_ids`` is ordered most recent first, which is also the order in
    which one-off patches have to be rolled back.
    """

    version: str
    cumulative_id: str
    one_off_ids: Tuple[str, ...] = ()
    environment: DirectoryStructure | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        ids = tuple(self.one_off_ids)
        if len(set(ids)) != len(ids):
            raise ValueError(f"duplicate one-off patch ids: {list(ids)}")
        object.__setattr__(self, "one_off_ids", ids)

    @property
    def applied_ids(self) -> Tuple[str, ...]:
        """Every patch id in effect, most recent first, cumulative last."""
        if self.cumulative_id == BASE:
            return self.one_off_ids
        return (*self.one_off_ids, self.cumulative_id)

    def with_one_off(self, patch_id: str) -> "PatchInfo":
        return replace(self, one_off_ids=(patch_id, *self.one_off_ids))

    def with_cumulative(self, patch_id: str, version: str) -> "PatchInfo":
        return replace(self, cumulative_id=patch_id, version=version, one_off_ids=())

    def require_environment(self) -> DirectoryStructure:
        if self.environment is None:
            raise ValueError("patch info is not bound to an installation")
        return self.environment


def write_ref(path: Path, value: str) -> None:
    write_text_atomic(path, f"{value}\n")


def write_refs(path: Path, values: Iterable[str]) -> None:
    write_lines_atomic(path, values)


def read_ref(path: Path, default: str | None = None) -> str | None:
    try:
        content = path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return default
    return content or default


def read_refs(path: Path) -> list[str]:
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except FileNotFoundError:
        return []
    return [line.strip() for line in lines if line.strip()]


def _ensure_directory(path: Path) -> None:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as error:
        raise ConfigurationError.cannot_create_directory(path) from error


def persist_patch_info(info: PatchInfo) -> PatchInfo:
    """Write the cumulative reference and the one-off list for ``info``.

    Both files are fully rewritten, so persisting the same info twice leaves
    identical content on disk.
    """

    environment = info.require_environment()
    cumulative = environment.get_cumulative_link()
    refs = environment.get_cumulative_refs(info.cumulative_id)
    _ensure_directory(cumulative.parent)
    _ensure_directory(refs.parent)
    write_ref(cumulative, info.cumulative_id)
    write_refs(refs, info.one_off_ids)
    LOGGER.debug(
        "Persisted patch info cumulative=%s one-offs=%s",
        info.cumulative_id,
        list(info.one_off_ids),
    )
    return info


def load_patch_info(
    structure: DirectoryStructure,
    base_version: str,
    *,
    cumulative_versions: Sequence[tuple[str, str]] = (),
) -> PatchInfo:
    """Load the active chain from ``structure``.

    The installation reports ``base_version`` until a cumulative patch is
    applied; afterwards the resulting version of that patch wins. Callers pass
    known ``(patch_id, resulting_version)`` pairs via ``cumulative_versions``.
    """

    cumulative_id = read_ref(structure.get_cumulative_link(), BASE) or BASE
    one_offs = read_refs(structure.get_cumulative_refs(cumulative_id))
    version = base_version
    for patch_id, resulting_version in cumulative_versions:
        if patch_id == cumulative_id:
            version = resulting_version
            break
    return PatchInfo(
        version=version,
        cumulative_id=cumulative_id,
        one_off_ids=tuple(one_offs),
        environment=structure,
    )
