"""Read and write ``patch.yaml`` descriptors."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import ValidationError

from ..errors import PatchingError
from ..utils.files import write_text_atomic
from .schema import Patch

PATCH_DESCRIPTOR = "patch.yaml"


def patch_to_dict(patch: Patch) -> dict[str, Any]:
    """Return a plain mapping for ``patch`` with enum values as strings."""
    return patch.model_dump(mode="json")


def patch_from_dict(payload: Mapping[str, Any], *, source: Path | None = None) -> Patch:
    """Validate ``payload`` into a :class:`Patch`."""
    try:
        return Patch.model_validate(dict(payload))
    except ValidationError as error:
        location = source.as_posix() if source else "<memory>"
        raise PatchingError(
            f"Invalid patch descriptor {location}",
            details={"errors": error.errors(include_url=False)},
        ) from error


def load_patch(path: Path) -> Patch:
    """Load a patch descriptor from ``path``.

    ``path`` may point at the descriptor itself or at a directory holding
    ``patch.yaml``.
    """

    descriptor = path / PATCH_DESCRIPTOR if path.is_dir() else path
    try:
        with descriptor.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except FileNotFoundError as error:
        raise PatchingError(f"Patch descriptor not found: {descriptor}") from error
    except (OSError, yaml.YAMLError) as error:
        raise PatchingError(f"Failed to read patch descriptor {descriptor}: {error}") from error

    if not isinstance(data, dict):
        raise PatchingError(f"Patch descriptor must be a mapping: {descriptor}")
    return patch_from_dict(data, source=descriptor)


def dump_patch(patch: Patch, path: Path) -> Path:
    """Serialise ``patch`` to ``path`` (a file or a directory) and return the file."""
    descriptor = path / PATCH_DESCRIPTOR if path.is_dir() else path
    text = yaml.safe_dump(patch_to_dict(patch), sort_keys=False)
    write_text_atomic(descriptor, text)
    return descriptor
