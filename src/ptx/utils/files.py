"""Filesystem helpers shared by patching tasks and the version chain."""

from __future__ import annotations

import hashlib
import os
import shutil
import tempfile
from pathlib import Path
from typing import Iterable, Iterator

__all__ = [
    "hash_path",
    "copy_path",
    "remove_path",
    "write_text_atomic",
    "iter_files",
    "write_lines_atomic",
]

_CHUNK_SIZE = 64 * 1024


def iter_files(root: Path) -> Iterator[Path]:
    """Yield regular files below ``root`` in a stable order."""
    for path in sorted(root.rglob("*"), key=lambda item: item.relative_to(root).as_posix()):
        if path.is_file():
            yield path


def _update_from_file(digest: "hashlib._Hash", path: Path) -> None:
    with path.open("rb") as handle:
        while True:
            chunk = handle.read(_CHUNK_SIZE)
            if not chunk:
                break
            digest.update(chunk)


def hash_path(path: Path) -> str | None:
    """Return a SHA-1 content hash for a file or directory tree.

    Missing paths hash to ``None``. Directory hashes cover the relative path
    and bytes of every file below the directory.
    """

    if not path.exists():
        return None
    digest = hashlib.sha1()
    if path.is_file():
        _update_from_file(digest, path)
        return digest.hexdigest()
    for child in iter_files(path):
        digest.update(child.relative_to(path).as_posix().encode("utf-8"))
        digest.update(b"\0")
        _update_from_file(digest, child)
    return digest.hexdigest()


def remove_path(path: Path) -> None:
    """Delete a file or directory tree if it exists."""
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()


def copy_path(source: Path, target: Path) -> None:
    """Replace ``target`` with a copy of ``source`` (file or directory)."""
    target.parent.mkdir(parents=True, exist_ok=True)
    if source.is_dir():
        remove_path(target)
        shutil.copytree(source, target)
    else:
        if target.is_dir():
            remove_path(target)
        shutil.copy2(source, target)


def write_text_atomic(path: Path, text: str) -> None:
    """Write ``text`` to ``path`` through a temporary file and a rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    handle, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(handle, "w", encoding="utf-8", newline="\n") as stream:
            stream.write(text)
        os.replace(temp_name, path)
    except BaseException:
        try:
            os.unlink(temp_name)
        except OSError:
            pass
        raise


def write_lines_atomic(path: Path, lines: Iterable[str]) -> None:
    """Write one value per line to ``path``."""
    write_text_atomic(path, "".join(f"{line}\n" for line in lines))
