"""On-disk layout of a patchable installation."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

__all__ = [
    "APP_CLIENT",
    "BUNDLES",
    "CONFIGURATION",
    "CUMULATIVE",
    "DOMAIN",
    "HISTORY",
    "METADATA",
    "MISC",
    "MODULES",
    "REFERENCES",
    "STANDALONE",
    "DirectoryStructure",
    "InstalledImage",
]

APP_CLIENT = "appclient"
DOMAIN = "domain"
STANDALONE = "standalone"
CONFIGURATION = "configuration"
MODULES = "modules"
BUNDLES = "bundles"
MISC = "misc"
METADATA = ".installation"
CUMULATIVE = "cumulative"
REFERENCES = "references"
HISTORY = "history"


@dataclass(frozen=True, slots=True)
class InstalledImage:
    """Root paths of the installed distribution."""

    home: Path

    @property
    def app_client_dir(self) -> Path:
        return self.home / APP_CLIENT

    @property
    def domain_dir(self) -> Path:
        return self.home / DOMAIN

    @property
    def standalone_dir(self) -> Path:
        return self.home / STANDALONE

    @property
    def modules_dir(self) -> Path:
        return self.home / MODULES

    @property
    def bundles_dir(self) -> Path:
        return self.home / BUNDLES

    @property
    def installation_metadata(self) -> Path:
        return self.home / METADATA


@dataclass(frozen=True, slots=True)
class DirectoryStructure:
    """Resolve the locations the patching engine reads and writes.

    ``<home>/.installation/patches`` holds the version chain
    (``cumulative``, ``references/<id>``) and one directory per applied
    patch with its descriptor and ``history`` backups. Modules and bundles
    are patched in place under ``<home>/modules`` and ``<home>/bundles``.
    """

    image: InstalledImage

    @classmethod
    def for_home(cls, home: Path | str) -> "DirectoryStructure":
        return cls(InstalledImage(Path(home).resolve()))

    def get_installed_image(self) -> InstalledImage:
        return self.image

    def get_patches_metadata(self) -> Path:
        return self.image.installation_metadata / "patches"

    def get_cumulative_link(self) -> Path:
        return self.get_patches_metadata() / CUMULATIVE

    def get_cumulative_refs(self, cumulative_id: str) -> Path:
        return self.get_patches_metadata() / REFERENCES / cumulative_id

    def get_patch_dir(self, patch_id: str) -> Path:
        return self.get_patches_metadata() / patch_id

    def get_history_dir(self, patch_id: str) -> Path:
        return self.get_patch_dir(patch_id) / HISTORY
