from __future__ import annotations

import hashlib
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from ptx.installation.patch_info import BASE, PatchInfo  # noqa: E402
from ptx.installation.structure import DirectoryStructure  # noqa: E402
from ptx.metadata.descriptor import dump_patch  # noqa: E402
from ptx.metadata.schema import ContentModification, Patch, PatchType  # noqa: E402


def sha1(data: bytes) -> str:
    return hashlib.sha1(data).hexdigest()


@dataclass(slots=True)
class Installation:
    """Synthetic server installation used across the patching tests."""

    home: Path
    structure: DirectoryStructure
    staging: Path
    version: str = "1.0.0"

    def info(self, cumulative_id: str = BASE, one_offs: Sequence[str] = ()) -> PatchInfo:
        return PatchInfo(
            version=self.version,
            cumulative_id=cumulative_id,
            one_off_ids=tuple(one_offs),
            environment=self.structure,
        )

    @staticmethod
    def digest(data: bytes) -> str:
        return sha1(data)

    def read(self, relative: str) -> bytes:
        return (self.home / relative).read_bytes()

    def write(self, relative: str, data: bytes) -> Path:
        target = self.home / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return target

    def stage_patch(
        self,
        patch_id: str,
        modifications: Sequence[ContentModification],
        *,
        patch_type: PatchType = PatchType.ONE_OFF,
        resulting_version: str | None = None,
        applies_to: Sequence[str] | None = None,
        misc: Mapping[str, bytes] | None = None,
        modules: Mapping[str, Mapping[str, bytes]] | None = None,
        description: str = "",
    ) -> tuple[Patch, Path]:
        """Write staged patch content plus ``patch.yaml`` and return both."""

        work_dir = self.staging / patch_id
        work_dir.mkdir(parents=True)
        for relative, data in (misc or {}).items():
            target = work_dir / "misc" / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        for module_path, files in (modules or {}).items():
            for name, data in files.items():
                target = work_dir / "modules" / module_path / name
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(data)
        patch = Patch(
            patch_id=patch_id,
            patch_type=patch_type,
            description=description,
            resulting_version=resulting_version or self.version,
            applies_to=list(applies_to) if applies_to is not None else [self.version],
            modifications=list(modifications),
        )
        dump_patch(patch, work_dir)
        return patch, work_dir


@pytest.fixture()
def installation(tmp_path: Path) -> Installation:
    """Create a small installation with scripts, configuration and one module."""

    home = tmp_path / "server"
    (home / "bin").mkdir(parents=True)
    (home / "bin" / "standalone.sh").write_bytes(b"A")
    (home / "bin" / "domain.sh").write_bytes(b"domain-v1")

    standalone_cfg = home / "standalone" / "configuration"
    standalone_cfg.mkdir(parents=True)
    (standalone_cfg / "standalone.xml").write_text("<server/>", encoding="utf-8")
    (standalone_cfg / "logging.properties").write_text("level=INFO\n", encoding="utf-8")

    domain_cfg = home / "domain" / "configuration"
    domain_cfg.mkdir(parents=True)
    (domain_cfg / "domain.xml").write_text("<domain/>", encoding="utf-8")
    (domain_cfg / "host.xml").write_text("<host/>", encoding="utf-8")

    module_dir = home / "modules" / "org" / "example" / "main"
    module_dir.mkdir(parents=True)
    (module_dir / "module.xml").write_text("<module name='org.example'/>", encoding="utf-8")

    staging = tmp_path / "staging"
    staging.mkdir()
    return Installation(home=home, structure=DirectoryStructure.for_home(home), staging=staging)
