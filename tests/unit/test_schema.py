from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from ptx.errors import PatchingError
from ptx.metadata.descriptor import dump_patch, load_patch
from ptx.metadata.schema import (
    ContentModification,
    MiscContentItem,
    ModificationType,
    ModuleItem,
    Patch,
    PatchType,
)


def test_misc_item_from_relative_path() -> None:
    item = MiscContentItem.from_relative("bin/standalone.sh", content_hash="abc")

    assert item.path == ("bin", "standalone.sh")
    assert item.name == "standalone.sh"
    assert item.relative_path == "bin/standalone.sh"
    assert str(item) == "misc:bin/standalone.sh"


def test_misc_item_rejects_parent_segments() -> None:
    with pytest.raises(ValidationError):
        MiscContentItem(path=("..", "etc", "passwd"))


def test_module_item_path_uses_name_and_slot() -> None:
    module = ModuleItem(name="org.jboss.logging", slot="1.2")
    bundle = ModuleItem(name="org.example", content_type="BUNDLE")

    assert module.relative_parts == ("org", "jboss", "logging", "1.2")
    assert bundle.relative_path == "org/example/main"
    assert str(bundle) == "bundle:org.example:main"


def test_content_items_are_immutable() -> None:
    item = MiscContentItem.from_relative("bin/run.sh")

    with pytest.raises(ValidationError):
        item.directory = True  # type: ignore[misc]
    assert item.with_hash("ff").content_hash == "ff"
    assert item.content_hash is None


def test_descriptor_preserves_item_kinds(tmp_path: Path) -> None:
    patch = Patch(
        patch_id="P1",
        patch_type=PatchType.ONE_OFF,
        description="Fix start script",
        resulting_version="1.0.0",
        applies_to=["1.0.0"],
        modifications=[
            ContentModification(
                type=ModificationType.MODIFY,
                item=MiscContentItem.from_relative("bin/standalone.sh", content_hash="b"),
                existing_hash="a",
            ),
            ContentModification(
                type=ModificationType.ADD,
                item=ModuleItem(name="org.example.extra"),
                condition=ModuleItem(name="org.example"),
            ),
        ],
    )

    descriptor = dump_patch(patch, tmp_path)
    loaded = load_patch(tmp_path)

    assert descriptor == tmp_path / "patch.yaml"
    assert loaded == patch
    assert isinstance(loaded.modifications[0].item, MiscContentItem)
    assert isinstance(loaded.modifications[1].item, ModuleItem)
    assert isinstance(loaded.modifications[1].condition, ModuleItem)


def test_load_patch_reports_invalid_descriptor(tmp_path: Path) -> None:
    (tmp_path / "patch.yaml").write_text("patch_id: P1\npatch_type: WEEKLY\n", encoding="utf-8")

    with pytest.raises(PatchingError) as excinfo:
        load_patch(tmp_path)

    assert "Invalid patch descriptor" in str(excinfo.value)
    assert excinfo.value.details["errors"]


def test_patch_id_must_be_a_single_path_segment() -> None:
    with pytest.raises(ValidationError):
        Patch(patch_id="../escape", patch_type=PatchType.ONE_OFF, resulting_version="1.0.0")
