from __future__ import annotations

import zipfile
from pathlib import Path

import pytest

from ptx.errors import ContentConflictError, InapplicablePatchError, PatchingError
from ptx.installation.patch_info import BASE
from ptx.metadata.schema import ContentModification, MiscContentItem, ModificationType, ModuleItem, PatchType
from ptx.runner.policy import ContentVerificationPolicy
from ptx.runner.tool import PatchTool
from ptx.utils.files import hash_path


def _tool(installation) -> PatchTool:
    return PatchTool(installation.structure, installation.version)


def _modify(installation, relative: str, old: bytes, new: bytes) -> ContentModification:
    return ContentModification(
        type=ModificationType.MODIFY,
        item=MiscContentItem.from_relative(relative, content_hash=installation.digest(new)),
        existing_hash=installation.digest(old),
    )


def test_apply_and_rollback_round_trip(installation) -> None:
    tool = _tool(installation)
    module = installation.home / "modules" / "org" / "example" / "main"
    original = hash_path(module)
    _, source = installation.stage_patch(
        "P1",
        [
            _modify(installation, "bin/standalone.sh", b"A", b"B"),
            ContentModification(type=ModificationType.MODIFY, item=ModuleItem(name="org.example"), existing_hash=original),
        ],
        misc={"bin/standalone.sh": b"B"},
        modules={"org/example/main": {"module.xml": b"<patched/>"}},
    )

    result = tool.apply(source)

    assert result.patch_info.one_off_ids == ("P1",)
    assert installation.read("bin/standalone.sh") == b"B"
    assert (module / "module.xml").read_bytes() == b"<patched/>"
    assert tool.current_info().one_off_ids == ("P1",)
    assert [entry.patch_id for entry in tool.history()] == ["P1"]

    tool.rollback("P1")

    assert installation.read("bin/standalone.sh") == b"A"
    assert tool.current_info().one_off_ids == ()
    assert hash_path(module) == original
    assert not installation.structure.get_patch_dir("P1").exists()
    assert tool.history() == []


def test_cumulative_patch_supersedes_one_offs(installation) -> None:
    tool = _tool(installation)
    _, first = installation.stage_patch(
        "P1",
        [_modify(installation, "bin/standalone.sh", b"A", b"B")],
        misc={"bin/standalone.sh": b"B"},
    )
    tool.apply(first)
    _, second = installation.stage_patch(
        "P2",
        [_modify(installation, "bin/domain.sh", b"domain-v1", b"domain-v2")],
        patch_type=PatchType.CUMULATIVE,
        resulting_version="1.1.0",
        misc={"bin/domain.sh": b"domain-v2"},
    )

    result = tool.apply(second)

    assert result.patch_info.cumulative_id == "P2"
    assert result.patch_info.version == "1.1.0"
    assert result.patch_info.one_off_ids == ()
    current = tool.current_info()
    assert current.version == "1.1.0"
    assert current.cumulative_id == "P2"

    tool.rollback("P2")

    restored = tool.current_info()
    assert restored.cumulative_id == BASE
    assert restored.version == "1.0.0"
    assert restored.one_off_ids == ("P1",)
    assert installation.read("bin/domain.sh") == b"domain-v1"
    assert installation.read("bin/standalone.sh") == b"B"


def test_rolling_back_older_one_off_rolls_back_newer_ones(installation) -> None:
    tool = _tool(installation)
    _, first = installation.stage_patch(
        "P1",
        [_modify(installation, "bin/standalone.sh", b"A", b"B")],
        misc={"bin/standalone.sh": b"B"},
    )
    tool.apply(first)
    _, second = installation.stage_patch(
        "P2",
        [_modify(installation, "bin/standalone.sh", b"B", b"C")],
        misc={"bin/standalone.sh": b"C"},
    )
    tool.apply(second)
    assert tool.current_info().one_off_ids == ("P2", "P1")

    results = tool.rollback("P1")

    assert [result.patch_id for result in results] == ["P2", "P1"]
    assert installation.read("bin/standalone.sh") == b"A"
    assert tool.current_info().one_off_ids == ()


def test_apply_rejects_patch_for_other_version(installation) -> None:
    tool = _tool(installation)
    _, source = installation.stage_patch("P1", [], applies_to=["2.0.0"])

    with pytest.raises(InapplicablePatchError):
        tool.apply(source)

    assert not installation.structure.get_history_dir("P1").exists()


def test_apply_rejects_already_applied_patch(installation) -> None:
    tool = _tool(installation)
    _, source = installation.stage_patch(
        "P1",
        [_modify(installation, "bin/standalone.sh", b"A", b"B")],
        misc={"bin/standalone.sh": b"B"},
    )
    tool.apply(source)

    with pytest.raises(InapplicablePatchError):
        tool.apply(source)


def test_failed_apply_undoes_partial_changes(installation) -> None:
    tool = _tool(installation)
    _, source = installation.stage_patch(
        "P1",
        [
            _modify(installation, "bin/standalone.sh", b"A", b"B"),
            _modify(installation, "bin/domain.sh", b"unexpected", b"domain-v2"),
        ],
        misc={"bin/standalone.sh": b"B", "bin/domain.sh": b"domain-v2"},
    )

    with pytest.raises(ContentConflictError):
        tool.apply(source)

    assert installation.read("bin/standalone.sh") == b"A"
    assert installation.read("bin/domain.sh") == b"domain-v1"
    assert tool.current_info().one_off_ids == ()
    history = installation.structure.get_history_dir("P1")
    assert (history / "misc" / "bin" / "standalone.sh").read_bytes() == b"A"


def test_failed_apply_restores_modified_module_from_history(installation) -> None:
    tool = _tool(installation)
    module = installation.home / "modules" / "org" / "example" / "main"
    original = hash_path(module)
    _, source = installation.stage_patch(
        "P1",
        [
            ContentModification(type=ModificationType.MODIFY, item=ModuleItem(name="org.example"), existing_hash=original),
            _modify(installation, "bin/domain.sh", b"unexpected", b"domain-v2"),
        ],
        misc={"bin/domain.sh": b"domain-v2"},
        modules={"org/example/main": {"module.xml": b"<patched/>", "lib.jar": b"jar"}},
    )

    with pytest.raises(ContentConflictError):
        tool.apply(source)

    assert hash_path(module) == original
    assert not (module / "lib.jar").exists()
    assert tool.current_info().one_off_ids == ()


def test_override_policy_applies_over_local_changes(installation) -> None:
    tool = _tool(installation)
    installation.write("bin/standalone.sh", b"local")
    _, source = installation.stage_patch(
        "P1",
        [_modify(installation, "bin/standalone.sh", b"A", b"B")],
        misc={"bin/standalone.sh": b"B"},
    )

    tool.apply(source, ContentVerificationPolicy.selective(override=["bin/standalone.sh"]))
    assert installation.read("bin/standalone.sh") == b"B"

    tool.rollback("P1")
    assert installation.read("bin/standalone.sh") == b"local"


def test_apply_from_zip_archive(installation, tmp_path: Path) -> None:
    tool = _tool(installation)
    _, source = installation.stage_patch(
        "P1",
        [_modify(installation, "bin/standalone.sh", b"A", b"B")],
        misc={"bin/standalone.sh": b"B"},
    )
    archive = tmp_path / "P1.zip"
    with zipfile.ZipFile(archive, "w") as bundle:
        for path in sorted(source.rglob("*")):
            if path.is_file():
                bundle.write(path, path.relative_to(source).as_posix())

    tool.apply(archive)

    assert installation.read("bin/standalone.sh") == b"B"
    assert (installation.structure.get_patch_dir("P1") / "patch.yaml").is_file()


def test_rollback_of_unknown_patch_fails(installation) -> None:
    with pytest.raises(PatchingError):
        _tool(installation).rollback("missing")
    with pytest.raises(PatchingError):
        _tool(installation).rollback(BASE)
