"""Snapshot create / restore / list / delete."""

import asyncio
import json
import shutil

import pytest

from mycelium.config import settings
from mycelium.core.errors import IOFailure, InvalidNameError, NameConflictError, NotFoundError
from mycelium.core.snapshot import create_snapshot, delete_snapshot, list_snapshots, restore_snapshot


def _populate(env):
    settings.global_dir.mkdir(parents=True)
    settings.mcps_path.write_bytes(b"git:\n  command: npx\n")
    settings.hooks_path.write_bytes(b"hooks: {}\n")
    (settings.memory_dir / "nested").mkdir(parents=True)
    (settings.memory_dir / "codex-AGENTS.md").write_bytes(b"rules\r\nmore\n")
    (settings.memory_dir / "nested" / "deep.md").write_bytes(b"deep\n")
    settings.skills_dir.mkdir()
    target = env.tmp / "skill-src" / "tdd"
    target.mkdir(parents=True)
    (settings.skills_dir / "tdd").symlink_to(target)
    return target


def test_roundtrip_after_originals_deleted(env):
    """Restore brings back files, memory and skill links after they change."""
    target = _populate(env)
    meta = asyncio.run(create_snapshot("before-change", "test"))

    assert sorted(meta.file_list) == [
        "global/hooks.yaml", "global/mcps.yaml", "memory/codex-AGENTS.md", "memory/nested/deep.md",
    ]
    raw = json.loads((settings.snapshot_dir("before-change") / "metadata.json").read_text())
    assert raw["skillSymlinks"] == {"tdd": str(target)}
    assert "createdAt" in raw

    settings.mcps_path.write_text("changed")
    settings.hooks_path.unlink()
    shutil.rmtree(settings.memory_dir)
    (settings.skills_dir / "tdd").unlink()
    (settings.skills_dir / "extra").symlink_to(env.tmp)

    asyncio.run(restore_snapshot("before-change"))

    assert settings.mcps_path.read_bytes() == b"git:\n  command: npx\n"
    assert settings.hooks_path.read_bytes() == b"hooks: {}\n"
    assert (settings.memory_dir / "codex-AGENTS.md").read_bytes() == b"rules\r\nmore\n"
    assert (settings.memory_dir / "nested" / "deep.md").read_bytes() == b"deep\n"
    assert (settings.skills_dir / "tdd").readlink() == target
    assert not (settings.skills_dir / "extra").exists()


def test_invalid_and_duplicate_names(env):
    """Bad names and existing names are refused."""
    for bad in ("has space", "a/b", "", "../x"):
        with pytest.raises(InvalidNameError):
            asyncio.run(create_snapshot(bad))
    asyncio.run(create_snapshot("ok_name-1"))
    with pytest.raises(NameConflictError):
        asyncio.run(create_snapshot("ok_name-1"))


def test_missing_snapshot(env):
    """Restoring or deleting an unknown snapshot raises NotFoundError."""
    with pytest.raises(NotFoundError):
        asyncio.run(restore_snapshot("nope"))
    with pytest.raises(NotFoundError):
        asyncio.run(delete_snapshot("nope"))


def test_list_newest_first_and_delete(env):
    """Snapshots list newest first and can be deleted."""
    asyncio.run(create_snapshot("first"))
    asyncio.run(create_snapshot("second"))
    meta_path = settings.snapshot_dir("first") / "metadata.json"
    data = json.loads(meta_path.read_text())
    data["createdAt"] = "2000-01-01T00:00:00+00:00"
    meta_path.write_text(json.dumps(data))

    assert [m.name for m in asyncio.run(list_snapshots())] == ["second", "first"]

    asyncio.run(delete_snapshot("second"))
    assert [m.name for m in asyncio.run(list_snapshots())] == ["first"]


def test_list_without_snapshots(env):
    """No snapshots directory means an empty list."""
    assert asyncio.run(list_snapshots()) == []


def test_restore_with_missing_file_raises_io_failure(env):
    """A snapshot missing a recorded file fails with IOFailure."""
    _populate(env)
    asyncio.run(create_snapshot("broken"))
    (settings.snapshot_dir("broken") / "global" / "mcps.yaml").unlink()

    with pytest.raises(IOFailure):
        asyncio.run(restore_snapshot("broken"))


def test_copied_skill_dirs_survive_restore(env):
    """Skills imported as real directories are captured and restored, not just deleted."""
    copied = settings.skills_dir / "copied-skill"
    (copied / "refs").mkdir(parents=True)
    (copied / "SKILL.md").write_text("# Copied\n")
    (copied / "refs" / "notes.md").write_text("notes\n")

    meta = asyncio.run(create_snapshot("with-copies"))
    assert "global/skills/copied-skill/SKILL.md" in meta.file_list

    shutil.rmtree(copied)
    asyncio.run(restore_snapshot("with-copies"))

    assert (copied / "SKILL.md").read_text() == "# Copied\n"
    assert (copied / "refs" / "notes.md").read_text() == "notes\n"
    assert not copied.is_symlink()
