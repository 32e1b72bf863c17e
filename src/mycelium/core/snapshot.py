"""Snapshots of the managed tree: create, restore, list, delete.

A snapshot copies the tracked config files, the memory/ tree and any real
(copied-in) skill directories, and records where each global/skills/
symlink pointed. Restoring puts the files back and re-creates the links
against their recorded targets.
"""

import logging
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from mycelium.config import settings
from mycelium.core.errors import IOFailure, InvalidNameError, NameConflictError, NotFoundError
from mycelium.models import SnapshotMetadata

logger = logging.getLogger("mycelium.snapshot")

SNAPSHOT_FILES = (
    "global/mcps.yaml",
    "global/hooks.yaml",
    "migration-manifest.json",
    "marketplaces.yaml",
    "manifest.yaml",
)

VALID_NAME = re.compile(r"^[A-Za-z0-9_-]+$")
METADATA_FILE = "metadata.json"


def _capture(src: Path, snap_dir: Path, file_list: list[str]) -> None:
    rel = src.relative_to(settings.home).as_posix()
    dest = snap_dir / rel
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(src, dest)
    file_list.append(rel)


def _copy_into(snap_dir: Path) -> tuple[list[str], dict[str, str]]:
    file_list: list[str] = []
    for rel in SNAPSHOT_FILES:
        src = settings.home / rel
        if src.is_file():
            _capture(src, snap_dir, file_list)

    if settings.memory_dir.is_dir():
        for src in sorted(settings.memory_dir.rglob("*")):
            if src.is_file():
                _capture(src, snap_dir, file_list)

    # Links are recorded by target; copied-in skills are captured as files
    skill_symlinks: dict[str, str] = {}
    if settings.skills_dir.is_dir():
        for entry in sorted(settings.skills_dir.iterdir()):
            if entry.is_symlink():
                skill_symlinks[entry.name] = str(entry.readlink())
            elif entry.is_dir():
                for src in sorted(entry.rglob("*")):
                    if src.is_file() and not src.is_symlink():
                        _capture(src, snap_dir, file_list)
            elif entry.is_file():
                _capture(entry, snap_dir, file_list)
    return file_list, skill_symlinks


async def create_snapshot(name: str, description: str | None = None) -> SnapshotMetadata:
    if not VALID_NAME.match(name):
        raise InvalidNameError(
            f'Invalid snapshot name "{name}": only letters, digits, "-" and "_" are allowed'
        )
    snap_dir = settings.snapshot_dir(name)
    if snap_dir.exists():
        raise NameConflictError(f'Snapshot "{name}" already exists')
    snap_dir.mkdir(parents=True)

    try:
        file_list, skill_symlinks = _copy_into(snap_dir)
    except OSError as e:
        shutil.rmtree(snap_dir, ignore_errors=True)
        raise IOFailure(f'Failed to create snapshot "{name}": {e}') from e

    metadata = SnapshotMetadata(
        name=name,
        created_at=datetime.now(timezone.utc).isoformat(),
        description=description,
        file_list=file_list,
        skill_symlinks=skill_symlinks,
    )
    (snap_dir / METADATA_FILE).write_text(
        metadata.model_dump_json(indent=2, by_alias=True, exclude_none=True),
        encoding="utf-8",
    )
    logger.info(
        "Created snapshot %s (%d files, %d skill links)", name, len(file_list), len(skill_symlinks)
    )
    return metadata


def _load_metadata(name: str) -> SnapshotMetadata:
    meta_path = settings.snapshot_dir(name) / METADATA_FILE
    if not meta_path.is_file():
        raise NotFoundError(f'Snapshot "{name}" not found')
    return SnapshotMetadata.model_validate_json(meta_path.read_text(encoding="utf-8"))


async def restore_snapshot(name: str) -> SnapshotMetadata:
    """Replace the managed files, memory/ and skill links with the snapshot's."""
    metadata = _load_metadata(name)
    snap_dir = settings.snapshot_dir(name)

    for rel in SNAPSHOT_FILES:
        (settings.home / rel).unlink(missing_ok=True)
    shutil.rmtree(settings.memory_dir, ignore_errors=True)
    shutil.rmtree(settings.skills_dir, ignore_errors=True)

    try:
        for rel in metadata.file_list:
            src = snap_dir / rel
            dest = settings.home / rel
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(src, dest)

        settings.skills_dir.mkdir(parents=True, exist_ok=True)
        for link_name, target in metadata.skill_symlinks.items():
            (settings.skills_dir / link_name).symlink_to(target)
    except OSError as e:
        raise IOFailure(f'Failed to restore snapshot "{name}": {e}') from e

    logger.info("Restored snapshot %s", name)
    return metadata


async def list_snapshots() -> list[SnapshotMetadata]:
    """All readable snapshots, newest first."""
    if not settings.snapshots_dir.is_dir():
        return []
    results = []
    for entry in settings.snapshots_dir.iterdir():
        meta_path = entry / METADATA_FILE
        if not meta_path.is_file():
            continue
        try:
            results.append(SnapshotMetadata.model_validate_json(meta_path.read_text(encoding="utf-8")))
        except (OSError, ValidationError) as e:
            logger.warning("Skipping unreadable snapshot %s: %s", entry.name, e)
    results.sort(key=lambda m: m.created_at, reverse=True)
    return results


async def delete_snapshot(name: str) -> None:
    snap_dir = settings.snapshot_dir(name)
    if not snap_dir.is_dir():
        raise NotFoundError(f'Snapshot "{name}" not found')
    shutil.rmtree(snap_dir)
    logger.info("Deleted snapshot %s", name)
