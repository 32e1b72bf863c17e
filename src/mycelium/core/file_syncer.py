"""Sync item files into a tool directory by symlink or copy.

Enabled items are linked (or copied) under their basename; disabled and
deleted items are removed. With ``remove_orphans`` any entry whose stem
matches no known item is removed too. Under the symlink strategy only
symlinks are ever deleted, so files a user placed by hand are safe.
"""

import logging
import shutil
from pathlib import Path
from typing import Literal

from mycelium.models import FileSyncError, FileSyncItem, FileSyncResult, SyncStrategy

logger = logging.getLogger("mycelium.file_syncer")

SyncAction = Literal["created", "updated", "unchanged"]


def _unlink_any(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def sync_symlink(source: Path, target: Path) -> SyncAction:
    if not target.is_symlink() and not target.exists():
        target.symlink_to(source)
        return "created"

    if target.is_symlink():
        if target.readlink() == source:
            return "unchanged"
        target.unlink()
        target.symlink_to(source)
        return "updated"

    # A real file or directory occupies the slot
    _unlink_any(target)
    target.symlink_to(source)
    return "updated"


def sync_copy(source: Path, target: Path) -> SyncAction:
    if not target.exists():
        action: SyncAction = "created"
    elif source.stat().st_mtime > target.stat().st_mtime:
        action = "updated"
    else:
        return "unchanged"

    if source.is_dir():
        shutil.copytree(source, target, dirs_exist_ok=True)
    else:
        shutil.copy2(source, target)
    return action


def try_remove(target: Path, strategy: SyncStrategy) -> bool:
    """Remove ``target`` if present; symlink mode leaves non-links alone.

    Returns whether anything was removed. OSError from the removal propagates.
    """
    if not target.is_symlink() and not target.exists():
        return False
    if strategy == "symlink" and not target.is_symlink():
        return False
    _unlink_any(target)
    return True


def _remove_into(result: FileSyncResult, name: str, target: Path, strategy: SyncStrategy) -> None:
    try:
        removed = try_remove(target, strategy)
    except OSError as e:
        logger.warning("Could not remove %s: %s", target, e)
        result.success = False
        result.errors.append(FileSyncError(item=name, error=str(e)))
        return
    if removed:
        result.removed.append(name)


def _remove_orphans(
    target_dir: Path,
    item_names: set[str],
    strategy: SyncStrategy,
    result: FileSyncResult,
) -> None:
    for entry in sorted(target_dir.iterdir()):
        if Path(entry.name).stem in item_names:
            continue
        _remove_into(result, entry.name, entry, strategy)


async def sync_files_to_dir(
    items: list[FileSyncItem],
    target_dir: Path,
    strategy: SyncStrategy = "symlink",
    remove_orphans: bool = False,
) -> FileSyncResult:
    result = FileSyncResult()
    target_dir.mkdir(parents=True, exist_ok=True)

    for item in items:
        source = Path(item.path)
        target = target_dir / source.name

        if not item.is_enabled:
            _remove_into(result, item.name, target, strategy)
            continue

        try:
            action = sync_symlink(source, target) if strategy == "symlink" else sync_copy(source, target)
        except OSError as e:
            logger.warning("Failed to sync %s into %s: %s", item.name, target_dir, e)
            result.success = False
            result.errors.append(FileSyncError(item=item.name, error=str(e)))
            continue

        getattr(result, action).append(item.name)

    if remove_orphans:
        _remove_orphans(target_dir, {i.name for i in items}, strategy, result)

    logger.info(
        "Synced %s (%s): %d created, %d updated, %d removed, %d unchanged, %d error(s)",
        target_dir, strategy, len(result.created), len(result.updated),
        len(result.removed), len(result.unchanged), len(result.errors),
    )
    return result
