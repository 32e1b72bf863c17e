"""Tool config backups.

Before a tool file is rewritten its current content is copied to
``<file>.mycelium-backup`` beside it. restore_backups() puts every such
copy back and removes it.
"""

import logging
import shutil
from pathlib import Path

from mycelium.core.registry import TOOL_REGISTRY, expand_path, resolve_path
from mycelium.models import BackupRestoreResult

logger = logging.getLogger("mycelium.backup")

BACKUP_SUFFIX = ".mycelium-backup"


def backup_path_for(path: Path) -> Path:
    return path.with_name(path.name + BACKUP_SUFFIX)


def backup_config(path: Path) -> Path | None:
    """Copy ``path`` to its backup file. None when there is nothing to back up."""
    if not path.is_file():
        return None
    backup = backup_path_for(path)
    shutil.copy2(path, backup)
    logger.debug("Backed up %s to %s", path, backup.name)
    return backup


def _backup_dirs() -> list[Path]:
    dirs: list[Path] = []
    for desc in TOOL_REGISTRY.values():
        candidates = [expand_path(d) for d in desc.paths.backup_dirs]
        for path_spec in (desc.paths.mcp, desc.paths.hooks):
            resolved = resolve_path(path_spec)
            if resolved is not None:
                candidates.append(resolved.parent)
        for directory in candidates:
            if directory not in dirs:
                dirs.append(directory)
    return dirs


def restore_backups(dirs: list[Path] | None = None) -> BackupRestoreResult:
    """Copy every ``*.mycelium-backup`` in the tool directories back over its original."""
    result = BackupRestoreResult()
    for directory in dirs if dirs is not None else _backup_dirs():
        if not directory.is_dir():
            continue
        for backup in sorted(directory.glob("*" + BACKUP_SUFFIX)):
            original = backup.with_name(backup.name[: -len(BACKUP_SUFFIX)])
            try:
                shutil.copy2(backup, original)
                backup.unlink()
            except OSError as e:
                result.errors.append(f"Failed to restore {original}: {e}")
                continue
            result.restored.append(str(original))
    logger.info("Restored %d config backup(s), %d error(s)", len(result.restored), len(result.errors))
    return result
