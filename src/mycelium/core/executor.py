"""Migration executor: apply a MigrationPlan to the managed tree, or undo one.

Skills are linked into global/skills/, MCPs merged into global/mcps.yaml,
memory copied into memory/ and hooks merged into global/hooks.yaml. Each
item is independent: a failure is logged and recorded in
``MigrationResult.errors`` and the rest of the plan still runs.
"""

import logging
import shutil
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path

from mycelium.config import settings
from mycelium.core.errors import MyceliumError, UnresolvedConflictError
from mycelium.core.manifest import (
    load_hooks_yaml,
    load_migration_manifest,
    load_mcps_yaml,
    merge_manifest_entries,
    register_marketplaces,
    save_hooks_yaml,
    save_migration_manifest,
    save_mcps_yaml,
    write_hooks_yaml,
)
from mycelium.core.tracer import TraceLogger
from mycelium.models import (
    ClearResult,
    MigrationManifest,
    MigrationManifestEntry,
    MigrationPlan,
    MigrationResult,
    ScannedSkill,
)

logger = logging.getLogger("mycelium.executor")


def _link_or_copy(source: Path, dest: Path) -> None:
    """Point ``dest`` at ``source``; copy when the platform refuses symlinks."""
    if dest.is_symlink() or dest.is_file():
        dest.unlink()
    elif dest.is_dir():
        shutil.rmtree(dest)
    try:
        dest.symlink_to(source)
    except (OSError, NotImplementedError):
        logger.info("Symlink unavailable, copying %s", source)
        if source.is_dir():
            shutil.copytree(source, dest)
        else:
            shutil.copy2(source, dest)


def _skill_names(skills: list[ScannedSkill], strategy: str) -> list[str]:
    """Managed names per skill; in ``all`` mode duplicates become name@source."""
    if strategy != "all":
        return [s.name for s in skills]
    counts = Counter(s.name for s in skills)
    return [f"{s.name}@{s.source}" if counts[s.name] > 1 else s.name for s in skills]


async def execute_migration(plan: MigrationPlan, trace: TraceLogger | None = None) -> MigrationResult:
    """Import everything in ``plan`` into the managed tree.

    Raises UnresolvedConflictError, before anything is written, when an
    interactive plan still has conflicts without a chosen entry.
    """
    if plan.strategy == "interactive" and plan.unresolved:
        raise UnresolvedConflictError([f"{c.type}:{c.name}" for c in plan.unresolved])

    now = datetime.now(timezone.utc).isoformat()
    result = MigrationResult(success=True, conflicts=plan.conflicts)
    entries: list[MigrationManifestEntry] = []

    def fail(scope: str, name: str, err: Exception) -> None:
        msg = f"Failed to import {scope} {name}: {err}"
        logger.warning(msg)
        result.errors.append(msg)
        if trace:
            trace.error(scope, "import", msg, item=name)

    settings.skills_dir.mkdir(parents=True, exist_ok=True)
    settings.memory_dir.mkdir(parents=True, exist_ok=True)

    # Skills
    for skill, managed_name in zip(plan.skills, _skill_names(plan.skills, plan.strategy)):
        dest = settings.skills_dir / managed_name
        try:
            _link_or_copy(Path(skill.path), dest)
        except OSError as e:
            fail("skill", managed_name, e)
            continue
        result.skills_imported += 1
        entries.append(MigrationManifestEntry(
            name=managed_name,
            type="skill",
            source=skill.source,
            original_path=skill.path,
            imported_path=str(dest),
            imported_at=now,
            version=skill.version,
            strategy=plan.strategy,
            marketplace=skill.marketplace,
            plugin_name=skill.plugin_name,
        ))
        if trace:
            trace.debug("skill", "link", f"{managed_name} -> {skill.path}", item=managed_name)

    # MCPs
    if plan.mcps:
        try:
            merged = load_mcps_yaml()
            for mcp in plan.mcps:
                config = mcp.config.model_copy()
                config.source = config.source or mcp.source
                merged[mcp.name] = config
            save_mcps_yaml(merged)
        except (OSError, MyceliumError) as e:
            fail("mcp", "mcps.yaml", e)
        else:
            result.mcps_imported = len(plan.mcps)
            for mcp in plan.mcps:
                entries.append(MigrationManifestEntry(
                    name=mcp.name,
                    type="mcp",
                    source=mcp.source,
                    imported_path=str(settings.mcps_path),
                    imported_at=now,
                    strategy=plan.strategy,
                ))

    # Memory
    for mem in plan.memory:
        dest = settings.memory_dir / f"{mem.source}-{mem.name}.md"
        try:
            if mem.content is not None:
                dest.write_text(mem.content, encoding="utf-8")
            else:
                shutil.copyfile(mem.path, dest)
        except OSError as e:
            fail("memory", mem.name, e)
            continue
        result.memory_imported += 1
        entries.append(MigrationManifestEntry(
            name=mem.name,
            type="memory",
            source=mem.source,
            original_path=mem.path,
            imported_path=str(dest),
            imported_at=now,
            strategy=plan.strategy,
        ))

    # Hooks
    if plan.hooks:
        try:
            write_hooks_yaml(plan.hooks)
        except (OSError, MyceliumError) as e:
            fail("hook", "hooks.yaml", e)
        else:
            result.hooks_imported = len(plan.hooks)
            for hook in plan.hooks:
                entries.append(MigrationManifestEntry(
                    name=hook.name,
                    type="hook",
                    source=hook.source,
                    original_path=hook.path or "",
                    imported_path=str(settings.hooks_path),
                    imported_at=now,
                    strategy=plan.strategy,
                ))

    marketplaces = {s.marketplace for s in plan.skills if s.marketplace}
    if marketplaces:
        try:
            register_marketplaces(marketplaces)
        except (OSError, MyceliumError) as e:
            logger.warning("Could not update marketplace registry: %s", e)

    try:
        previous = load_migration_manifest().entries
    except (OSError, MyceliumError) as e:
        logger.warning("Replacing unreadable migration manifest: %s", e)
        previous = []
    result.manifest = MigrationManifest(last_migration=now, entries=merge_manifest_entries(previous, entries))
    try:
        save_migration_manifest(result.manifest)
    except OSError as e:
        msg = f"Failed to write {settings.migration_manifest_path.name}: {e}"
        logger.warning(msg)
        result.errors.append(msg)
    result.success = not result.errors

    logger.info(
        "Migration done: %d skills, %d mcps, %d memory, %d hooks, %d error(s)",
        result.skills_imported, result.mcps_imported, result.memory_imported,
        result.hooks_imported, len(result.errors),
    )
    if trace:
        trace.info(
            "migrate", "execute", "Migration applied",
            skills=result.skills_imported, mcps=result.mcps_imported,
            memory=result.memory_imported, hooks=result.hooks_imported,
            errors=len(result.errors),
        )
    return result


def _remove_path(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)
    else:
        raise FileNotFoundError(f"No such file or directory: '{path}'")


async def clear_migration(tool_id: str | None = None) -> ClearResult:
    """Undo migrated state: everything, or only entries imported from ``tool_id``."""
    result = ClearResult()

    if tool_id is None:
        for directory in (settings.skills_dir, settings.memory_dir):
            if directory.exists():
                try:
                    shutil.rmtree(directory)
                    result.cleared.append(str(directory))
                except OSError as e:
                    result.errors.append(f"Failed to remove {directory}: {e}")
        for path in (settings.mcps_path, settings.hooks_path, settings.migration_manifest_path):
            if path.exists():
                try:
                    path.unlink()
                    result.cleared.append(str(path))
                except OSError as e:
                    result.errors.append(f"Failed to remove {path}: {e}")
        logger.info("Cleared all migrated state (%d path(s))", len(result.cleared))
        return result

    manifest = load_migration_manifest()
    to_remove = [e for e in manifest.entries if e.source == tool_id]
    remaining = [e for e in manifest.entries if e.source != tool_id]

    mcp_names = {e.name for e in to_remove if e.type == "mcp"}
    hook_names = {e.name for e in to_remove if e.type == "hook"}

    for entry in to_remove:
        if entry.type in ("mcp", "hook"):
            continue
        try:
            _remove_path(Path(entry.imported_path))
            result.cleared.append(entry.imported_path)
        except OSError as e:
            result.errors.append(f"Failed to remove {entry.imported_path}: {e}")

    # Shared YAML stores lose only this tool's entries
    if mcp_names:
        try:
            mcps = load_mcps_yaml()
            save_mcps_yaml({n: c for n, c in mcps.items() if n not in mcp_names})
            result.cleared.extend(f"mcp:{n}" for n in sorted(mcp_names))
        except (OSError, MyceliumError) as e:
            result.errors.append(f"Failed to update {settings.mcps_path}: {e}")
    if hook_names:
        try:
            hooks = load_hooks_yaml()
            save_hooks_yaml({n: h for n, h in hooks.items() if n not in hook_names})
            result.cleared.extend(f"hook:{n}" for n in sorted(hook_names))
        except (OSError, MyceliumError) as e:
            result.errors.append(f"Failed to update {settings.hooks_path}: {e}")

    manifest.entries = remaining
    manifest.last_migration = datetime.now(timezone.utc).isoformat()
    save_migration_manifest(manifest)

    logger.info("Cleared %d item(s) imported from %s", len(result.cleared), tool_id)
    return result
