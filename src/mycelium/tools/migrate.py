"""Migration tools: scan installed tools, plan, apply, and clear."""

import logging
from datetime import datetime, timezone

from mycelium.core.executor import clear_migration, execute_migration
from mycelium.core.manifest import upgrade_manifest_file
from mycelium.core.planner import generate_migration_plan, resolve_conflict
from mycelium.core.scanners import scan_all_tools
from mycelium.core.snapshot import create_snapshot
from mycelium.core.tracer import Tracer
from mycelium.models import ClearResult, ConflictStrategy, MigrationPlan, MigrationResult, ToolScanResult

logger = logging.getLogger("mycelium.tools.migrate")


async def scan_tools(tool_ids: list[str] | None = None) -> list[ToolScanResult]:
    """Scan the given tools, or every installed one."""
    return await scan_all_tools(tool_ids)


async def plan_migration(
    strategy: ConflictStrategy = "latest",
    tool_ids: list[str] | None = None,
) -> MigrationPlan:
    """Scan and build a migration plan without touching the managed tree."""
    scans = await scan_all_tools(tool_ids)
    return generate_migration_plan(scans, strategy)


async def apply_migration(
    strategy: ConflictStrategy = "latest",
    tool_ids: list[str] | None = None,
    resolutions: dict[str, str] | None = None,
    plan: MigrationPlan | None = None,
    snapshot: bool = True,
) -> MigrationResult:
    """Scan, plan and import into the managed tree.

    Args:
        strategy: Conflict strategy used when ``plan`` is not given
        tool_ids: Tools to scan (default: every installed one)
        resolutions: ``"type:name" -> source`` choices for conflicts
        plan: A prepared plan; skips scanning
        snapshot: Take a ``pre-migrate-<timestamp>`` snapshot first

    Returns:
        MigrationResult with counts, conflicts and per-item errors.
    """
    await upgrade_manifest_file()

    if plan is None:
        plan = await plan_migration(strategy, tool_ids)
    for key, source in (resolutions or {}).items():
        item_type, _, name = key.partition(":")
        resolve_conflict(plan, item_type, name, source)

    if snapshot:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        await create_snapshot(f"pre-migrate-{stamp}", description="Automatic snapshot before migration")

    with Tracer() as tracer:
        trace = tracer.create_trace("migrate")
        result = await execute_migration(plan, trace=trace)

    if result.errors:
        logger.warning("Migration finished with %d error(s)", len(result.errors))
    return result


async def clear(tool_id: str | None = None) -> ClearResult:
    """Remove migrated state, for all tools or just ``tool_id``."""
    return await clear_migration(tool_id)
