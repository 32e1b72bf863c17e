"""Migration planner: turn scan results into a MigrationPlan.

Items are grouped by name within each type. A name found in more than
one tool is a conflict, resolved according to the plan's strategy:

- ``latest``: the most recently updated entry wins and is the only one
  imported. Missing timestamps and ties keep scan order.
- ``all``: every entry is imported; the executor disambiguates names.
- ``interactive``: nothing is imported for that name until the caller
  picks a source with resolve_conflict().
"""

import logging
from datetime import datetime, timezone

from mycelium.core.conflicts import deep_equal
from mycelium.core.errors import NotFoundError
from mycelium.models import (
    ConflictEntry,
    ConflictStrategy,
    MigrationConflict,
    MigrationPlan,
    ScannedMcp,
    ToolScanResult,
)

logger = logging.getLogger("mycelium.planner")

_PLAN_FIELDS = {"skill": "skills", "mcp": "mcps", "memory": "memory"}
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _collapse_identical_mcps(mcps: list[ScannedMcp]) -> list[ScannedMcp]:
    """Drop MCPs whose name and config match an earlier one from another tool."""
    kept: list[ScannedMcp] = []
    for mcp in mcps:
        if any(k.name == mcp.name and deep_equal(k.config, mcp.config) for k in kept):
            continue
        kept.append(mcp)
    return kept


def _group_by_name(items: list[ConflictEntry]) -> dict[str, list[ConflictEntry]]:
    groups: dict[str, list[ConflictEntry]] = {}
    for item in items:
        groups.setdefault(item.name, []).append(item)
    return groups


def _newest(entries: list[ConflictEntry]) -> ConflictEntry:
    # max() keeps the first of equal keys, so ties fall back to scan order
    return max(entries, key=lambda e: e.last_updated or _EPOCH)


def generate_migration_plan(
    scans: list[ToolScanResult],
    strategy: ConflictStrategy = "latest",
) -> MigrationPlan:
    plan = MigrationPlan(strategy=strategy)

    collected: dict[str, list[ConflictEntry]] = {"skill": [], "mcp": [], "memory": []}
    for scan in scans:
        collected["skill"].extend(scan.skills)
        collected["mcp"].extend(scan.mcps)
        collected["memory"].extend(scan.memory)
        plan.hooks.extend(scan.hooks)
    collected["mcp"] = _collapse_identical_mcps(collected["mcp"])

    for item_type, items in collected.items():
        target = getattr(plan, _PLAN_FIELDS[item_type])
        for name, group in _group_by_name(items).items():
            if len(group) == 1:
                target.append(group[0])
                continue

            conflict = MigrationConflict(name=name, type=item_type, entries=group)
            if strategy == "latest":
                conflict.resolved = _newest(group)
                target.append(conflict.resolved)
            elif strategy == "all":
                target.extend(group)
            plan.conflicts.append(conflict)

    logger.info(
        "Plan (%s): %d skills, %d mcps, %d memory, %d hooks, %d conflict(s)",
        strategy, len(plan.skills), len(plan.mcps), len(plan.memory),
        len(plan.hooks), len(plan.conflicts),
    )
    return plan


def resolve_conflict(plan: MigrationPlan, item_type: str, name: str, source: str) -> MigrationPlan:
    """Pick ``source``'s entry for a conflict and add it to the plan.

    Re-resolving replaces the previously chosen entry.
    """
    conflict = next(
        (c for c in plan.conflicts if c.type == item_type and c.name == name),
        None,
    )
    if conflict is None:
        raise NotFoundError(f"No {item_type} conflict named {name!r}")

    chosen = next((e for e in conflict.entries if e.source == source), None)
    if chosen is None:
        raise NotFoundError(f"Conflict {name!r} has no entry from {source!r}")

    target = getattr(plan, _PLAN_FIELDS[item_type])
    if conflict.resolved is not None and conflict.resolved in target:
        target.remove(conflict.resolved)
    conflict.resolved = chosen
    target.append(chosen)
    return plan
