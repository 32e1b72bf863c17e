"""Sync tools: push managed MCPs, skills, memory and hooks out to each AI tool."""

import logging

from mycelium.config import settings
from mycelium.core.conflicts import detect_conflicts, merge_configs
from mycelium.core.file_syncer import sync_files_to_dir
from mycelium.core.hooks_writer import HOOK_RENDERERS, managed_hooks, write_hooks_to_tool
from mycelium.core.injector import preview_mcps_for_tool, resolve_env_vars_in_mcps, write_mcps_to_tool
from mycelium.core.manifest import item_states, load_mcps_yaml
from mycelium.core.memory import sync_memory_to_tool
from mycelium.core.registry import get_descriptor, resolve_path, tools_with_capability
from mycelium.models import (
    FileSyncItem,
    FileSyncResult,
    McpServerConfig,
    SyncPreview,
    SyncStrategy,
    SyncWriteResult,
)

logger = logging.getLogger("mycelium.tools.sync")


def _targets(capability: str, tool_ids: list[str] | None) -> list[str]:
    if tool_ids is None:
        return [t.id for t in tools_with_capability(capability) if t.enabled]
    return [t for t in tool_ids if capability in get_descriptor(t).capabilities]


def load_merged_mcps() -> dict[str, McpServerConfig]:
    """Global mcps.yaml layered with the project's .mycelium/mcps.yaml."""
    global_mcps = load_mcps_yaml(settings.mcps_path)
    project_mcps = load_mcps_yaml(settings.project_dir / "mcps.yaml")

    for conflict in detect_conflicts({"mcps": global_mcps}, {"mcps": project_mcps}):
        logger.warning(conflict.message)

    return merge_configs({"mcps": global_mcps}, {"mcps": project_mcps}).mcps


async def sync_mcps(
    tool_ids: list[str] | None = None,
    env: dict[str, str] | None = None,
) -> list[SyncWriteResult]:
    """Write merged, env-resolved MCPs into every MCP-capable tool."""
    mcps = resolve_env_vars_in_mcps(load_merged_mcps(), env)
    results = []
    for tool_id in _targets("mcp", tool_ids):
        results.append(await write_mcps_to_tool(tool_id, mcps))
    return results


def preview_mcp_sync(tool_id: str, env: dict[str, str] | None = None) -> SyncPreview:
    """The MCP file sync_mcps would write for one tool, without writing it."""
    return preview_mcps_for_tool(tool_id, resolve_env_vars_in_mcps(load_merged_mcps(), env))


def managed_skill_items() -> list[FileSyncItem]:
    """Entries of global/skills/ with their manifest state."""
    if not settings.skills_dir.is_dir():
        return []
    states = item_states("skills")
    return [
        FileSyncItem(name=entry.name, path=str(entry), state=states.get(entry.name))
        for entry in sorted(settings.skills_dir.iterdir())
    ]


async def sync_skills(
    tool_ids: list[str] | None = None,
    strategy: SyncStrategy = "symlink",
    remove_orphans: bool = False,
) -> dict[str, FileSyncResult]:
    """Link (or copy) managed skills into each skill-capable tool's directory."""
    items = managed_skill_items()
    results: dict[str, FileSyncResult] = {}
    for tool_id in _targets("skills", tool_ids):
        target_dir = resolve_path(get_descriptor(tool_id).paths.skills)
        if target_dir is None:
            continue
        results[tool_id] = await sync_files_to_dir(items, target_dir, strategy, remove_orphans)
    return results


async def sync_memory(tool_ids: list[str] | None = None) -> list[SyncWriteResult]:
    """Write merged managed memory into each memory-capable tool."""
    results = []
    for tool_id in _targets("memory", tool_ids):
        if get_descriptor(tool_id).paths.global_memory is None:
            continue
        results.append(await sync_memory_to_tool(tool_id))
    return results


async def sync_hooks(tool_ids: list[str] | None = None) -> list[SyncWriteResult]:
    """Write enabled hooks.yaml entries into each tool that takes hooks.

    With no managed hooks nothing is written, so hooks set up directly
    in a tool survive until mycelium has some of its own.
    """
    hooks = managed_hooks()
    if not hooks:
        return []
    results = []
    for tool_id in _targets("hooks", tool_ids):
        if tool_id not in HOOK_RENDERERS:
            continue
        results.append(await write_hooks_to_tool(tool_id, hooks))
    return results
