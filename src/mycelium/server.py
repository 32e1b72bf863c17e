"""mycelium MCP server.

Exposes the sync engine to AI agents:
- scan_tools: What each installed AI tool has (skills, MCPs, memory, hooks)
- plan_migration: Preview a migration and its conflicts
- apply_migration: Import everything into ~/.mycelium (snapshot first)
- clear_migration: Undo a migration, fully or for one tool
- sync: Push managed MCPs, skills, memory and hooks out to every tool
- preview_sync: Show the MCP config a sync would write for one tool
- restore_config_backups: Put back tool configs saved before the last writes
- check_conflicts: Global vs project MCP/skill disagreements
- create_snapshot / restore_snapshot / list_snapshots / delete_snapshot
"""

import json
import logging

from mcp.server.fastmcp import FastMCP

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

mcp = FastMCP(
    "mycelium",
    instructions=(
        "Mycelium keeps skills, MCP servers, memory and hooks in sync across AI coding tools "
        "(Claude Code, Codex, Gemini CLI, OpenCode, OpenClaw, Aider, Cursor, VS Code, Antigravity). "
        "Use plan_migration to preview what would be imported, then apply_migration. "
        "With strategy='interactive', pass resolutions for every conflict. "
        "Use sync to write the managed config back out to each tool."
    ),
)


def _split(values: str) -> list[str] | None:
    items = [v.strip() for v in values.split(",") if v.strip()]
    return items or None


@mcp.tool()
async def scan_tools(tools: str = "") -> str:
    """Scan installed AI tools for skills, MCP servers, memory files and hooks.

    Args:
        tools: Comma-separated tool ids (default: every installed tool)
    """
    from mycelium.tools.migrate import scan_tools as _scan

    results = await _scan(_split(tools))
    return json.dumps([r.model_dump(mode="json") for r in results], indent=2)


@mcp.tool()
async def plan_migration(strategy: str = "latest", tools: str = "") -> str:
    """Preview a migration: what would be imported and which names conflict.

    Args:
        strategy: "latest" (newest wins), "all" (keep every copy), or "interactive"
        tools: Comma-separated tool ids (default: every installed tool)
    """
    from mycelium.tools.migrate import plan_migration as _plan

    plan = await _plan(strategy=strategy, tool_ids=_split(tools))
    return json.dumps(plan.model_dump(mode="json"), indent=2)


@mcp.tool()
async def apply_migration(strategy: str = "latest", tools: str = "", resolutions: str = "{}") -> str:
    """Import tool configs into ~/.mycelium. A snapshot is taken first.

    Args:
        strategy: "latest", "all", or "interactive"
        tools: Comma-separated tool ids (default: every installed tool)
        resolutions: JSON object mapping "type:name" to the chosen source tool,
            e.g. {"mcp:git-mcp": "codex"}. Required for interactive conflicts.
    """
    from mycelium.core.errors import MyceliumError
    from mycelium.tools.migrate import apply_migration as _apply

    try:
        result = await _apply(
            strategy=strategy,
            tool_ids=_split(tools),
            resolutions=json.loads(resolutions or "{}"),
        )
    except MyceliumError as e:
        return json.dumps({"success": False, "error": str(e)}, indent=2)
    return json.dumps(result.model_dump(mode="json"), indent=2)


@mcp.tool()
async def clear_migration(tool: str = "") -> str:
    """Remove migrated state from ~/.mycelium.

    Args:
        tool: Only clear items imported from this tool id (default: everything)
    """
    from mycelium.tools.migrate import clear as _clear

    result = await _clear(tool or None)
    return json.dumps(result.model_dump(), indent=2)


@mcp.tool()
async def sync(tools: str = "", strategy: str = "symlink") -> str:
    """Write managed MCPs, skills, memory and hooks into each AI tool's native config.

    Args:
        tools: Comma-separated tool ids (default: every tool with the capability)
        strategy: "symlink" or "copy" for skills
    """
    from mycelium.tools.sync import sync_hooks, sync_mcps, sync_memory, sync_skills

    tool_ids = _split(tools)
    mcps = await sync_mcps(tool_ids)
    skills = await sync_skills(tool_ids, strategy=strategy)
    memory = await sync_memory(tool_ids)
    hooks = await sync_hooks(tool_ids)
    return json.dumps(
        {
            "mcps": [r.model_dump() for r in mcps],
            "skills": {tool_id: r.model_dump() for tool_id, r in skills.items()},
            "memory": [r.model_dump() for r in memory],
            "hooks": [r.model_dump() for r in hooks],
        },
        indent=2,
    )


@mcp.tool()
async def preview_sync(tool: str) -> str:
    """Show a tool's MCP config as it is now and as sync would write it. Nothing is written.

    Args:
        tool: Tool id, e.g. "claude-code"
    """
    from mycelium.core.errors import MyceliumError
    from mycelium.tools.sync import preview_mcp_sync

    try:
        preview = preview_mcp_sync(tool)
    except MyceliumError as e:
        return json.dumps({"success": False, "error": str(e)}, indent=2)
    return json.dumps(preview.model_dump(), indent=2)


@mcp.tool()
async def restore_config_backups() -> str:
    """Put back every tool config saved as .mycelium-backup before sync rewrote it."""
    from mycelium.core.backup import restore_backups

    return json.dumps(restore_backups().model_dump(), indent=2)


@mcp.tool()
async def check_conflicts() -> str:
    """List MCPs and skills defined differently in global and project config."""
    from mycelium.config import settings
    from mycelium.core.conflicts import detect_conflicts
    from mycelium.core.manifest import load_mcps_yaml

    conflicts = detect_conflicts(
        {"mcps": load_mcps_yaml(settings.mcps_path)},
        {"mcps": load_mcps_yaml(settings.project_dir / "mcps.yaml")},
    )
    return json.dumps([c.model_dump() for c in conflicts], indent=2)


@mcp.tool()
async def create_snapshot(name: str, description: str = "") -> str:
    """Snapshot the managed config (mcps, hooks, memory, skill links).

    Args:
        name: Letters, digits, "-" and "_" only
        description: Optional note
    """
    from mycelium.core.errors import MyceliumError
    from mycelium.core.snapshot import create_snapshot as _create

    try:
        meta = await _create(name, description or None)
    except MyceliumError as e:
        return json.dumps({"success": False, "error": str(e)}, indent=2)
    return json.dumps(meta.model_dump(by_alias=True), indent=2)


@mcp.tool()
async def restore_snapshot(name: str) -> str:
    """Restore the managed config from a snapshot.

    Args:
        name: Snapshot name
    """
    from mycelium.core.errors import MyceliumError
    from mycelium.core.snapshot import restore_snapshot as _restore

    try:
        meta = await _restore(name)
    except MyceliumError as e:
        return json.dumps({"success": False, "error": str(e)}, indent=2)
    return json.dumps({"success": True, "restored": meta.file_list}, indent=2)


@mcp.tool()
async def list_snapshots() -> str:
    """List snapshots, newest first."""
    from mycelium.core.snapshot import list_snapshots as _list

    return json.dumps([m.model_dump(by_alias=True) for m in await _list()], indent=2)


@mcp.tool()
async def delete_snapshot(name: str) -> str:
    """Delete a snapshot.

    Args:
        name: Snapshot name
    """
    from mycelium.core.errors import MyceliumError
    from mycelium.core.snapshot import delete_snapshot as _delete

    try:
        await _delete(name)
    except MyceliumError as e:
        return json.dumps({"success": False, "error": str(e)}, indent=2)
    return json.dumps({"success": True}, indent=2)


def main():
    """Entry point for the MCP server."""
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
