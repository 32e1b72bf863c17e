"""Migration planner and executor."""

import asyncio
import json
from datetime import datetime, timezone

import pytest
import yaml

from mycelium.config import settings
from mycelium.core.errors import NotFoundError, UnresolvedConflictError
from mycelium.core.executor import clear_migration, execute_migration
from mycelium.core.manifest import load_mcps_yaml, load_migration_manifest, save_mcps_yaml
from mycelium.core.planner import generate_migration_plan, resolve_conflict
from mycelium.models import (
    McpServerConfig,
    ScannedHook,
    ScannedMcp,
    ScannedMemory,
    ScannedSkill,
    ToolScanResult,
)

OLD = datetime(2025, 1, 1, tzinfo=timezone.utc)
NEW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _scans() -> list[ToolScanResult]:
    claude = ToolScanResult(
        tool_id="claude-code",
        tool_name="Claude Code",
        installed=True,
        skills=[ScannedSkill(name="tdd", path="/c/tdd", source="claude-code", last_updated=OLD,
                             marketplace="anthropic", plugin_name="superpowers")],
        mcps=[
            ScannedMcp(name="git-mcp", config=McpServerConfig(command="npx", args=["@v1"]),
                       source="claude-code", last_updated=OLD),
            ScannedMcp(name="fs", config=McpServerConfig(command="fs-server"), source="claude-code"),
        ],
        memory=[ScannedMemory(name="app", path="/c/MEMORY.md", source="claude-code", content="# App\n")],
        hooks=[ScannedHook(name="PreToolUse/Bash", source="claude-code", event="PreToolUse", command="echo")],
    )
    codex = ToolScanResult(
        tool_id="codex",
        tool_name="Codex CLI",
        installed=True,
        skills=[ScannedSkill(name="tdd", path="/x/tdd", source="codex", last_updated=NEW)],
        mcps=[
            ScannedMcp(name="git-mcp", config=McpServerConfig(command="npx", args=["@v2"]),
                       source="codex", last_updated=NEW),
            ScannedMcp(name="fs", config=McpServerConfig(command="fs-server"), source="codex"),
        ],
        memory=[ScannedMemory(name="AGENTS", path="/x/AGENTS.md", source="codex", content="rules\n")],
    )
    return [claude, codex]


def test_latest_picks_newest():
    """latest keeps the most recently updated entry per conflict."""
    plan = generate_migration_plan(_scans(), "latest")
    assert {(c.type, c.name) for c in plan.conflicts} == {("skill", "tdd"), ("mcp", "git-mcp")}
    assert [s.source for s in plan.skills] == ["codex"]
    git = next(m for m in plan.mcps if m.name == "git-mcp")
    assert git.config.args == ["@v2"]
    assert all(c.resolved is not None for c in plan.conflicts)
    assert len(plan.hooks) == 1


def test_identical_mcps_collapse():
    """Identical MCP configs from several tools are not a conflict."""
    plan = generate_migration_plan(_scans(), "latest")
    assert [m.source for m in plan.mcps if m.name == "fs"] == ["claude-code"]
    assert "fs" not in {c.name for c in plan.conflicts}


def test_latest_ties_keep_scan_order():
    """Without timestamps the first scanned tool wins."""
    scans = _scans()
    for scan in scans:
        for skill in scan.skills:
            skill.last_updated = None
    plan = generate_migration_plan(scans, "latest")
    assert plan.skills[0].source == "claude-code"


def test_all_keeps_every_entry():
    """all keeps every duplicate and resolves nothing."""
    plan = generate_migration_plan(_scans(), "all")
    assert sorted(s.source for s in plan.skills) == ["claude-code", "codex"]
    assert all(c.resolved is None for c in plan.conflicts)


def test_interactive_withholds_conflicts():
    """Conflicting items wait for an explicit resolution."""
    plan = generate_migration_plan(_scans(), "interactive")
    assert plan.skills == []
    assert [m.name for m in plan.mcps] == ["fs"]
    assert len(plan.unresolved) == 2

    resolve_conflict(plan, "mcp", "git-mcp", "claude-code")
    assert [m.name for m in plan.mcps] == ["fs", "git-mcp"]
    assert plan.mcps[-1].config.args == ["@v1"]

    # Re-resolving swaps the chosen entry
    resolve_conflict(plan, "mcp", "git-mcp", "codex")
    assert [m.config.args for m in plan.mcps if m.name == "git-mcp"] == [["@v2"]]

    with pytest.raises(NotFoundError):
        resolve_conflict(plan, "skill", "tdd", "gemini-cli")
    with pytest.raises(NotFoundError):
        resolve_conflict(plan, "skill", "nope", "codex")


def test_single_source_is_never_a_conflict():
    """One tool alone never produces conflicts."""
    plan = generate_migration_plan(_scans()[:1], "interactive")
    assert plan.conflicts == []
    assert len(plan.skills) == 1


def test_execute_fails_closed_on_unresolved(env):
    """Unresolved conflicts stop the run before anything is written."""
    plan = generate_migration_plan(_scans(), "interactive")
    with pytest.raises(UnresolvedConflictError) as exc:
        asyncio.run(execute_migration(plan))
    assert "mcp:git-mcp" in exc.value.names
    assert not settings.migration_manifest_path.exists()


def test_execute_migration(env):
    """Skills, MCPs, memory and hooks all land in the managed tree."""
    save_mcps_yaml({"keep-me": McpServerConfig(command="custom")})
    plan = generate_migration_plan(_scans(), "latest")

    result = asyncio.run(execute_migration(plan))

    assert result.success
    assert (result.skills_imported, result.mcps_imported, result.memory_imported, result.hooks_imported) == (1, 2, 2, 1)

    link = settings.skills_dir / "tdd"
    assert link.is_symlink()
    assert str(link.readlink()) == "/x/tdd"

    mcps = load_mcps_yaml()
    assert set(mcps) == {"keep-me", "git-mcp", "fs"}
    assert mcps["git-mcp"].source == "codex"

    assert (settings.memory_dir / "claude-code-app.md").read_text() == "# App\n"
    assert (settings.memory_dir / "codex-AGENTS.md").read_text() == "rules\n"

    hooks = yaml.safe_load(settings.hooks_path.read_text())["hooks"]
    assert hooks["PreToolUse/Bash"]["command"] == "echo"

    manifest = json.loads(settings.migration_manifest_path.read_text())
    assert {e["type"] for e in manifest["entries"]} == {"skill", "mcp", "memory", "hook"}
    assert "importedPath" in manifest["entries"][0]


def test_execute_registers_marketplaces(env):
    """Marketplaces seen on skills are registered."""
    plan = generate_migration_plan(_scans()[:1], "latest")
    asyncio.run(execute_migration(plan))
    assert "anthropic" in yaml.safe_load(settings.marketplaces_path.read_text())


def test_all_mode_disambiguates_skill_names(env):
    """Duplicate skill names become name@source in all mode."""
    plan = generate_migration_plan(_scans(), "all")
    result = asyncio.run(execute_migration(plan))
    names = sorted(p.name for p in settings.skills_dir.iterdir())
    assert names == ["tdd@claude-code", "tdd@codex"]
    assert result.skills_imported == 2


def test_per_item_errors_do_not_abort(env):
    """A failing item is recorded and the rest still import."""
    scans = _scans()
    scans[0].memory = [ScannedMemory(name="gone", path=str(env.tmp / "missing.md"), source="claude-code")]
    plan = generate_migration_plan(scans, "latest")
    result = asyncio.run(execute_migration(plan))
    assert not result.success
    assert len(result.errors) == 1
    assert result.memory_imported == 1
    assert result.skills_imported == 1


def test_clear_by_tool(env):
    """Clearing one tool removes only what it imported."""
    plan = generate_migration_plan(_scans(), "all")
    asyncio.run(execute_migration(plan))

    result = asyncio.run(clear_migration("codex"))

    assert result.errors == []
    assert not (settings.skills_dir / "tdd@codex").is_symlink()
    assert (settings.skills_dir / "tdd@claude-code").is_symlink()
    assert not (settings.memory_dir / "codex-AGENTS.md").exists()
    assert set(load_mcps_yaml()) == {"fs"}
    assert {e.source for e in load_migration_manifest().entries} == {"claude-code"}


def test_clear_everything(env):
    """A full clear removes the whole managed tree."""
    asyncio.run(execute_migration(generate_migration_plan(_scans(), "latest")))
    result = asyncio.run(clear_migration())
    assert result.errors == []
    assert not settings.skills_dir.exists()
    assert not settings.memory_dir.exists()
    assert not settings.mcps_path.exists()
    assert not settings.migration_manifest_path.exists()


def test_second_run_keeps_earlier_entries_clearable(env):
    """Entries from an earlier migration survive a later one and can still be cleared per tool."""
    claude, codex = _scans()
    asyncio.run(execute_migration(generate_migration_plan([codex], "latest")))
    asyncio.run(execute_migration(generate_migration_plan([claude], "latest")))

    sources = {(e.type, e.name): e.source for e in load_migration_manifest().entries}
    assert sources[("memory", "AGENTS")] == "codex"
    assert sources[("mcp", "git-mcp")] == "claude-code"

    result = asyncio.run(clear_migration("codex"))

    assert f"{settings.memory_dir / 'codex-AGENTS.md'}" in result.cleared
    assert not (settings.memory_dir / "codex-AGENTS.md").exists()
    assert (settings.memory_dir / "claude-code-app.md").exists()


def test_manifest_write_failure_is_reported(env):
    """A manifest that cannot be written becomes an error; imported items stay."""
    settings.migration_manifest_path.mkdir(parents=True)
    result = asyncio.run(execute_migration(generate_migration_plan(_scans()[:1], "latest")))

    assert not result.success
    assert any("migration-manifest.json" in e for e in result.errors)
    assert result.skills_imported == 1
    assert (settings.skills_dir / "tdd").is_symlink()
