"""Tool registry: static descriptors for every supported AI coding tool.

Each descriptor says where a tool keeps its MCP servers, skills, memory,
agents and hooks, and how its MCP file is shaped: wire format (json,
jsonc, toml, yaml), the key the servers live under, and the entry shape
(standard, vscode, opencode, openclaw). Everything else looks tools up
here by id; descriptors are never mutated.
"""

import logging
import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from mycelium.config import settings
from mycelium.core.errors import NotFoundError

logger = logging.getLogger("mycelium.registry")

Capability = Literal["mcp", "skills", "memory", "agents", "hooks", "rules", "commands"]
McpFormat = Literal["json", "jsonc", "toml", "yaml"]
McpEntryShape = Literal["standard", "vscode", "opencode", "openclaw"]


class PlatformPaths(BaseModel):
    model_config = ConfigDict(frozen=True)

    darwin: str
    linux: str
    win32: str


PathSpec = str | PlatformPaths | None


class ToolPaths(BaseModel):
    model_config = ConfigDict(frozen=True)

    mcp: PathSpec = None
    project_mcp: PathSpec = None
    skills: PathSpec = None
    project_skills: PathSpec = None
    global_memory: PathSpec = None
    project_memory: PathSpec = None
    agents: PathSpec = None
    project_agents: PathSpec = None
    rules: PathSpec = None
    hooks: PathSpec = None
    backup_dirs: tuple[str, ...] = ()


class McpCli(BaseModel):
    model_config = ConfigDict(frozen=True)

    add: tuple[str, ...]
    remove: tuple[str, ...]
    enable: tuple[str, ...] | None = None
    disable: tuple[str, ...] | None = None


class ToolCli(BaseModel):
    model_config = ConfigDict(frozen=True)

    command: str
    mcp: McpCli | None = None


class ToolDisplay(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    icon: str
    color: str


class McpConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    format: McpFormat
    key: str
    entry_shape: McpEntryShape = "standard"


class ToolDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    display: ToolDisplay
    cli: ToolCli | None = None
    paths: ToolPaths
    mcp: McpConfig
    capabilities: tuple[Capability, ...]
    scopes: tuple[str, ...] = ("shared", "coding")
    enabled: bool = True
    memory_max_lines: int | None = None


# ─── Descriptors ──────────────────────────────────────────────────────────

CLAUDE_CODE = ToolDescriptor(
    id="claude-code",
    display=ToolDisplay(name="Claude Code", icon="claude", color="#D97706"),
    cli=ToolCli(command="claude", mcp=McpCli(add=("mcp", "add-json"), remove=("mcp", "remove"))),
    paths=ToolPaths(
        mcp="~/.claude.json",
        project_mcp=".claude/mcp.json",
        skills="~/.claude/skills",
        project_skills=".claude/skills/",
        global_memory="~/.claude/CLAUDE.md",
        project_memory="CLAUDE.md",
        agents="~/.claude/agents/",
        project_agents=".claude/agents/",
        hooks="~/.claude/settings.json",
        backup_dirs=("~/.claude", "~/"),
    ),
    mcp=McpConfig(format="json", key="mcpServers"),
    capabilities=("mcp", "skills", "memory", "agents", "hooks"),
    memory_max_lines=200,
)

CODEX = ToolDescriptor(
    id="codex",
    display=ToolDisplay(name="Codex CLI", icon="openai", color="#10A37F"),
    cli=ToolCli(command="codex", mcp=McpCli(add=("mcp", "add"), remove=("mcp", "remove"))),
    paths=ToolPaths(
        mcp="~/.codex/config.toml",
        skills="~/.codex/skills",
        global_memory="~/.codex/AGENTS.md",
        project_memory="AGENTS.md",
        rules=".codex/rules/",
        hooks="~/.codex/config.toml",
        backup_dirs=("~/.codex",),
    ),
    mcp=McpConfig(format="toml", key="mcp.servers"),
    capabilities=("mcp", "skills", "memory", "rules", "hooks"),
)

GEMINI_CLI = ToolDescriptor(
    id="gemini-cli",
    display=ToolDisplay(name="Gemini CLI", icon="gemini", color="#4285F4"),
    cli=ToolCli(
        command="gemini",
        mcp=McpCli(
            add=("mcp", "add"),
            remove=("mcp", "remove"),
            enable=("mcp", "enable"),
            disable=("mcp", "disable"),
        ),
    ),
    paths=ToolPaths(
        mcp="~/.gemini/settings.json",
        skills="~/.gemini/extensions",
        global_memory="~/.gemini/GEMINI.md",
        project_memory="GEMINI.md",
        hooks="~/.gemini/settings.json",
        backup_dirs=("~/.gemini",),
    ),
    mcp=McpConfig(format="json", key="mcpServers"),
    capabilities=("mcp", "skills", "memory", "hooks"),
)

OPENCODE = ToolDescriptor(
    id="opencode",
    display=ToolDisplay(name="OpenCode", icon="opencode", color="#6366F1"),
    paths=ToolPaths(
        mcp="~/.config/opencode/opencode.json",
        skills="~/.config/opencode/plugin",
        global_memory="~/.config/opencode/AGENTS.md",
        agents="~/.config/opencode/agents/",
        project_agents=".opencode/agents/",
        hooks="~/.config/opencode/settings.json",
        backup_dirs=("~/.config/opencode",),
    ),
    mcp=McpConfig(format="jsonc", key="mcp", entry_shape="opencode"),
    capabilities=("mcp", "skills", "memory", "agents", "hooks", "commands"),
)

OPENCLAW = ToolDescriptor(
    id="openclaw",
    display=ToolDisplay(name="OpenClaw", icon="openclaw", color="#EC4899"),
    cli=ToolCli(command="openclaw"),
    paths=ToolPaths(
        mcp="~/.openclaw/openclaw.json",
        skills="~/.openclaw/workspace/skills",
        global_memory="~/.openclaw/workspace/MEMORY.md",
        agents="~/.openclaw/workspace/agents",
        hooks="~/.openclaw/hooks/",
        backup_dirs=("~/.openclaw",),
    ),
    mcp=McpConfig(format="json", key="plugins.entries", entry_shape="openclaw"),
    capabilities=("mcp", "skills", "memory", "hooks", "agents"),
    scopes=("shared", "personal"),
)

AIDER = ToolDescriptor(
    id="aider",
    display=ToolDisplay(name="Aider", icon="aider", color="#22C55E"),
    cli=ToolCli(command="aider"),
    paths=ToolPaths(
        mcp="~/.aider/mcp-servers.json",
        skills="~/.aider/plugins",
        global_memory="~/.aider/MEMORY.md",
        rules="CONVENTIONS.md",
        backup_dirs=("~/.aider",),
    ),
    mcp=McpConfig(format="json", key="mcpServers"),
    capabilities=("mcp", "skills", "memory", "rules"),
)

CURSOR = ToolDescriptor(
    id="cursor",
    display=ToolDisplay(name="Cursor", icon="cursor", color="#00D4AA"),
    cli=ToolCli(command="cursor"),
    paths=ToolPaths(
        mcp="~/.cursor/mcp.json",
        project_mcp=".cursor/mcp.json",
        project_agents=".cursor/agents/",
        rules=".cursor/rules/",
        hooks=".cursor/hooks.json",
        backup_dirs=("~/.cursor",),
    ),
    mcp=McpConfig(format="json", key="mcpServers"),
    capabilities=("mcp", "rules", "agents", "hooks", "commands"),
)

VSCODE = ToolDescriptor(
    id="vscode",
    display=ToolDisplay(name="VS Code", icon="vscode", color="#007ACC"),
    cli=ToolCli(command="code"),
    paths=ToolPaths(
        mcp=PlatformPaths(
            darwin="~/Library/Application Support/Code/User/mcp.json",
            linux="~/.config/Code/User/mcp.json",
            win32="%APPDATA%/Code/User/mcp.json",
        ),
        project_mcp=".vscode/mcp.json",
        project_skills=".github/skills/",
        project_memory=".github/copilot-instructions.md",
        project_agents=".github/agents/",
        rules=".github/instructions/",
    ),
    mcp=McpConfig(format="jsonc", key="servers", entry_shape="vscode"),
    capabilities=("mcp", "skills", "memory", "agents", "rules"),
)

ANTIGRAVITY = ToolDescriptor(
    id="antigravity",
    display=ToolDisplay(name="Antigravity", icon="antigravity", color="#FF6B35"),
    cli=ToolCli(command="agy"),
    paths=ToolPaths(
        mcp="~/.gemini/antigravity/mcp_config.json",
        skills="~/.gemini/antigravity/skills/",
        project_skills=".agent/skills/",
        global_memory="~/.gemini/antigravity/rules.md",
        project_memory=".antigravity/rules.md",
        project_agents=".agent/",
        backup_dirs=("~/.gemini/antigravity",),
    ),
    mcp=McpConfig(format="json", key="mcpServers"),
    capabilities=("mcp", "skills", "memory", "agents"),
)

TOOL_REGISTRY: dict[str, ToolDescriptor] = {
    desc.id: desc
    for desc in (
        CLAUDE_CODE,
        CODEX,
        GEMINI_CLI,
        OPENCODE,
        OPENCLAW,
        AIDER,
        CURSOR,
        VSCODE,
        ANTIGRAVITY,
    )
}

ALL_TOOL_IDS: list[str] = list(TOOL_REGISTRY)


# ─── Lookup ───────────────────────────────────────────────────────────────


def expand_path(p: str) -> Path:
    """Expand a leading ~ against the configured user home, and %APPDATA%."""
    if p.startswith("%APPDATA%"):
        appdata = os.environ.get("APPDATA") or str(settings.user_home / "AppData" / "Roaming")
        p = appdata + p[len("%APPDATA%"):]
    if p == "~" or p.startswith("~/"):
        return settings.user_home / p[2:]
    return Path(p)


def resolve_path(
    path_spec: PathSpec,
    platform: str | None = None,
    base: Path | None = None,
) -> Path | None:
    """Resolve a PathSpec to an absolute path, or None if unsupported.

    Per-platform specs fall back to the linux entry for unknown platforms.
    Relative paths (project-scoped specs) resolve against ``base``, which
    defaults to the configured project root.
    """
    if path_spec is None:
        return None
    if isinstance(path_spec, PlatformPaths):
        platform = platform or settings.platform
        raw = getattr(path_spec, platform, None) or path_spec.linux
    else:
        raw = path_spec
    resolved = expand_path(raw)
    if not resolved.is_absolute():
        resolved = (base or settings.project_root) / resolved
    return resolved


def get_descriptor(tool_id: str) -> ToolDescriptor:
    desc = TOOL_REGISTRY.get(tool_id)
    if desc is None:
        raise NotFoundError(f"Unknown tool: {tool_id}")
    return desc


def tools_with_capability(cap: Capability) -> list[ToolDescriptor]:
    return [t for t in TOOL_REGISTRY.values() if cap in t.capabilities]


def tools_for_scope(scope: str) -> list[ToolDescriptor]:
    return [t for t in TOOL_REGISTRY.values() if scope in t.scopes]


def validate_registry() -> list[str]:
    """Check registry invariants. Returns human-readable problems (empty = OK)."""
    errors: list[str] = []
    memory_paths: dict[Path, str] = {}
    for tool in TOOL_REGISTRY.values():
        mem = resolve_path(tool.paths.global_memory)
        if mem is None:
            continue
        if mem in memory_paths:
            errors.append(f"{tool.id} and {memory_paths[mem]} share globalMemory path: {mem}")
        memory_paths[mem] = tool.id
    if errors:
        logger.warning("Registry validation found %d problem(s)", len(errors))
    return errors
