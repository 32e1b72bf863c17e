"""Tool scanners: read each installed AI tool's native config.

Every scanner returns a ToolScanResult of skills, MCPs, memory files and
hooks found under the user's home (``settings.user_home``). A file that
cannot be read or parsed is logged and skipped; a scanner never raises
because of one bad file.
"""

import json
import logging
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path

import toml
import yaml
from pydantic import ValidationError

from mycelium.config import settings
from mycelium.core.registry import TOOL_REGISTRY, ToolDescriptor, expand_path
from mycelium.models import (
    McpServerConfig,
    ScannedHook,
    ScannedMcp,
    ScannedMemory,
    ScannedSkill,
    ToolScanResult,
)

logger = logging.getLogger("mycelium.scanners")

CLAUDE_HOOK_EVENTS = ("PreToolUse", "PostToolUse", "Notification", "Stop")

_LINE_COMMENT = re.compile(r"^\s*//.*$", re.MULTILINE)
_FRONTMATTER = re.compile(r"^---\s*\n(.*?)\n---", re.DOTALL)


# ─── Helpers ──────────────────────────────────────────────────────────────


def _mtime(path: Path) -> datetime | None:
    try:
        return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
    except OSError:
        return None


def _read_text(path: Path) -> str | None:
    if not path.is_file():
        return None
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Failed to read %s: %s", path, e)
        return None


def _read_json(path: Path, jsonc: bool = False) -> dict | None:
    """Parse a JSON file; with ``jsonc`` whole-line ``//`` comments are dropped."""
    raw = _read_text(path)
    if raw is None:
        return None
    if jsonc:
        raw = _LINE_COMMENT.sub("", raw)
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning("Skipping malformed %s: %s", path, e)
        return None
    return data if isinstance(data, dict) else None


def _mapping(value) -> dict:
    return value if isinstance(value, dict) else {}


def _str_list(value) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return [str(value)]


def _str_entries(value) -> list[dict]:
    """Dict items of a list; anything else in the list is ignored."""
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, dict)]


def _mcp_config(name: str, command, args=None, env=None) -> McpServerConfig | None:
    """Build an McpServerConfig from raw tool values, or None (logged) if unusable."""
    env_map = {str(k): str(v) for k, v in env.items()} if isinstance(env, dict) else None
    try:
        return McpServerConfig(command=str(command or ""), args=_str_list(args), env=env_map or None)
    except ValidationError as e:
        logger.warning("Skipping MCP %s: %s", name, e)
        return None


def _strip_ext(name: str) -> str:
    return re.sub(r"\.[^.]+$", "", name)


def parse_skill_frontmatter(content: str) -> dict:
    """Return the YAML frontmatter of a SKILL.md as a dict (empty if none)."""
    fm_match = _FRONTMATTER.match(content)
    if not fm_match:
        return {}
    try:
        meta = yaml.safe_load(fm_match.group(1))
    except yaml.YAMLError as e:
        logger.warning("Bad frontmatter: %s", e)
        return {}
    return meta if isinstance(meta, dict) else {}


def decode_project_name(encoded_slug: str) -> str:
    """Turn a Claude project slug (``-home-me-code-app``) back into ``app``.

    Claude encodes ``/`` as ``-``, so the home prefix is stripped and the
    remainder is resolved against real directories to tell separators
    apart from literal hyphens.
    """
    home = settings.user_home
    home_prefix = str(home).lstrip("/").replace("/", "-") + "-"
    normalized = encoded_slug.lstrip("-")
    if not normalized.startswith(home_prefix):
        return normalized
    return _resolve_encoded_path(home, normalized[len(home_prefix):]).name


def _resolve_encoded_path(base: Path, encoded: str) -> Path:
    if not encoded:
        return base
    parts = encoded.split("-")
    for i in range(1, len(parts) + 1):
        candidate = base / "-".join(parts[:i])
        if candidate.is_dir():
            if i == len(parts):
                return candidate
            return _resolve_encoded_path(candidate, "-".join(parts[i:]))
    return base / encoded


def _memory(path: Path, name: str, source: str) -> ScannedMemory | None:
    content = _read_text(path)
    if content is None:
        return None
    return ScannedMemory(
        name=name,
        path=str(path),
        source=source,
        content=content,
        last_updated=_mtime(path),
    )


def _dir_entries_as_skills(directory: Path, source: str) -> list[ScannedSkill]:
    """Each non-hidden entry of ``directory`` becomes a skill named by its stem."""
    if not directory.is_dir():
        return []
    skills = []
    for entry in sorted(directory.iterdir()):
        if entry.name.startswith("."):
            continue
        skills.append(ScannedSkill(
            name=_strip_ext(entry.name),
            path=str(entry),
            source=source,
            last_updated=_mtime(entry),
        ))
    return skills


def _result(tool_id: str, installed: bool = True) -> ToolScanResult:
    desc = TOOL_REGISTRY.get(tool_id)
    return ToolScanResult(
        tool_id=tool_id,
        tool_name=desc.display.name if desc else tool_id,
        installed=installed,
    )


# ─── Scanners ─────────────────────────────────────────────────────────────


async def scan_claude_code() -> ToolScanResult:
    home = settings.user_home
    result = _result("claude-code")

    # Skills: plugins/cache/<marketplace>/<plugin>/<version>/.../SKILL.md
    cache_dir = home / ".claude" / "plugins" / "cache"
    if cache_dir.is_dir():
        for skill_path in sorted(cache_dir.rglob(settings.skill_filename)):
            content = _read_text(skill_path)
            if content is None:
                continue
            meta = parse_skill_frontmatter(content)
            rel = skill_path.relative_to(cache_dir).parts
            result.skills.append(ScannedSkill(
                name=str(meta.get("name") or skill_path.parent.name),
                path=str(skill_path),
                source="claude-code",
                version=str(meta["version"]) if meta.get("version") else None,
                last_updated=_mtime(skill_path),
                metadata={"description": str(meta.get("description", ""))},
                marketplace=rel[0] if len(rel) > 1 else None,
                plugin_name=rel[1] if len(rel) > 2 else None,
            ))

    for mcp_file in (home / ".claude.json", home / ".claude" / "mcp.json"):
        data = _read_json(mcp_file)
        if not data:
            continue
        servers = _mapping(data.get("mcpServers") or data.get("mcps"))
        for name, cfg in servers.items():
            if not isinstance(cfg, dict):
                continue
            config = _mcp_config(name, cfg.get("command"), cfg.get("args"), cfg.get("env"))
            if config is None:
                continue
            result.mcps.append(ScannedMcp(
                name=name,
                config=config,
                source="claude-code",
                last_updated=_mtime(mcp_file),
            ))

    projects_dir = home / ".claude" / "projects"
    if projects_dir.is_dir():
        for mem_path in sorted(projects_dir.glob("*/memory/MEMORY.md")):
            mem = _memory(mem_path, decode_project_name(mem_path.parent.parent.name), "claude-code")
            if mem:
                result.memory.append(mem)

    hooks_dir = home / ".claude" / "hooks"
    if hooks_dir.is_dir():
        for hook_path in sorted(hooks_dir.rglob("*.py")):
            result.hooks.append(ScannedHook(
                name=hook_path.stem,
                path=str(hook_path),
                source="claude-code",
            ))

    claude_settings = _read_json(home / ".claude" / "settings.json")
    if claude_settings and isinstance(claude_settings.get("hooks"), dict):
        for event in CLAUDE_HOOK_EVENTS:
            hooks = claude_settings["hooks"].get(event)
            if not isinstance(hooks, list):
                continue
            for hook in hooks:
                if not isinstance(hook, dict) or not hook.get("command"):
                    continue
                matcher = hook.get("matcher")
                result.hooks.append(ScannedHook(
                    name=f"{event}/{matcher or 'default'}",
                    source="claude-code",
                    event=event,
                    matchers=[str(matcher)] if matcher else None,
                    command=str(hook["command"]),
                    timeout=hook["timeout"] if isinstance(hook.get("timeout"), int) else None,
                ))

    logger.info(
        "Scanned claude-code: %d skills, %d mcps, %d memory, %d hooks",
        len(result.skills), len(result.mcps), len(result.memory), len(result.hooks),
    )
    return result


async def scan_codex() -> ToolScanResult:
    home = settings.user_home
    result = _result("codex")

    config_path = home / ".codex" / "config.toml"
    raw = _read_text(config_path)
    if raw is not None:
        try:
            data = toml.loads(raw)
        except toml.TomlDecodeError as e:
            logger.warning("Skipping malformed %s: %s", config_path, e)
            data = {}
        servers = _mapping(_mapping(data.get("mcp")).get("servers"))
        for name, cfg in servers.items():
            if not isinstance(cfg, dict):
                continue
            config = _mcp_config(name, cfg.get("command") or name, cfg.get("args"), cfg.get("env"))
            if config is None:
                continue
            result.mcps.append(ScannedMcp(
                name=name,
                config=config,
                source="codex",
                last_updated=_mtime(config_path),
            ))

    result.skills.extend(_dir_entries_as_skills(home / ".codex" / "skills", "codex"))

    mem = _memory(home / ".codex" / "AGENTS.md", "AGENTS", "codex")
    if mem:
        result.memory.append(mem)
    return result


async def scan_gemini() -> ToolScanResult:
    result = _result("gemini-cli")
    mem = _memory(settings.user_home / ".gemini" / "GEMINI.md", "GEMINI", "gemini-cli")
    if mem:
        result.memory.append(mem)
    return result


async def scan_openclaw() -> ToolScanResult:
    home = settings.user_home
    result = _result("openclaw")

    config_path = home / ".openclaw" / "openclaw.json"
    config = _read_json(config_path, jsonc=True)
    if config:
        for entry in _str_entries(_mapping(config.get("skills")).get("entries")):
            if not entry.get("name"):
                continue
            result.skills.append(ScannedSkill(
                name=str(entry["name"]),
                path=str(entry.get("path", "")),
                source="openclaw",
                metadata={"enabled": str(entry.get("enabled", True)).lower()},
                last_updated=_mtime(config_path),
            ))

        for entry in _str_entries(_mapping(config.get("plugins")).get("entries")):
            if entry.get("type") != "mcp-adapter":
                continue
            name = str(entry.get("name", ""))
            adapter = _mapping(entry.get("config"))
            if adapter:
                mcp_config = _mcp_config(name, adapter.get("serverUrl"), adapter.get("transport"))
            else:
                # Entries written by the injector carry command/args inline
                mcp_config = _mcp_config(name, entry.get("command"), entry.get("args"), entry.get("env"))
            if mcp_config is None:
                continue
            result.mcps.append(ScannedMcp(
                name=name,
                config=mcp_config,
                source="openclaw",
                last_updated=_mtime(config_path),
            ))

    openclaw_dir = home / ".openclaw"
    if openclaw_dir.is_dir():
        for mem_path in sorted(openclaw_dir.rglob("MEMORY.md")):
            mem = _memory(mem_path, mem_path.parent.name, "openclaw")
            if mem:
                result.memory.append(mem)
    return result


async def scan_opencode() -> ToolScanResult:
    config_dir = settings.user_home / ".config" / "opencode"
    result = _result("opencode")

    config_path = config_dir / "opencode.json"
    config = _read_json(config_path, jsonc=True)
    if config and isinstance(config.get("mcp"), dict):
        for name, srv in config["mcp"].items():
            if not isinstance(srv, dict):
                continue
            command = srv.get("command")
            if srv.get("type") == "remote" and srv.get("url"):
                mcp_config = _mcp_config(name, srv["url"], ["remote"])
            elif isinstance(command, list) and command:
                mcp_config = _mcp_config(name, command[0], command[1:], srv.get("environment"))
            elif isinstance(command, str) and command:
                mcp_config = _mcp_config(name, command, srv.get("args"), srv.get("environment"))
            else:
                continue
            if mcp_config is None:
                continue
            result.mcps.append(ScannedMcp(
                name=name,
                config=mcp_config,
                source="opencode",
                last_updated=_mtime(config_path),
            ))

    mem = _memory(config_dir / "AGENTS.md", "AGENTS", "opencode")
    if mem:
        result.memory.append(mem)

    result.skills.extend(_dir_entries_as_skills(config_dir / "commands", "opencode"))
    return result


async def scan_aider() -> ToolScanResult:
    result = _result("aider")
    candidates = (
        (settings.project_root / "CONVENTIONS.md", "CONVENTIONS"),
        (settings.project_root / ".aider.chat.history.md", "chat-history"),
        (settings.user_home / ".aider.conf.yml", "aider-config"),
    )
    for path, name in candidates:
        mem = _memory(path, name, "aider")
        if mem:
            result.memory.append(mem)
    return result


SCANNERS = {
    "claude-code": scan_claude_code,
    "codex": scan_codex,
    "gemini-cli": scan_gemini,
    "openclaw": scan_openclaw,
    "opencode": scan_opencode,
    "aider": scan_aider,
}


async def scan_tool(tool_id: str) -> ToolScanResult:
    """Scan one tool by id. Tools without a scanner report ``installed=False``."""
    scanner = SCANNERS.get(tool_id)
    if scanner is None:
        return _result(tool_id, installed=False)
    return await scanner()


def _is_installed(desc: ToolDescriptor) -> bool:
    if desc.cli and shutil.which(desc.cli.command):
        return True
    return any(expand_path(d).is_dir() for d in desc.paths.backup_dirs if d != "~/")


def detect_installed_tools() -> list[str]:
    """Tool ids whose CLI is on PATH or whose config directory exists."""
    return [tool_id for tool_id, desc in TOOL_REGISTRY.items() if desc.enabled and _is_installed(desc)]


async def scan_all_tools(tool_ids: list[str] | None = None) -> list[ToolScanResult]:
    """Scan the given tools (default: every detected one), one after another."""
    if tool_ids is None:
        tool_ids = detect_installed_tools()
    results = []
    for tool_id in tool_ids:
        results.append(await scan_tool(tool_id))
    return results
