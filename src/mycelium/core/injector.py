"""MCP injector: render managed MCP servers into each tool's native config.

Rendering is table-driven: a tool's ``(format, entry_shape)`` pair picks a
pure function that turns one McpServerConfig into the tool's entry.
Writing a tool's file only ever replaces the part that holds MCP servers;
every other key, table or plugin entry is carried over, and the previous
file is kept as a ``.mycelium-backup`` beside it.
"""

import json
import logging
import os
import re
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

import toml
import yaml

from mycelium.core.backup import backup_config
from mycelium.core.errors import FormatError, NotFoundError
from mycelium.core.registry import McpEntryShape, ToolDescriptor, get_descriptor, resolve_path
from mycelium.core.toml_section import render_mcp_section, replace_mcp_section
from mycelium.models import McpServerConfig, SyncPreview, SyncWriteResult

logger = logging.getLogger("mycelium.injector")

McpMap = Mapping[str, McpServerConfig]

_ENV_REF = re.compile(r"\$\{([^}]+)\}")
_LINE_COMMENT = re.compile(r"^\s*//.*$", re.MULTILINE)


# ─── Filtering ────────────────────────────────────────────────────────────


def filter_mcps_for_tool(mcps: McpMap, tool_id: str) -> dict[str, McpServerConfig]:
    """MCPs that should be written to ``tool_id``.

    Disabled servers never pass. A non-empty ``tools`` list is an
    allow-list; ``exclude_tools`` is checked last.
    """
    result = {}
    for name, config in mcps.items():
        if not config.is_active:
            continue
        if config.tools and tool_id not in config.tools:
            continue
        if config.exclude_tools and tool_id in config.exclude_tools:
            continue
        result[name] = config
    return result


def _substitute(value: Any, env: Mapping[str, str]) -> Any:
    if isinstance(value, str):
        return _ENV_REF.sub(lambda m: env.get(m.group(1)) or "", value)
    if isinstance(value, list):
        return [_substitute(v, env) for v in value]
    if isinstance(value, dict):
        return {k: _substitute(v, env) for k, v in value.items()}
    return value


def resolve_env_vars_in_mcps(mcps: McpMap, env: Mapping[str, str] | None = None) -> dict[str, McpServerConfig]:
    """Replace ``${VAR}`` references (unset variables become ""). Inputs are not modified."""
    env = os.environ if env is None else env
    return {
        name: McpServerConfig.model_validate(_substitute(config.model_dump(exclude_none=True), env))
        for name, config in mcps.items()
    }


# ─── Entry shapes ─────────────────────────────────────────────────────────


def clean_mcp_config(config: McpServerConfig) -> dict[str, Any]:
    """Strip internal fields: only command, plus args/env when non-empty."""
    entry: dict[str, Any] = {"command": config.command}
    if config.args:
        entry["args"] = list(config.args)
    if config.env:
        entry["env"] = dict(config.env)
    return entry


def _standard_entry(name: str, config: McpServerConfig) -> dict[str, Any]:
    return clean_mcp_config(config)


def _vscode_entry(name: str, config: McpServerConfig) -> dict[str, Any]:
    return {"type": "stdio", **clean_mcp_config(config)}


def _opencode_entry(name: str, config: McpServerConfig) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "type": "local",
        "command": [config.command, *(config.args or [])],
        "enabled": True,
    }
    if config.env:
        entry["environment"] = dict(config.env)
    return entry


def _openclaw_entry(name: str, config: McpServerConfig) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "type": "mcp-adapter",
        "name": name,
        "command": config.command,
        "args": list(config.args or []),
    }
    if config.env:
        entry["env"] = dict(config.env)
    return entry


ENTRY_SHAPES: dict[McpEntryShape, Callable[[str, McpServerConfig], dict[str, Any]]] = {
    "standard": _standard_entry,
    "vscode": _vscode_entry,
    "opencode": _opencode_entry,
    "openclaw": _openclaw_entry,
}


def render_entry(shape: McpEntryShape, name: str, config: McpServerConfig) -> dict[str, Any]:
    return ENTRY_SHAPES[shape](name, config)


# ─── Generators ───────────────────────────────────────────────────────────


def _active(mcps: McpMap) -> dict[str, McpServerConfig]:
    return {name: cfg for name, cfg in mcps.items() if cfg.is_active}


def generate_claude_config(mcps: McpMap) -> dict[str, Any]:
    return {"mcpServers": {name: clean_mcp_config(cfg) for name, cfg in _active(mcps).items()}}


def generate_gemini_config(mcps: McpMap) -> dict[str, Any]:
    return {"mcpServers": {name: clean_mcp_config(cfg) for name, cfg in _active(mcps).items()}}


def generate_codex_config(mcps: McpMap) -> str:
    return render_mcp_section({name: clean_mcp_config(cfg) for name, cfg in _active(mcps).items()})


def generate_opencode_config(mcps: McpMap) -> str:
    servers = {name: clean_mcp_config(cfg) for name, cfg in _active(mcps).items()}
    return yaml.safe_dump({"mcp": {"servers": servers}}, sort_keys=False, indent=2)


def generate_openclaw_config(mcps: McpMap) -> str:
    return generate_opencode_config(mcps)


# ─── Nested keys ──────────────────────────────────────────────────────────


def _get_nested(config: dict, dotted_key: str) -> Any:
    current: Any = config
    for part in dotted_key.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def _set_nested(config: dict, dotted_key: str, value: Any) -> None:
    parts = dotted_key.split(".")
    current = config
    for part in parts[:-1]:
        if not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]
    current[parts[-1]] = value


# ─── Tool files ───────────────────────────────────────────────────────────


def load_tool_document(path: Path, fmt: str) -> dict:
    if not path.exists():
        return {}
    raw = path.read_text(encoding="utf-8")
    if not raw.strip():
        return {}
    try:
        if fmt == "yaml":
            data = yaml.safe_load(raw)
        else:
            data = json.loads(_LINE_COMMENT.sub("", raw) if fmt == "jsonc" else raw)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise FormatError(f"Malformed {path}: {e}") from e
    if not isinstance(data, dict):
        raise FormatError(f"{path} does not contain an object")
    return data


def serialize_tool_document(fmt: str, data: dict) -> str:
    if fmt == "yaml":
        return yaml.safe_dump(data, sort_keys=False)
    return json.dumps(data, indent=2) + "\n"


def write_tool_file(path: Path, content: str) -> Path | None:
    """Back up ``path``, then replace it with ``content``. Returns the backup path."""
    backup = backup_config(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return backup


def _render_toml(desc: ToolDescriptor, path: Path, mcps: dict[str, McpServerConfig]) -> str:
    content = path.read_text(encoding="utf-8") if path.exists() else ""
    return replace_mcp_section(content, generate_codex_config(mcps))


def _render_document(desc: ToolDescriptor, path: Path, mcps: dict[str, McpServerConfig]) -> str:
    fmt, key, shape = desc.mcp.format, desc.mcp.key, desc.mcp.entry_shape
    config = load_tool_document(path, fmt)

    if shape == "openclaw":
        existing = _get_nested(config, key) or []
        others = [e for e in existing if not (isinstance(e, dict) and e.get("type") == "mcp-adapter")]
        _set_nested(config, key, others + [render_entry(shape, n, c) for n, c in mcps.items()])
    else:
        previous = _get_nested(config, key) or {}
        section = {}
        for name, cfg in mcps.items():
            entry = render_entry(shape, name, cfg)
            prev = previous.get(name)
            section[name] = {**prev, **entry} if isinstance(prev, dict) else entry
        _set_nested(config, key, section)

    return serialize_tool_document(fmt, config)


_RENDERERS = {
    "toml": _render_toml,
    "json": _render_document,
    "jsonc": _render_document,
    "yaml": _render_document,
}


def _target_path(desc: ToolDescriptor, config_path: Path | None) -> Path | None:
    return config_path or resolve_path(desc.paths.mcp)


def preview_mcps_for_tool(
    tool_id: str,
    mcps: McpMap,
    config_path: Path | None = None,
) -> SyncPreview:
    """What write_mcps_to_tool would leave in the tool's file; nothing is written.

    Raises NotFoundError for a tool without an MCP config path and
    FormatError when the current file cannot be parsed.
    """
    desc = get_descriptor(tool_id)
    path = _target_path(desc, config_path)
    if path is None:
        raise NotFoundError(f"{tool_id} has no MCP config path")
    current = path.read_text(encoding="utf-8") if path.exists() else None
    new = _RENDERERS[desc.mcp.format](desc, path, filter_mcps_for_tool(mcps, tool_id))
    return SyncPreview(tool_id=tool_id, config_path=str(path), current_content=current, new_content=new)


async def write_mcps_to_tool(
    tool_id: str,
    mcps: McpMap,
    config_path: Path | None = None,
) -> SyncWriteResult:
    """Write the MCPs meant for ``tool_id`` into its config file.

    The MCP section is rebuilt from ``mcps`` (after per-tool filtering);
    fields a tool added to an existing entry are kept, as is everything
    outside the section. The previous file is kept as a backup.
    """
    desc = get_descriptor(tool_id)
    path = _target_path(desc, config_path)
    if path is None:
        return SyncWriteResult(tool_id=tool_id, success=False, error="Tool has no MCP config path")

    selected = filter_mcps_for_tool(mcps, tool_id)
    try:
        backup = write_tool_file(path, _RENDERERS[desc.mcp.format](desc, path, selected))
    except (OSError, FormatError) as e:
        logger.warning("Failed to write MCPs to %s (%s): %s", tool_id, path, e)
        return SyncWriteResult(tool_id=tool_id, config_path=str(path), success=False, error=str(e))

    logger.info("Wrote %d MCP(s) to %s: %s", len(selected), tool_id, path)
    return SyncWriteResult(
        tool_id=tool_id,
        config_path=str(path),
        written=sorted(selected),
        backup_path=str(backup) if backup else None,
    )


async def remove_mcp_from_tool(
    tool_id: str,
    name: str,
    config_path: Path | None = None,
) -> SyncWriteResult:
    """Delete one MCP server from a tool's config, leaving the rest alone."""
    desc = get_descriptor(tool_id)
    path = _target_path(desc, config_path)
    if path is None or not path.exists():
        return SyncWriteResult(tool_id=tool_id, success=False, error=f"No config file for {tool_id}")

    try:
        if desc.mcp.format == "toml":
            content = path.read_text(encoding="utf-8")
            try:
                servers = toml.loads(content).get("mcp", {}).get("servers", {})
            except toml.TomlDecodeError as e:
                raise FormatError(f"Malformed {path}: {e}") from e
            if name not in servers:
                return SyncWriteResult(tool_id=tool_id, config_path=str(path))
            del servers[name]
            backup = write_tool_file(path, replace_mcp_section(content, render_mcp_section(servers)))
        else:
            config = load_tool_document(path, desc.mcp.format)
            section = _get_nested(config, desc.mcp.key)
            if desc.mcp.entry_shape == "openclaw":
                kept = [
                    e for e in section or []
                    if not (isinstance(e, dict) and e.get("type") == "mcp-adapter" and e.get("name") == name)
                ]
                if len(kept) == len(section or []):
                    return SyncWriteResult(tool_id=tool_id, config_path=str(path))
                _set_nested(config, desc.mcp.key, kept)
            else:
                if not isinstance(section, dict) or name not in section:
                    return SyncWriteResult(tool_id=tool_id, config_path=str(path))
                del section[name]
            backup = write_tool_file(path, serialize_tool_document(desc.mcp.format, config))
    except (OSError, FormatError) as e:
        logger.warning("Failed to remove %s from %s: %s", name, tool_id, e)
        return SyncWriteResult(tool_id=tool_id, config_path=str(path), success=False, error=str(e))

    logger.info("Removed MCP %s from %s", name, tool_id)
    return SyncWriteResult(
        tool_id=tool_id, config_path=str(path), written=[name], backup_path=str(backup) if backup else None
    )
