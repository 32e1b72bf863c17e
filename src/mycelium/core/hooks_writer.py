"""Hook injector: write the managed hooks from hooks.yaml into each tool.

Claude Code keeps hooks under ``hooks`` in ~/.claude/settings.json and
Cursor in the project's .cursor/hooks.json; Codex uses ``[[hooks.<event>]]``
tables in config.toml. Only the hooks part of each file is replaced and
the previous file is kept as a backup.
"""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from mycelium.core.errors import FormatError
from mycelium.core.injector import load_tool_document, serialize_tool_document, write_tool_file
from mycelium.core.manifest import load_hooks_yaml
from mycelium.core.registry import get_descriptor, resolve_path
from mycelium.core.toml_section import HOOKS_SECTION, render_hooks_section, replace_table_section
from mycelium.models import ScannedHook, SyncWriteResult

logger = logging.getLogger("mycelium.hooks_writer")

DEFAULT_HOOK_EVENT = "PostToolUse"


def managed_hooks(path: Path | None = None) -> list[ScannedHook]:
    """Enabled hooks.yaml entries that have a command to run."""
    hooks = []
    for name, entry in load_hooks_yaml(path).items():
        if not isinstance(entry, dict) or entry.get("state", "enabled") != "enabled":
            continue
        try:
            hook = ScannedHook.model_validate({"source": "mycelium", **entry, "name": name})
        except ValidationError as e:
            logger.warning("Skipping hook %s: %s", name, e)
            continue
        if hook.command:
            hooks.append(hook)
    return hooks


def group_hooks_by_event(hooks: list[ScannedHook]) -> dict[str, list[dict[str, Any]]]:
    grouped: dict[str, list[dict[str, Any]]] = {}
    for hook in hooks:
        entry: dict[str, Any] = {}
        if hook.matchers:
            entry["matchers"] = list(hook.matchers)
        if hook.command:
            entry["command"] = hook.command
        if hook.timeout is not None:
            entry["timeout"] = hook.timeout
        grouped.setdefault(hook.event or DEFAULT_HOOK_EVENT, []).append(entry)
    return grouped


def _render_claude(path: Path, grouped: dict[str, list[dict]]) -> str:
    settings_doc = load_tool_document(path, "json")
    hooks: dict[str, list[dict]] = {}
    for event, entries in grouped.items():
        for entry in entries:
            claude_entry = {k: v for k, v in entry.items() if k != "matchers"}
            if entry.get("matchers"):
                claude_entry = {"matcher": "|".join(entry["matchers"]), **claude_entry}
            hooks.setdefault(event, []).append(claude_entry)
    settings_doc["hooks"] = hooks
    return serialize_tool_document("json", settings_doc)


def _render_cursor(path: Path, grouped: dict[str, list[dict]]) -> str:
    doc = load_tool_document(path, "json")
    doc["hooks"] = grouped
    return serialize_tool_document("json", doc)


def _render_codex(path: Path, grouped: dict[str, list[dict]]) -> str:
    content = path.read_text(encoding="utf-8") if path.exists() else ""
    return replace_table_section(content, HOOKS_SECTION, render_hooks_section(grouped))


HOOK_RENDERERS: dict[str, Callable[[Path, dict[str, list[dict]]], str]] = {
    "claude-code": _render_claude,
    "codex": _render_codex,
    "cursor": _render_cursor,
}


async def write_hooks_to_tool(
    tool_id: str,
    hooks: list[ScannedHook],
    config_path: Path | None = None,
) -> SyncWriteResult:
    """Replace the hooks in ``tool_id``'s config with ``hooks``."""
    renderer = HOOK_RENDERERS.get(tool_id)
    path = config_path or resolve_path(get_descriptor(tool_id).paths.hooks)
    if renderer is None or path is None:
        return SyncWriteResult(tool_id=tool_id, success=False, error=f"{tool_id} does not take synced hooks")

    try:
        backup = write_tool_file(path, renderer(path, group_hooks_by_event(hooks)))
    except (OSError, FormatError) as e:
        logger.warning("Failed to write hooks to %s (%s): %s", tool_id, path, e)
        return SyncWriteResult(tool_id=tool_id, config_path=str(path), success=False, error=str(e))

    logger.info("Wrote %d hook(s) to %s: %s", len(hooks), tool_id, path)
    return SyncWriteResult(
        tool_id=tool_id,
        config_path=str(path),
        written=sorted(h.name for h in hooks),
        backup_path=str(backup) if backup else None,
    )
