"""Surgical replacement of one dotted section's tables in a TOML file.

This is a line scanner for one section, not a TOML editor: only the
section's tables (``[mcp.servers.*]`` for MCP servers, ``[[hooks.*]]``
for hooks) are ever rewritten, and everything else in the file
(comments, ordering, other tables) must survive byte-for-byte.
"""

import re
from enum import Enum

MCP_SECTION = "mcp.servers"
HOOKS_SECTION = "hooks"

_BARE_KEY = re.compile(r"^[A-Za-z0-9_-]+$")


class _State(Enum):
    OUTSIDE_SECTION = "outside"
    INSIDE_SECTION = "inside"


def _table_name(stripped: str) -> str | None:
    """``a.b`` for a ``[a.b]`` or ``[[a.b]]`` header line, else None."""
    if not stripped.startswith("["):
        return None
    return stripped.lstrip("[").split("]", 1)[0].strip()


def replace_table_section(content: str, section: str, new_section: str) -> str:
    """Drop every ``[section.*]`` table and append ``new_section``.

    A table header outside ``section`` ends the current block and is
    kept. Applying this twice with the same new section gives the same
    text as applying it once.
    """
    state = _State.OUTSIDE_SECTION
    kept: list[str] = []

    for line in content.split("\n"):
        table = _table_name(line.strip())
        if table is not None and table.startswith(section + "."):
            state = _State.INSIDE_SECTION
            continue
        if state is _State.INSIDE_SECTION:
            if table is not None and table != section:
                state = _State.OUTSIDE_SECTION
            else:
                continue
        kept.append(line)

    remaining = "\n".join(kept).strip()
    if not new_section.strip():
        return remaining
    if not remaining:
        return new_section
    return remaining + "\n\n" + new_section


def replace_mcp_section(content: str, new_section: str) -> str:
    return replace_table_section(content, MCP_SECTION, new_section)


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _key(name: str) -> str:
    return name if _BARE_KEY.match(name) else _quote(name)


def render_mcp_section(servers: dict[str, dict]) -> str:
    """Render ``{name: {command, args?, env?}}`` as Codex TOML tables."""
    lines: list[str] = []
    for name, cfg in servers.items():
        lines.append(f"[mcp.servers.{_quote(name)}]")
        lines.append(f"command = {_quote(cfg.get('command', ''))}")
        args = cfg.get("args")
        if args:
            lines.append(f"args = [{', '.join(_quote(str(a)) for a in args)}]")
        env = cfg.get("env")
        if env:
            lines.append(f"[mcp.servers.{_quote(name)}.env]")
            for key, value in env.items():
                lines.append(f"{key} = {_quote(str(value))}")
        lines.append("")
    return "\n".join(lines)


def render_hooks_section(grouped: dict[str, list[dict]]) -> str:
    """Render ``{event: [{matchers?, command?, timeout?}]}`` as ``[[hooks.<event>]]`` tables."""
    lines: list[str] = []
    for event, entries in grouped.items():
        for entry in entries:
            lines.append(f"[[hooks.{_key(event)}]]")
            if entry.get("matchers"):
                lines.append(f"matchers = [{', '.join(_quote(m) for m in entry['matchers'])}]")
            if entry.get("command"):
                lines.append(f"command = {_quote(entry['command'])}")
            if entry.get("timeout") is not None:
                lines.append(f"timeout = {int(entry['timeout'])}")
            lines.append("")
    return "\n".join(lines)
