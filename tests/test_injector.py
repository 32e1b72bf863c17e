"""MCP filtering, per-tool rendering, and writes into tool config files."""

import asyncio
import json

import toml

from mycelium.core.injector import (
    filter_mcps_for_tool,
    generate_claude_config,
    generate_codex_config,
    generate_gemini_config,
    generate_openclaw_config,
    generate_opencode_config,
    preview_mcps_for_tool,
    remove_mcp_from_tool,
    render_entry,
    resolve_env_vars_in_mcps,
    write_mcps_to_tool,
)
from mycelium.core.toml_section import replace_mcp_section
from mycelium.models import McpServerConfig


def _mcps() -> dict[str, McpServerConfig]:
    return {
        "git": McpServerConfig(command="npx", args=["-y", "git-mcp"], tools=["claude-code", "codex"]),
        "off": McpServerConfig(command="nope", enabled=False),
        "gone": McpServerConfig(command="nope", state="deleted"),
        "search": McpServerConfig(command="uvx", env={"KEY": "abc"}, exclude_tools=["codex"]),
        "plain": McpServerConfig(command="plain", args=[], env={}),
    }


def test_filter_disabled_everywhere():
    """Disabled and deleted servers never reach any tool."""
    for tool_id in ("claude-code", "codex", "cursor"):
        selected = filter_mcps_for_tool(_mcps(), tool_id)
        assert "off" not in selected
        assert "gone" not in selected


def test_filter_tools_and_exclude_tools():
    """tools is an allow-list and excludeTools a deny-list."""
    assert set(filter_mcps_for_tool(_mcps(), "claude-code")) == {"git", "search", "plain"}
    assert set(filter_mcps_for_tool(_mcps(), "codex")) == {"git", "plain"}
    assert set(filter_mcps_for_tool(_mcps(), "cursor")) == {"search", "plain"}


def test_claude_config_has_no_internal_fields():
    """Rendered entries carry only command, args and env."""
    selected = filter_mcps_for_tool(_mcps(), "claude-code")
    merged = {}
    merged.update(generate_claude_config(selected))
    assert merged == {
        "mcpServers": {
            "git": {"command": "npx", "args": ["-y", "git-mcp"]},
            "search": {"command": "uvx", "env": {"KEY": "abc"}},
            "plain": {"command": "plain"},
        }
    }
    assert generate_gemini_config(selected) == merged


def test_generate_skips_disabled():
    """Generators drop inactive servers on their own."""
    assert set(generate_claude_config(_mcps())["mcpServers"]) == {"git", "search", "plain"}


def test_codex_toml_output():
    """Codex output is valid TOML with quoted server names."""
    text = generate_codex_config({"search": _mcps()["search"], "git": _mcps()["git"]})
    assert '[mcp.servers."search"]' in text
    assert '[mcp.servers."search".env]\nKEY = "abc"' in text
    assert 'args = ["-y", "git-mcp"]' in text
    parsed = toml.loads(text)
    assert parsed["mcp"]["servers"]["git"]["command"] == "npx"


def test_opencode_and_openclaw_yaml():
    """OpenCode and OpenClaw share the nested YAML form."""
    text = generate_opencode_config({"git": _mcps()["git"]})
    assert text.startswith("mcp:\n  servers:\n    git:")
    assert generate_openclaw_config({"git": _mcps()["git"]}) == text


def test_entry_shapes():
    """Each entry shape renders its tool's own fields."""
    cfg = _mcps()["search"]
    assert render_entry("vscode", "s", cfg) == {"type": "stdio", "command": "uvx", "env": {"KEY": "abc"}}
    assert render_entry("opencode", "s", cfg) == {
        "type": "local", "command": ["uvx"], "enabled": True, "environment": {"KEY": "abc"},
    }
    assert render_entry("openclaw", "s", cfg)["type"] == "mcp-adapter"


def test_resolve_env_vars():
    """``${VAR}`` references are filled in and unset ones become empty."""
    mcps = {"x": McpServerConfig(command="run", args=["--token=${TOKEN}"], env={"HOME_DIR": "${HOME_X}"})}
    resolved = resolve_env_vars_in_mcps(mcps, {"TOKEN": "t0k"})
    assert resolved["x"].args == ["--token=t0k"]
    assert resolved["x"].env == {"HOME_DIR": ""}
    assert mcps["x"].args == ["--token=${TOKEN}"]


def test_replace_mcp_section_keeps_other_tables():
    """Only MCP server tables are swapped; reapplying is a no-op."""
    content = (
        'model = "o3"\n\n'
        "[mcp.servers.old]\ncommand = \"old\"\n\n"
        "[mcp.servers.old.env]\nA = \"1\"\n\n"
        "[profile]\nname = \"work\"\n"
    )
    new = generate_codex_config({"git": _mcps()["git"]})
    once = replace_mcp_section(content, new)
    assert "old" not in once
    assert '[profile]\nname = "work"' in once
    assert once.startswith('model = "o3"')
    assert replace_mcp_section(once, new) == once


def test_replace_mcp_section_empty_cases():
    """Empty file or empty section leaves just the other side."""
    assert replace_mcp_section("", "[mcp.servers.\"a\"]\n") == "[mcp.servers.\"a\"]\n"
    assert replace_mcp_section("[mcp.servers.a]\ncommand = \"x\"\n", "") == ""


def test_write_json_preserves_other_keys(env):
    """Other top-level keys and tool-added entry fields survive a write."""
    path = env.tmp / "claude.json"
    path.write_text(json.dumps({
        "theme": "dark",
        "mcpServers": {"git": {"command": "old", "timeout": 30}, "stale": {"command": "s"}},
    }))
    result = asyncio.run(write_mcps_to_tool("claude-code", _mcps(), config_path=path))

    assert result.success
    assert result.written == ["git", "plain", "search"]
    data = json.loads(path.read_text())
    assert data["theme"] == "dark"
    assert set(data["mcpServers"]) == {"git", "search", "plain"}
    assert data["mcpServers"]["git"] == {"command": "npx", "timeout": 30, "args": ["-y", "git-mcp"]}


def test_write_vscode_jsonc(env):
    """VS Code's commented JSON is read and rewritten with stdio entries."""
    path = env.tmp / "mcp.json"
    path.write_text('{\n  // user servers\n  "inputs": []\n}\n')
    asyncio.run(write_mcps_to_tool("vscode", _mcps(), config_path=path))
    data = json.loads(path.read_text())
    assert data["inputs"] == []
    assert data["servers"]["search"]["type"] == "stdio"


def test_write_opencode_shape(env):
    """OpenCode entries use a command list under mcp."""
    path = env.tmp / "opencode.json"
    asyncio.run(write_mcps_to_tool("opencode", _mcps(), config_path=path))
    data = json.loads(path.read_text())
    assert data["mcp"]["plain"] == {"type": "local", "command": ["plain"], "enabled": True}


def test_write_openclaw_keeps_non_mcp_entries(env):
    """Only mcp-adapter plugin entries are replaced."""
    path = env.tmp / "openclaw.json"
    path.write_text(json.dumps({"plugins": {"entries": [
        {"type": "channel", "name": "slack"},
        {"type": "mcp-adapter", "name": "stale", "command": "s"},
    ]}}))
    asyncio.run(write_mcps_to_tool("openclaw", _mcps(), config_path=path))
    entries = json.loads(path.read_text())["plugins"]["entries"]
    assert entries[0] == {"type": "channel", "name": "slack"}
    assert {e["name"] for e in entries[1:]} == {"search", "plain"}
    assert all(e["type"] == "mcp-adapter" for e in entries[1:])


def test_write_codex_toml(env):
    """Codex writes replace stale servers and keep other settings."""
    path = env.tmp / "config.toml"
    path.write_text('model = "o3"\n\n[mcp.servers.stale]\ncommand = "s"\n')
    result = asyncio.run(write_mcps_to_tool("codex", _mcps(), config_path=path))
    assert result.written == ["git", "plain"]
    parsed = toml.loads(path.read_text())
    assert parsed["model"] == "o3"
    assert set(parsed["mcp"]["servers"]) == {"git", "plain"}


def test_write_malformed_json_reports_error(env):
    """A malformed tool file is reported and left as it was."""
    path = env.tmp / "claude.json"
    path.write_text("{broken")
    result = asyncio.run(write_mcps_to_tool("claude-code", _mcps(), config_path=path))
    assert not result.success
    assert "Malformed" in result.error
    assert path.read_text() == "{broken"


def test_write_default_path(env):
    """Without a config path the registry path is used."""
    asyncio.run(write_mcps_to_tool("cursor", _mcps()))
    data = json.loads((env.user_home / ".cursor/mcp.json").read_text())
    assert set(data["mcpServers"]) == {"search", "plain"}


def test_remove_mcp(env):
    """Removing one server works for JSON, TOML and OpenClaw files."""
    json_path = env.tmp / "claude.json"
    asyncio.run(write_mcps_to_tool("claude-code", _mcps(), config_path=json_path))
    result = asyncio.run(remove_mcp_from_tool("claude-code", "git", config_path=json_path))
    assert result.written == ["git"]
    assert "git" not in json.loads(json_path.read_text())["mcpServers"]

    toml_path = env.tmp / "config.toml"
    asyncio.run(write_mcps_to_tool("codex", _mcps(), config_path=toml_path))
    asyncio.run(remove_mcp_from_tool("codex", "git", config_path=toml_path))
    assert set(toml.loads(toml_path.read_text())["mcp"]["servers"]) == {"plain"}

    claw_path = env.tmp / "openclaw.json"
    asyncio.run(write_mcps_to_tool("openclaw", _mcps(), config_path=claw_path))
    asyncio.run(remove_mcp_from_tool("openclaw", "plain", config_path=claw_path))
    names = [e["name"] for e in json.loads(claw_path.read_text())["plugins"]["entries"]]
    assert names == ["search"]

    missing = asyncio.run(remove_mcp_from_tool("claude-code", "nope", config_path=json_path))
    assert missing.success and missing.written == []


def test_write_keeps_backup_of_previous_file(env):
    """The file as it was before a write is saved as <name>.mycelium-backup."""
    path = env.tmp / "claude.json"
    original = json.dumps({"theme": "dark", "mcpServers": {"stale": {"command": "s"}}})
    path.write_text(original)

    result = asyncio.run(write_mcps_to_tool("claude-code", _mcps(), config_path=path))

    backup = env.tmp / "claude.json.mycelium-backup"
    assert result.backup_path == str(backup)
    assert backup.read_text() == original
    assert "stale" not in json.loads(path.read_text())["mcpServers"]


def test_write_new_file_has_no_backup(env):
    """Nothing to back up when the tool file does not exist yet."""
    path = env.tmp / "fresh" / "config.toml"
    result = asyncio.run(write_mcps_to_tool("codex", _mcps(), config_path=path))
    assert result.success
    assert result.backup_path is None
    assert not (env.tmp / "fresh" / "config.toml.mycelium-backup").exists()


def test_remove_mcp_keeps_backup(env):
    """Removing a server also backs the file up first."""
    path = env.tmp / "config.toml"
    asyncio.run(write_mcps_to_tool("codex", _mcps(), config_path=path))
    before = path.read_text()
    result = asyncio.run(remove_mcp_from_tool("codex", "git", config_path=path))
    assert result.backup_path is not None
    assert (env.tmp / "config.toml.mycelium-backup").read_text() == before


def test_preview_does_not_write(env):
    """A preview shows old and new content and leaves the file untouched."""
    path = env.tmp / "config.toml"
    path.write_text('model = "o3"\n')

    preview = preview_mcps_for_tool("codex", _mcps(), config_path=path)

    assert preview.current_content == 'model = "o3"\n'
    assert set(toml.loads(preview.new_content)["mcp"]["servers"]) == {"git", "plain"}
    assert path.read_text() == 'model = "o3"\n'
    assert not (env.tmp / "config.toml.mycelium-backup").exists()


def test_preview_missing_file(env):
    """Previewing a tool whose file does not exist yet has no current content."""
    preview = preview_mcps_for_tool("claude-code", _mcps(), config_path=env.tmp / "none.json")
    assert preview.current_content is None
    assert set(json.loads(preview.new_content)["mcpServers"]) == {"git", "search", "plain"}
