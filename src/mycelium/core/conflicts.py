"""Conflict detection and merging between global and project config levels.

Project config always wins on read; detect_conflicts only reports where
the two levels disagree so the user can be warned.
"""

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel

from mycelium.models import ConfigConflict, McpServerConfig, MergedConfig

_SECTIONS: tuple[tuple[str, str, str], ...] = (
    ("mcps", "mcp", "MCP"),
    ("skills", "skill", "Skill"),
)


def _plain(value: Any) -> Any:
    """Turn pydantic models into plain data so they compare structurally."""
    if isinstance(value, BaseModel):
        return value.model_dump(exclude_none=True, by_alias=True)
    return value


def deep_equal(a: Any, b: Any) -> bool:
    """Structural equality: mapping key order never matters, list order does."""
    a, b = _plain(a), _plain(b)
    if a is b:
        return True
    if a is None or b is None:
        return False
    if isinstance(a, Mapping) and isinstance(b, Mapping):
        if a.keys() != b.keys():
            return False
        return all(deep_equal(a[k], b[k]) for k in a)
    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        if len(a) != len(b):
            return False
        return all(deep_equal(x, y) for x, y in zip(a, b))
    if type(a) is not type(b):
        return False
    return a == b


def _section(config: Any, key: str) -> Mapping[str, Any]:
    if config is None:
        return {}
    if isinstance(config, BaseModel):
        value = getattr(config, key, None)
    else:
        value = config.get(key)
    return value or {}


def detect_conflicts(global_config: Any, project_config: Any) -> list[ConfigConflict]:
    """Report every MCP/skill defined at both levels with different values.

    Either config may be None, a plain dict with optional ``mcps`` and
    ``skills`` maps, or a MergedConfig. Identical definitions are not
    conflicts. Nothing is resolved here.
    """
    conflicts: list[ConfigConflict] = []

    for key, kind, label in _SECTIONS:
        global_items = _section(global_config, key)
        project_items = _section(project_config, key)

        for name, global_value in global_items.items():
            if name not in project_items:
                continue
            project_value = project_items[name]
            if deep_equal(global_value, project_value):
                continue
            conflicts.append(ConfigConflict(
                type=kind,
                name=name,
                message=(
                    f'{label} "{name}" is defined in both global and project configs '
                    "with different settings. Project config will take priority."
                ),
                global_value=_plain(global_value),
                project_value=_plain(project_value),
            ))

    return conflicts


def _merge_mcp(target: McpServerConfig, override: McpServerConfig) -> McpServerConfig:
    """Field-by-field merge; fields set on the override win."""
    merged = target.model_dump(exclude_none=True)
    merged.update(override.model_dump(exclude_none=True))
    return McpServerConfig.model_validate(merged)


def merge_configs(global_config: Any, project_config: Any) -> MergedConfig:
    """Layer project over global. ``sources`` records which level won per MCP."""
    result = MergedConfig()

    for level, config in (("global", global_config), ("project", project_config)):
        for name, raw in _section(config, "mcps").items():
            mcp = McpServerConfig.model_validate(_plain(raw))
            existing = result.mcps.get(name)
            result.mcps[name] = _merge_mcp(existing, mcp) if existing else mcp
            result.sources[name] = level

        for name, skill in _section(config, "skills").items():
            result.skills[name] = dict(_plain(skill) or {})

    return result
