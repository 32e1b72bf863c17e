"""Managed manifests: v1 → v2 item-state upgrade, migration manifest, YAML stores.

Item-state manifests hold ``skills``/``mcps``/``hooks``/``memory`` sections.
v1 marked items with a boolean ``enabled``; v2 uses ``state`` plus
``source``. The upgrade overwrites the old field and is one-directional,
so upgrade_manifest_file() snapshots the managed tree before writing.
"""

import copy
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from mycelium.config import settings
from mycelium.core.errors import FormatError
from mycelium.models import (
    McpServerConfig,
    MigrationManifest,
    MigrationManifestEntry,
    ScannedHook,
    ScannedMcp,
)

logger = logging.getLogger("mycelium.manifest")

STATE_SECTIONS = ("skills", "mcps", "hooks")
LEGACY_MANIFEST_FILES = ("skills.json", "mcps.json", "global.json")

MCPS_HEADER = "# Mycelium MCP Configuration\n# Managed by mycelium -- entries outside this tool are preserved\n\n"
HOOKS_HEADER = "# Mycelium hooks\n\n"


# ─── v1 → v2 ──────────────────────────────────────────────────────────────


def migrate_manifest_v1_to_v2(
    manifest: dict[str, Any],
    plugin_skills: dict[str, dict[str, bool]] | None = None,
) -> dict[str, Any]:
    """Convert ``enabled: bool`` items to ``state`` and fill in ``source``.

    Returns a new dict; the input is left untouched. Items that already
    carry ``state`` and no ``enabled`` are left alone, so running this on
    an upgraded manifest changes nothing. ``plugin_skills`` is the legacy
    side table (plugin name → skill name → enabled) and overrides the
    state of skills present in the manifest.
    """
    result = copy.deepcopy(manifest)

    for section in STATE_SECTIONS:
        items = result.get(section)
        if not isinstance(items, dict):
            continue
        for config in items.values():
            if not isinstance(config, dict):
                continue
            if "enabled" in config:
                config["state"] = "disabled" if config.pop("enabled") is False else "enabled"
            elif "state" not in config:
                config["state"] = "enabled"

            if not config.get("source"):
                config["source"] = config.get("pluginName") or "manual"

    if plugin_skills:
        skills = result.get("skills")
        if isinstance(skills, dict):
            for toggles in plugin_skills.values():
                for skill_name, enabled in toggles.items():
                    if isinstance(skills.get(skill_name), dict):
                        skills[skill_name]["state"] = "enabled" if enabled else "disabled"

    return result


def needs_v2_upgrade(manifest: dict[str, Any]) -> bool:
    """True when any item in a state section still has a v1 ``enabled`` flag."""
    for section in (*STATE_SECTIONS, "memory"):
        items = manifest.get(section)
        if not isinstance(items, dict):
            continue
        if any(isinstance(v, dict) and "enabled" in v for v in items.values()):
            return True
    return False


def _read_structured(path: Path) -> Any:
    """Parse a YAML or JSON file (YAML is a superset). Raises FormatError."""
    try:
        return yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise FormatError(f"Malformed {path.name}: {e}") from e


def _write_structured(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix == ".json":
        path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
    else:
        path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")


async def upgrade_manifest_file() -> list[str]:
    """Upgrade every v1 item-state manifest under the managed root in place.

    Takes a ``pre-v2-<timestamp>`` snapshot first. The legacy
    plugin-skills.json side table is folded in and then removed.
    Returns the names of the files that were rewritten.
    """
    from mycelium.core.snapshot import create_snapshot

    candidates = [settings.manifest_path] + [settings.home / f for f in LEGACY_MANIFEST_FILES]
    pending: list[tuple[Path, dict]] = []
    for path in candidates:
        if not path.exists():
            continue
        data = _read_structured(path)
        if isinstance(data, dict) and needs_v2_upgrade(data):
            pending.append((path, data))

    if not pending:
        return []

    plugin_skills = None
    if settings.plugin_skills_path.exists():
        plugin_skills = _read_structured(settings.plugin_skills_path)

    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
    await create_snapshot(f"pre-v2-{stamp}", description="Automatic snapshot before v1 → v2 manifest upgrade")

    upgraded: list[str] = []
    for path, data in pending:
        _write_structured(path, migrate_manifest_v1_to_v2(data, plugin_skills))
        upgraded.append(path.name)
        logger.info("Upgraded %s from v1 (enabled) to v2 (state)", path.name)

    if plugin_skills is not None:
        settings.plugin_skills_path.unlink(missing_ok=True)
        logger.info("Removed plugin-skills.json (data imported into manifests)")

    return upgraded


def load_manifest_config() -> dict[str, Any]:
    """Read manifest.yaml (item states), upgraded in memory if still v1."""
    path = settings.manifest_path
    if not path.exists():
        return {}
    data = _read_structured(path) or {}
    if not isinstance(data, dict):
        raise FormatError(f"{path.name} must contain a mapping")
    return migrate_manifest_v1_to_v2(data) if needs_v2_upgrade(data) else data


def item_states(section: str) -> dict[str, str]:
    """Name → state for one manifest section."""
    items = load_manifest_config().get(section) or {}
    return {
        name: cfg.get("state", "enabled")
        for name, cfg in items.items()
        if isinstance(cfg, dict)
    }


# ─── Migration manifest ───────────────────────────────────────────────────


def load_migration_manifest() -> MigrationManifest:
    """Load migration-manifest.json, or an empty manifest if absent."""
    path = settings.migration_manifest_path
    if not path.exists():
        return MigrationManifest()
    try:
        return MigrationManifest.model_validate_json(path.read_text(encoding="utf-8"))
    except ValidationError as e:
        raise FormatError(f"Malformed {path.name}: {e}") from e


def merge_manifest_entries(
    existing: list[MigrationManifestEntry],
    new: list[MigrationManifestEntry],
) -> list[MigrationManifestEntry]:
    """Earlier entries plus ``new``; a new entry replaces one with the same type and name."""
    replaced = {(e.type, e.name) for e in new}
    return [e for e in existing if (e.type, e.name) not in replaced] + list(new)


def save_migration_manifest(manifest: MigrationManifest) -> None:
    path = settings.migration_manifest_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        manifest.model_dump_json(indent=2, by_alias=True, exclude_none=True),
        encoding="utf-8",
    )


# ─── mcps.yaml ────────────────────────────────────────────────────────────


def load_mcps_yaml(path: Path | None = None) -> dict[str, McpServerConfig]:
    """Load an MCP store: flat YAML map, or ``{mcps: {...}}`` (JSON form)."""
    path = path or settings.mcps_path
    if not path.exists():
        return {}
    data = _read_structured(path) or {}
    if not isinstance(data, dict):
        raise FormatError(f"{path.name} must contain a mapping")
    if isinstance(data.get("mcps"), dict):
        data = data["mcps"]
    try:
        return {name: McpServerConfig.model_validate(cfg or {}) for name, cfg in data.items()}
    except ValidationError as e:
        raise FormatError(f"Invalid MCP entry in {path.name}: {e}") from e


def serialize_mcps_yaml(mcps: dict[str, McpServerConfig] | list[ScannedMcp]) -> str:
    """Render an MCP store. Empty ``args``/``env`` are left out."""
    if isinstance(mcps, list):
        mcps = {m.name: m.config for m in mcps}

    data: dict[str, dict] = {}
    for name, config in mcps.items():
        entry = config.model_dump(exclude_none=True, by_alias=True)
        if not entry.get("args"):
            entry.pop("args", None)
        if not entry.get("env"):
            entry.pop("env", None)
        data[name] = entry

    body = yaml.safe_dump(data, sort_keys=False, default_flow_style=False) if data else ""
    return MCPS_HEADER + body


def save_mcps_yaml(mcps: dict[str, McpServerConfig], path: Path | None = None) -> Path:
    path = path or settings.mcps_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(serialize_mcps_yaml(mcps), encoding="utf-8")
    return path


# ─── hooks.yaml ───────────────────────────────────────────────────────────


def load_hooks_yaml(path: Path | None = None) -> dict[str, dict]:
    path = path or settings.hooks_path
    if not path.exists():
        return {}
    data = _read_structured(path) or {}
    hooks = data.get("hooks", {}) if isinstance(data, dict) else {}
    return hooks if isinstance(hooks, dict) else {}


def save_hooks_yaml(hooks: dict[str, dict], path: Path | None = None) -> Path:
    path = path or settings.hooks_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        HOOKS_HEADER + yaml.safe_dump({"hooks": hooks}, sort_keys=False),
        encoding="utf-8",
    )
    return path


def write_hooks_yaml(hooks: list[ScannedHook], path: Path | None = None) -> Path:
    """Merge scanned hooks into hooks.yaml, keyed by hook name."""
    path = path or settings.hooks_path
    existing = load_hooks_yaml(path)
    for hook in hooks:
        entry = hook.model_dump(exclude_none=True, exclude={"name"})
        entry.setdefault("state", "enabled")
        existing[hook.name] = entry
    return save_hooks_yaml(existing, path)


# ─── marketplaces.yaml ────────────────────────────────────────────────────


def load_marketplaces() -> dict[str, dict]:
    path = settings.marketplaces_path
    if not path.exists():
        return {}
    data = _read_structured(path) or {}
    return data if isinstance(data, dict) else {}


def register_marketplaces(names: set[str]) -> list[str]:
    """Add discovered marketplaces to marketplaces.yaml. Returns the new ones."""
    registry = load_marketplaces()
    added = []
    for name in sorted(names):
        if name not in registry:
            registry[name] = {"type": "claude-marketplace", "enabled": True, "discovered": True}
            added.append(name)
    if added:
        _write_structured(settings.marketplaces_path, registry)
        logger.info("Registered %d discovered marketplace(s): %s", len(added), ", ".join(added))
    return added
