"""Data models for mycelium."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ItemState = Literal["enabled", "disabled", "deleted"]
MemoryScope = Literal["shared", "coding", "personal"]
ConflictStrategy = Literal["latest", "interactive", "all"]
SyncStrategy = Literal["symlink", "copy"]
ItemType = Literal["skill", "mcp", "memory", "hook"]


class _CamelModel(BaseModel):
    """Model persisted with camelCase keys, constructed with snake_case names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ─── Managed items ────────────────────────────────────────────────────────


class McpServerConfig(_CamelModel):
    """Canonical MCP server definition as stored in mcps.yaml."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    command: str = ""
    args: list[str] | None = None
    env: dict[str, str] | None = None
    enabled: bool | None = None  # v1 flag, superseded by state
    state: ItemState | None = None
    source: str | None = None
    tools: list[str] | None = None
    exclude_tools: list[str] | None = None

    @property
    def is_active(self) -> bool:
        if self.enabled is False:
            return False
        return self.state is None or self.state == "enabled"


class MergedConfig(BaseModel):
    """Result of layering global and project configs (project wins)."""

    mcps: dict[str, McpServerConfig] = Field(default_factory=dict)
    skills: dict[str, dict[str, Any]] = Field(default_factory=dict)
    sources: dict[str, str] = Field(default_factory=dict)


class ConfigConflict(BaseModel):
    """Same MCP/skill defined differently at global and project level."""

    type: Literal["mcp", "skill"]
    name: str
    message: str
    global_value: Any = None
    project_value: Any = None


# ─── Scanning ─────────────────────────────────────────────────────────────


class ScannedSkill(BaseModel):
    name: str
    path: str
    source: str
    version: str | None = None
    last_updated: datetime | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    marketplace: str | None = None
    plugin_name: str | None = None


class ScannedMcp(BaseModel):
    name: str
    config: McpServerConfig
    source: str
    project_path: str | None = None
    last_updated: datetime | None = None


class ScannedMemory(BaseModel):
    name: str
    path: str
    source: str
    scope: MemoryScope = "shared"
    content: str | None = None
    last_updated: datetime | None = None


class ScannedHook(BaseModel):
    name: str
    source: str
    path: str | None = None
    event: str | None = None
    matchers: list[str] | None = None
    command: str | None = None
    timeout: int | None = None


class ToolScanResult(BaseModel):
    """Everything found in one tool's native config. Never persisted."""

    tool_id: str
    tool_name: str
    installed: bool = False
    skills: list[ScannedSkill] = Field(default_factory=list)
    mcps: list[ScannedMcp] = Field(default_factory=list)
    memory: list[ScannedMemory] = Field(default_factory=list)
    hooks: list[ScannedHook] = Field(default_factory=list)


# ─── Migration ────────────────────────────────────────────────────────────

ConflictEntry = ScannedSkill | ScannedMcp | ScannedMemory


class MigrationConflict(BaseModel):
    """Same-named item found in more than one tool."""

    name: str
    type: Literal["skill", "mcp", "memory"]
    entries: list[ConflictEntry] = Field(default_factory=list)
    resolved: ConflictEntry | None = None


class MigrationPlan(BaseModel):
    skills: list[ScannedSkill] = Field(default_factory=list)
    mcps: list[ScannedMcp] = Field(default_factory=list)
    memory: list[ScannedMemory] = Field(default_factory=list)
    hooks: list[ScannedHook] = Field(default_factory=list)
    conflicts: list[MigrationConflict] = Field(default_factory=list)
    strategy: ConflictStrategy = "latest"

    @property
    def unresolved(self) -> list[MigrationConflict]:
        return [c for c in self.conflicts if c.resolved is None]


class MigrationManifestEntry(_CamelModel):
    name: str
    type: ItemType
    source: str
    original_path: str = ""
    imported_path: str = ""
    imported_at: str = ""
    version: str | None = None
    strategy: ConflictStrategy | None = None
    marketplace: str | None = None
    plugin_name: str | None = None


class MigrationManifest(_CamelModel):
    """Record of every item imported by the last migration(s)."""

    version: str = "1.0.0"
    last_migration: str = ""
    entries: list[MigrationManifestEntry] = Field(default_factory=list)


class MigrationResult(BaseModel):
    success: bool
    skills_imported: int = 0
    mcps_imported: int = 0
    memory_imported: int = 0
    hooks_imported: int = 0
    conflicts: list[MigrationConflict] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    manifest: MigrationManifest = Field(default_factory=MigrationManifest)


class ClearResult(BaseModel):
    cleared: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


# ─── File sync ────────────────────────────────────────────────────────────


class FileSyncItem(BaseModel):
    name: str
    path: str
    state: ItemState | None = None

    @property
    def is_enabled(self) -> bool:
        return self.state is None or self.state == "enabled"


class FileSyncError(BaseModel):
    item: str
    error: str


class FileSyncResult(BaseModel):
    success: bool = True
    created: list[str] = Field(default_factory=list)
    updated: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)
    unchanged: list[str] = Field(default_factory=list)
    errors: list[FileSyncError] = Field(default_factory=list)


class SyncWriteResult(BaseModel):
    """Outcome of writing MCPs, hooks or memory into one tool's native file."""

    tool_id: str
    config_path: str = ""
    success: bool = True
    written: list[str] = Field(default_factory=list)
    error: str | None = None
    backup_path: str | None = None


class SyncPreview(BaseModel):
    """A tool config as it is now and as a sync would leave it."""

    tool_id: str
    config_path: str
    current_content: str | None = None
    new_content: str


class BackupRestoreResult(BaseModel):
    restored: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


# ─── Snapshots ────────────────────────────────────────────────────────────


class SnapshotMetadata(_CamelModel):
    name: str
    created_at: str
    description: str | None = None
    file_list: list[str] = Field(default_factory=list)
    skill_symlinks: dict[str, str] = Field(default_factory=dict)
