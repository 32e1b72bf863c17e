"""Configuration for mycelium."""

import sys
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Mycelium configuration loaded from environment and .env file."""

    # Managed config root (source of truth for skills, MCPs, memory, hooks)
    home: Path = Path.home() / ".mycelium"

    # Base directory that "~" expands to in tool descriptor paths
    user_home: Path = Path.home()

    # Project root for project-level configs (.mycelium/ inside it)
    project_root: Path = Path.cwd()

    # OS platform used to pick per-platform tool paths (darwin, linux, win32)
    platform: str = sys.platform

    # Keep debug-level trace entries
    debug: bool = False

    # Skill files named like this are discovered by the scanners
    skill_filename: str = "SKILL.md"

    model_config = {"env_prefix": "MYCELIUM_", "env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def global_dir(self) -> Path:
        return self.home / "global"

    @property
    def skills_dir(self) -> Path:
        return self.global_dir / "skills"

    @property
    def mcps_path(self) -> Path:
        return self.global_dir / "mcps.yaml"

    @property
    def hooks_path(self) -> Path:
        return self.global_dir / "hooks.yaml"

    @property
    def memory_dir(self) -> Path:
        return self.home / "memory"

    @property
    def manifest_path(self) -> Path:
        """Item-state manifest (v1/v2 skills/mcps/hooks/memory sections)."""
        return self.home / "manifest.yaml"

    @property
    def plugin_skills_path(self) -> Path:
        """Legacy per-plugin skill toggles merged in by the v2 upgrade."""
        return self.home / "plugin-skills.json"

    @property
    def migration_manifest_path(self) -> Path:
        return self.home / "migration-manifest.json"

    @property
    def marketplaces_path(self) -> Path:
        return self.home / "marketplaces.yaml"

    @property
    def snapshots_dir(self) -> Path:
        return self.home / "snapshots"

    @property
    def traces_dir(self) -> Path:
        return self.home / "traces"

    @property
    def project_dir(self) -> Path:
        return self.project_root / ".mycelium"

    def snapshot_dir(self, name: str) -> Path:
        """Return the directory holding a named snapshot."""
        return self.snapshots_dir / name


settings = Settings()
