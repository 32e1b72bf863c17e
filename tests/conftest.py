"""Shared fixtures: point settings at a throwaway home and managed root."""

import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from mycelium.config import settings


@pytest.fixture
def env(tmp_path, monkeypatch):
    """Redirect the managed root, user home and project root into tmp_path."""
    user_home = tmp_path / "home"
    home = user_home / ".mycelium"
    project = tmp_path / "project"
    for d in (user_home, home, project):
        d.mkdir(parents=True)

    monkeypatch.setattr(settings, "home", home)
    monkeypatch.setattr(settings, "user_home", user_home)
    monkeypatch.setattr(settings, "project_root", project)
    monkeypatch.setattr(settings, "platform", "linux")
    monkeypatch.setattr(settings, "debug", False)

    return SimpleNamespace(home=home, user_home=user_home, project=project, tmp=tmp_path)
