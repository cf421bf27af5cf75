"""Workspace configuration (``monobump.toml``) reading.

Uses tomlkit, like every other TOML touchpoint in the project. The file has a
``[workspace]`` table with global settings and one ``[[projects]]`` entry per
package::

    [workspace]
    changes-folder = "common/changes"
    version-policies = "common/config/version-policies.json"
    hotfix-change-enabled = true
    git-tag-separator = "_"

    [[projects]]
    name = "a"
    path = "packages/a"
    should-publish = true
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import tomlkit
from pydantic import ValidationError
from tomlkit.exceptions import ParseError

from .errors import ConfigurationError
from .models import WorkspaceSettings

CONFIG_FILENAME = "monobump.toml"


def load_config(path: Path) -> tomlkit.TOMLDocument:
    """Load and parse the workspace configuration file.

    Raises:
        ConfigurationError: If the file is missing or not valid TOML.
    """
    if not path.is_file():
        raise ConfigurationError(f"Workspace configuration not found: {path}")
    try:
        return tomlkit.parse(path.read_text())
    except ParseError as exc:
        raise ConfigurationError(f"Invalid TOML in {path}: {exc}") from exc


def get_workspace_settings(doc: tomlkit.TOMLDocument) -> WorkspaceSettings:
    """Extract the [workspace] table, applying defaults for missing keys."""
    try:
        return WorkspaceSettings.model_validate(doc.unwrap().get("workspace", {}))
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid [workspace] table: {exc}") from exc


def get_project_entries(doc: tomlkit.TOMLDocument) -> list[dict[str, Any]]:
    """Extract the [[projects]] entries as plain dicts.

    Raises:
        ConfigurationError: If an entry lacks a name or path, or a name is
            listed twice.
    """
    entries: list[dict[str, Any]] = doc.unwrap().get("projects", [])
    seen: set[str] = set()
    for entry in entries:
        if not entry.get("name") or not entry.get("path"):
            raise ConfigurationError(f"Project entry needs both name and path: {entry}")
        if entry["name"] in seen:
            raise ConfigurationError(f"Project {entry['name']!r} is listed more than once")
        seen.add(entry["name"])
    return entries
