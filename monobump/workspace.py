"""Workspace discovery and package manifest I/O.

A workspace is a root folder with a ``monobump.toml`` that lists its
projects. Each project folder holds a ``package.json`` manifest.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Mapping

from pydantic import ValidationError

from .errors import ConfigurationError
from .graph import ProjectGraph
from .models import Project, WorkspaceSettings
from .policies import LockStepVersionPolicy, VersionPolicy, VersionPolicyConfiguration
from .toml import CONFIG_FILENAME, get_project_entries, get_workspace_settings, load_config

MANIFEST_FILENAME = "package.json"


def load_manifest(path: Path) -> dict[str, Any]:
    """Load a package.json file."""
    try:
        return json.loads(path.read_text())
    except FileNotFoundError:
        raise ConfigurationError(f"Package manifest not found: {path}") from None
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid JSON in {path}: {exc}") from exc


def save_manifest(path: Path, manifest: dict[str, Any]) -> None:
    """Save a package.json file with 2-space indentation and a trailing newline."""
    path.write_text(json.dumps(manifest, indent=2) + "\n")


def find_workspace_root(start: Path | None = None) -> Path:
    """Walk up from start (default: cwd) to the folder holding monobump.toml."""
    current = (start or Path.cwd()).resolve()
    for folder in (current, *current.parents):
        if (folder / CONFIG_FILENAME).is_file():
            return folder
    raise ConfigurationError(f"No {CONFIG_FILENAME} found in {current} or any parent folder")


class Workspace:
    """Loaded workspace: settings, projects, their graph and version policies.

    Attributes:
        root: Absolute path of the workspace root.
        settings: The [workspace] table.
        projects: Projects by name, in configuration order.
        graph: Consumer graph between the projects.
        version_policies: Version policies by name.
    """

    def __init__(
        self,
        root: Path,
        settings: WorkspaceSettings,
        projects: list[Project],
        version_policies: VersionPolicyConfiguration,
    ) -> None:
        self.root = root
        self.settings = settings
        self.projects: dict[str, Project] = {project.name: project for project in projects}
        self.version_policies = version_policies
        self.graph = ProjectGraph(projects)
        for project in projects:
            if project.version_policy_name:
                # Fails early on unknown policy names.
                version_policies.get_version_policy(project.version_policy_name)
        version_policies.validate(self.projects)

    @classmethod
    def load(cls, root: Path | None = None) -> Workspace:
        """Load the workspace containing root (default: current directory).

        Raises:
            ConfigurationError: For a missing or invalid configuration, a
                missing manifest, a manifest whose name differs from its
                configured name, an unknown version policy, or a dependency
                cycle.
        """
        root = find_workspace_root(root)
        doc = load_config(root / CONFIG_FILENAME)
        settings = get_workspace_settings(doc)
        projects: list[Project] = []
        for entry in get_project_entries(doc):
            manifest = load_manifest(root / entry["path"] / MANIFEST_FILENAME)
            if manifest.get("name") != entry["name"]:
                raise ConfigurationError(
                    f"Project {entry['name']!r} has manifest name {manifest.get('name')!r}"
                )
            try:
                projects.append(Project.model_validate({**entry, "manifest": manifest}))
            except ValidationError as exc:
                raise ConfigurationError(f"Invalid project entry {entry['name']!r}: {exc}") from exc
        policies = VersionPolicyConfiguration(root / settings.version_policies)
        return cls(root, settings, projects, policies)

    def with_manifests(self, manifests: Mapping[str, dict[str, Any]]) -> Workspace:
        """Return a workspace whose projects use the given manifests.

        Projects not named in manifests keep their current manifest. Settings
        and version policies are shared with this workspace.
        """
        projects = [
            project.model_copy(update={"manifest": manifests.get(name, project.manifest)})
            for name, project in self.projects.items()
        ]
        return Workspace(self.root, self.settings, projects, self.version_policies)

    @property
    def changes_folder(self) -> Path:
        return self.root / self.settings.changes_folder

    def get_project(self, name: str) -> Project | None:
        return self.projects.get(name)

    def project_folder(self, project: Project) -> Path:
        return self.root / project.path

    def version_policy(self, project: Project) -> VersionPolicy | None:
        """Policy of project, or None. Unknown names raise PolicyNotFoundError."""
        if not project.version_policy_name:
            return None
        return self.version_policies.get_version_policy(project.version_policy_name)

    def is_main_project(self, project: Project) -> bool:
        """False only for lockstep members other than the policy's main project."""
        policy = self.version_policy(project)
        if isinstance(policy, LockStepVersionPolicy) and policy.main_project:
            return policy.main_project == project.name
        return True

    def save_manifest(self, name: str, manifest: dict[str, Any]) -> Path:
        """Write a project's manifest to disk and adopt it in memory."""
        project = self.projects[name]
        path = self.project_folder(project) / MANIFEST_FILENAME
        save_manifest(path, manifest)
        project.manifest = manifest
        return path
