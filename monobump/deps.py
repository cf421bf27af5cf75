"""Manifest updates for resolved changes.

Given resolved change requests, produces the updated ``package.json`` of
every affected package: its new version, and dependency ranges rewritten to
point at the new versions of other affected packages. Manifests are returned
as copies; writing them is the caller's job. ``get_publish_manifest`` gives the
form of a manifest that is handed to npm.
"""

from __future__ import annotations

import copy
from typing import Any, Iterable, Mapping

from .errors import ConfigurationError
from .models import (
    DEPENDENCY_TABLES,
    ChangeDescriptor,
    ChangeRequests,
    ChangeType,
    Project,
    ResolvedChange,
)
from .prerelease import PrereleaseToken
from .ranges import (
    WORKSPACE_PREFIX,
    get_new_dependency_version,
    get_publish_dependency_version,
    parse_specifier,
)
from .shell import info
from .versions import inc
from .workspace import Workspace


def get_change_info_new_version(
    change: ResolvedChange, prerelease_token: PrereleaseToken | None
) -> str:
    """Version to write for a resolved change, with any prerelease token applied.

    With a full prerelease, ``dependency`` changes are moved to the next
    patch first so the prerelease sorts above the current version. With a
    partial prerelease, changes up to hotfix keep their version.
    """
    new_version = change.new_version
    if prerelease_token is None or not prerelease_token.has_value:
        return new_version
    if prerelease_token.is_partial_prerelease and change.change_type <= ChangeType.hotfix:
        return new_version
    if prerelease_token.is_prerelease and change.change_type == ChangeType.dependency:
        new_version = inc(new_version, "patch")
    return f"{new_version}-{prerelease_token.name}"


def update_packages(
    workspace: Workspace,
    requests: ChangeRequests,
    should_commit: bool = False,
    prerelease_token: PrereleaseToken | None = None,
    projects_to_exclude: Iterable[str] | None = None,
) -> dict[str, dict[str, Any]]:
    """Compute updated manifests for every package in requests.

    Comments describing each rewritten dependency are appended to the
    consumer's resolved change, so they reach the changelog.

    Args:
        workspace: Loaded workspace; its manifests are not modified.
        requests: Output of find_change_requests.
        should_commit: Only selects the APPLYING/DRYRUN label of the output.
        prerelease_token: The token the requests were resolved with.
        projects_to_exclude: Projects that keep their current version.

    Returns:
        Map of package name → updated manifest copy.
    """
    writer = _ManifestWriter(workspace, requests, prerelease_token, projects_to_exclude)
    label = "APPLYING" if should_commit else "DRYRUN"
    updated: dict[str, dict[str, Any]] = {}
    for name, change in requests.package_changes.items():
        updated[name] = writer.write(change, label)
    return updated


class _ManifestWriter:
    def __init__(self, workspace, requests, prerelease_token, projects_to_exclude) -> None:
        self.workspace = workspace
        self.requests = requests
        self.token = prerelease_token
        self.excluded = frozenset(projects_to_exclude or ())

    @property
    def prerelease_active(self) -> bool:
        return self.token is not None and self.token.has_value

    def _keeps_version(self, project: Project) -> bool:
        return not project.should_publish or project.name in self.excluded

    def write(self, change: ResolvedChange, label: str) -> dict[str, Any]:
        project = self.workspace.projects[change.package_name]
        manifest = copy.deepcopy(project.manifest)
        if self._keeps_version(project):
            new_version = project.version
        else:
            new_version = get_change_info_new_version(change, self.token)
        info(f"\n* {label}: {change.change_type.name} update for {project.name} to {new_version}")
        manifest["version"] = new_version

        for table in DEPENDENCY_TABLES:
            dependencies = manifest.get(table)
            if dependencies:
                self._update_dependencies(project, dependencies)

        for entry in change.changes:
            if entry.comment:
                info(f"  - [{entry.resolve_change_type().name}] {entry.comment}")
        return manifest

    def _update_dependencies(self, project: Project, dependencies: dict[str, str]) -> None:
        for dep_name in list(dependencies):
            if dep_name in project.decoupled_local_dependencies:
                continue
            dep_change = self.requests.package_changes.get(dep_name)
            if dep_change is None:
                continue
            dep_project = self.workspace.projects[dep_name]
            if self._keeps_version(dep_project):
                continue
            if (
                self.prerelease_active
                and self.token.is_partial_prerelease
                and dep_change.change_type < ChangeType.hotfix
            ):
                continue

            if self.prerelease_active:
                # Prereleases always pin the exact prerelease version.
                specifier = parse_specifier(dep_name, dependencies[dep_name])
                new_version = get_change_info_new_version(dep_change, self.token)
                if specifier.is_workspace and not specifier.is_workspace_wildcard:
                    new_version = f"{WORKSPACE_PREFIX}{new_version}"
                dependencies[dep_name] = new_version
            elif dep_change.change_type >= ChangeType.hotfix:
                self._update_dependency_version(project, dependencies, dep_name, dep_change)

    def _update_dependency_version(
        self,
        project: Project,
        dependencies: dict[str, str],
        dep_name: str,
        dep_change: ResolvedChange,
    ) -> None:
        current = parse_specifier(dep_name, dependencies[dep_name])
        if current.is_workspace_wildcard:
            # Wildcards are resolved to a concrete version in the published manifest.
            new_specifier = get_publish_dependency_version(current, dep_change.new_version)
            comment = f'Updating dependency "{dep_name}" to `{new_specifier}`'
        else:
            new_specifier = get_new_dependency_version(
                dependencies, dep_name, dep_change.new_version
            )
            updated = parse_specifier(dep_name, new_specifier)
            comment = (
                f'Updating dependency "{dep_name}" from `{current.version_specifier}` '
                f"to `{updated.version_specifier}`"
            )
        if new_specifier == dependencies[dep_name]:
            return
        dependencies[dep_name] = new_specifier

        own_change = self.requests.package_changes.get(project.name)
        if own_change is not None and comment not in own_change.comments:
            own_change.changes.append(
                ChangeDescriptor(
                    package_name=project.name,
                    change_type=ChangeType.dependency,
                    comment=comment,
                )
            )


def get_publish_manifest(
    manifest: dict[str, Any], projects: Mapping[str, Project]
) -> dict[str, Any] | None:
    """Copy of manifest with every "workspace:" specifier in a form npm can install.

    "workspace:*", "workspace:~" and "workspace:^" resolve against the local
    project's current version; "workspace:^1.2.0" just drops its prefix.

    Returns:
        The copy, or None when no specifier uses the workspace protocol.

    Raises:
        ConfigurationError: For a workspace wildcard naming an unknown project.
    """
    published = copy.deepcopy(manifest)
    changed = False
    for table in DEPENDENCY_TABLES:
        dependencies = published.get(table) or {}
        for dep_name, raw in dependencies.items():
            specifier = parse_specifier(dep_name, raw)
            if not specifier.is_workspace:
                continue
            if specifier.is_workspace_wildcard:
                dependency = projects.get(dep_name)
                if dependency is None:
                    raise ConfigurationError(
                        f'Cannot resolve "{raw}" for {dep_name}: not a workspace project'
                    )
                dependencies[dep_name] = get_publish_dependency_version(
                    specifier, dependency.version
                )
            else:
                dependencies[dep_name] = specifier.version_specifier
            changed = True
    return published if changed else None
