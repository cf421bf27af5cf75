"""Publish pipeline: load → resolve → apply → changelog → commit → tag → publish.

This module orchestrates the monobump publish process:
1. Load the workspace and resolve its change files
2. Write new versions and dependency ranges into the package manifests
3. Update changelogs and delete the consumed change files
4. Commit the result, with dependencies in each policy's commit format, and
   tag every published package
5. Publish the packages to the registry in dependency order

``run_publish_all`` skips change files and publishes every project whose
manifest version is not in the registry yet.

Without ``should_commit`` nothing is written to disk. Without
``should_execute`` git and npm commands are only printed.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from .change_manager import ChangeManager
from .changefiles import ChangeFiles
from .changelog import create_tagname
from .deps import get_publish_manifest
from .errors import MonobumpError
from .models import ChangeType, Project, ResolvedChange
from .prerelease import PrereleaseToken
from .shell import exec_command, fatal, info, npm, step
from .versions import strip_build
from .workspace import Workspace


def get_published_versions(package_name: str, cwd: Path | None = None) -> set[str]:
    """Versions of package_name already in the registry.

    A package that was never published has no versions.
    """
    result = npm("view", package_name, "versions", "--json", cwd=cwd)
    if result.returncode != 0 or not result.stdout.strip():
        return set()
    versions = json.loads(result.stdout)
    if isinstance(versions, str):
        versions = [versions]
    return {strip_build(v) for v in versions}


def is_releasable(change: ResolvedChange, project: Project, prerelease: bool = False) -> bool:
    """Only real version changes are tagged and published.

    Dependency-only changes keep their version, unless a prerelease or
    suffix gives every affected package a new one.
    """
    if not project.should_publish:
        return False
    return prerelease or change.change_type > ChangeType.dependency


def is_version_published(version: str, published_versions: set[str]) -> bool:
    """Build metadata is ignored: "1.0.0+sha.1" counts as "1.0.0"."""
    return strip_build(version) in published_versions


def commit_changes(
    workspace: Workspace, changes: list[ResolvedChange], should_execute: bool
) -> None:
    """Stage and commit the updated manifests, changelogs and change files."""
    step("Committing version changes")
    summary = ", ".join(f"{c.package_name}@{c.new_version}" for c in changes)
    exec_command(should_execute, "git", "add", "--all", ".", cwd=workspace.root)
    if not exec_command(
        should_execute,
        "git",
        "commit",
        "--message",
        f"Bump versions [skip ci]\n\n{summary}",
        cwd=workspace.root,
    ):
        fatal("git commit failed")


def set_dependencies_before_commit(workspace: Workspace) -> list[str]:
    """Apply each policy's commit-time dependency format to its projects.

    The rewritten manifests are saved and adopted in memory, so manifests
    restored after ``npm publish`` keep the committed form.

    Returns:
        Names of the projects whose manifest changed.
    """
    updated: list[str] = []
    for project in workspace.projects.values():
        policy = workspace.version_policy(project)
        if policy is None:
            continue
        manifest = policy.set_dependencies_before_commit(project, workspace.projects)
        if manifest is None:
            continue
        info(f"  {project.name}: workspace dependencies set to *")
        workspace.save_manifest(project.name, manifest)
        updated.append(project.name)
    return updated


def _add_tag(workspace: Workspace, project: Project, should_execute: bool) -> str:
    version = project.version
    tag = create_tagname(project.name, version, workspace.settings.git_tag_separator)
    exec_command(
        should_execute,
        "git",
        "tag",
        "-a",
        tag,
        "-m",
        f"{project.name} v{version}",
        cwd=workspace.root,
    )
    return tag


def tag_packages(
    workspace: Workspace,
    changes: list[ResolvedChange],
    should_execute: bool,
    prerelease: bool = False,
) -> list[str]:
    """Create one git tag per published package.

    Returns:
        The tag names, in publish order.
    """
    step("Tagging packages")
    tags: list[str] = []
    for change in changes:
        project = workspace.projects[change.package_name]
        if is_releasable(change, project, prerelease):
            tags.append(_add_tag(workspace, project, should_execute))
    return tags


def _manifest_for_publish(workspace: Workspace, project: Project) -> dict[str, Any] | None:
    """The manifest npm should see, or None when it is the one on disk."""
    pinned = None
    policy = workspace.version_policy(project)
    if policy is not None:
        pinned = policy.set_dependencies_before_publish(project, workspace.projects)
    resolved = get_publish_manifest(pinned or project.manifest, workspace.projects)
    return resolved or pinned


def _publish_project(
    workspace: Workspace, project: Project, should_execute: bool, npm_tag: str | None
) -> bool:
    """Run ``npm publish`` for one project.

    While npm runs, the manifest carries exact versions where the policy asks
    for them and no "workspace:" specifiers. It is restored afterwards.

    Returns:
        False when the version is already in the registry.
    """
    folder = workspace.project_folder(project)
    if should_execute and is_version_published(
        project.version, get_published_versions(project.name, folder)
    ):
        info(f"  {project.name}@{project.version}: already published, skipping")
        return False

    original = project.manifest
    published = _manifest_for_publish(workspace, project) if should_execute else None
    if published is not None:
        workspace.save_manifest(project.name, published)

    args = ["npm", "publish"]
    if npm_tag:
        args += ["--tag", npm_tag]
    try:
        ok = exec_command(should_execute, *args, cwd=folder)
    finally:
        if published is not None:
            workspace.save_manifest(project.name, original)
    if not ok:
        fatal(f"Failed to publish {project.name}@{project.version}")
    return True


def publish_packages(
    workspace: Workspace,
    changes: list[ResolvedChange],
    should_execute: bool,
    npm_tag: str | None = None,
    prerelease: bool = False,
) -> list[str]:
    """Publish every changed package not yet in the registry, in order.

    Returns:
        Names of the packages that were published.
    """
    step("Publishing packages")
    published: list[str] = []
    for change in changes:
        project = workspace.projects[change.package_name]
        if not is_releasable(change, project, prerelease):
            continue
        if _publish_project(workspace, project, should_execute, npm_tag):
            published.append(project.name)
    return published


def publish_all(
    workspace: Workspace,
    should_execute: bool,
    npm_tag: str | None = None,
    policy_name: str | None = None,
) -> list[str]:
    """Publish every publishable project whose version is not in the registry.

    Change files are not read: each project goes out at its manifest
    version, dependencies first, and gets a git tag once published.

    Args:
        workspace: Loaded workspace.
        should_execute: Run npm and git instead of printing the commands.
        npm_tag: Dist-tag passed to ``npm publish``.
        policy_name: Only publish projects of this version policy.

    Returns:
        Names of the packages that were published.
    """
    step("Publishing all packages")
    published: list[str] = []
    for name in workspace.graph.order:
        project = workspace.projects[name]
        if not project.should_publish:
            continue
        if policy_name and project.version_policy_name != policy_name:
            continue
        if _publish_project(workspace, project, should_execute, npm_tag):
            _add_tag(workspace, project, should_execute)
            published.append(name)
    return published


def run_publish(
    root: Path | None = None,
    *,
    should_commit: bool = False,
    should_execute: bool = False,
    prerelease_token: PrereleaseToken | None = None,
    include_commit_details: bool = False,
    npm_tag: str | None = None,
) -> list[ResolvedChange]:
    """Run the full publish pipeline.

    Args:
        root: Folder inside the workspace; defaults to the current directory.
        should_commit: Write manifests, changelogs and policies, and delete
            the change files.
        should_execute: Run git and npm commands instead of printing them.
            Only takes effect together with should_commit.
        prerelease_token: Optional prerelease name or suffix.
        include_commit_details: Fill changelog authors/commits from git.
        npm_tag: Dist-tag passed to ``npm publish``.

    Returns:
        The resolved changes in publish order.
    """
    try:
        step("Loading workspace")
        workspace = Workspace.load(root)
        info(f"  {len(workspace.projects)} projects in {workspace.root}")

        step("Resolving change files")
        manager = ChangeManager(workspace)
        manager.load(
            prerelease_token=prerelease_token, include_commit_details=include_commit_details
        )
        if not manager.has_changes():
            info("  No changes found. Nothing to publish.")
            return []
        manager.validate_changes()
        ordered = manager.packages_to_publish
        for change in ordered:
            info(f"  {change.package_name}: {change.change_type.name} → {change.new_version}")

        step("Applying version changes")
        manager.apply(should_commit)
        manager.update_changelogs(should_commit)
        ChangeFiles(workspace.changes_folder).delete_all(should_commit)
        if should_commit:
            set_dependencies_before_commit(workspace)
    except MonobumpError as exc:
        fatal(str(exc))

    execute = should_execute and should_commit
    if should_commit:
        commit_changes(workspace, ordered, execute)
    prerelease = prerelease_token is not None and prerelease_token.has_value
    try:
        tag_packages(workspace, ordered, execute, prerelease)
        publish_packages(workspace, ordered, execute, npm_tag, prerelease)
    except MonobumpError as exc:
        fatal(str(exc))
    return ordered


def run_publish_all(
    root: Path | None = None,
    *,
    should_execute: bool = False,
    npm_tag: str | None = None,
    policy_name: str | None = None,
) -> list[str]:
    """Publish every project not yet in the registry, without change files.

    Returns:
        Names of the packages that were published.
    """
    try:
        step("Loading workspace")
        workspace = Workspace.load(root)
        info(f"  {len(workspace.projects)} projects in {workspace.root}")
        if policy_name:
            workspace.version_policies.get_version_policy(policy_name)
        published = publish_all(workspace, should_execute, npm_tag, policy_name)
    except MonobumpError as exc:
        fatal(str(exc))
    return published
