"""Version policy enforcement and policy-driven bumps.

``ensure`` makes every project agree with its version policy and fixes the
dependency ranges that point at projects it moved. ``bump`` advances
lockstep policies, runs ``ensure``, then applies pending change files for
the projects that are not versioned by a lockstep policy.
"""

from __future__ import annotations

import copy
from typing import Any

from .change_manager import ChangeManager
from .changefiles import ChangeFile
from .models import DEPENDENCY_TABLES, ChangeDescriptor, ChangeType, Project
from .policies import BumpType, LockStepVersionPolicy
from .ranges import get_new_dependency_version, parse_specifier, satisfies
from .shell import warn
from .versions import is_prerelease
from .workspace import Workspace


class VersionManager:
    """Applies version policies to a workspace.

    Attributes:
        workspace: The workspace being versioned. ``bump`` replaces it with
            one reflecting the updated manifests.
        updated_projects: Package name → updated manifest, for every project
            changed so far.
        change_files: Generated change files by package name.
    """

    def __init__(self, workspace: Workspace, user_email: str | None = None) -> None:
        self.workspace = workspace
        self.user_email = user_email
        self.updated_projects: dict[str, dict[str, Any]] = {}
        self.change_files: dict[str, ChangeFile] = {}

    def ensure(
        self, policy_name: str | None = None, should_commit: bool = False, force: bool = False
    ) -> None:
        """Align projects with their version policies.

        Args:
            policy_name: Only check projects of this policy; all when None.
            should_commit: Write manifests and change files to disk.
            force: Move lockstep members down to the policy version even if
                they are ahead of it.
        """
        self._ensure(policy_name, should_commit, force)

    def bump(
        self,
        policy_name: str | None = None,
        bump_type: BumpType | None = None,
        identifier: str | None = None,
        should_commit: bool = False,
    ) -> None:
        """Bump version policies, then apply change files to the other projects.

        Args:
            policy_name: Only bump this policy; all when None.
            bump_type: Overrides each lockstep policy's nextBump.
            identifier: Prerelease identifier for pre* bump types.
            should_commit: Write policies, manifests and changelogs to disk.
        """
        self.workspace.version_policies.bump(policy_name, bump_type, identifier, should_commit)
        self._ensure(policy_name, should_commit)

        self.workspace = self.workspace.with_manifests(self.updated_projects)
        change_manager = ChangeManager(self.workspace, self._lockstep_projects())
        change_manager.load()
        if not change_manager.has_changes():
            return
        change_manager.validate_changes()
        updated = change_manager.apply(should_commit) or {}
        self.updated_projects.update(updated)
        change_manager.update_changelogs(should_commit)

    def _lockstep_projects(self) -> set[str]:
        """Projects moved by a lockstep policy bump rather than by change files."""
        names = set()
        for project in self.workspace.projects.values():
            policy = self.workspace.version_policy(project)
            if isinstance(policy, LockStepVersionPolicy) and policy.next_bump is not None:
                names.add(project.name)
        return names

    def _ensure(
        self, policy_name: str | None = None, should_commit: bool = False, force: bool = False
    ) -> None:
        self._update_versions_by_policy(policy_name, force)
        # Each pass may move versions that other projects depend on.
        while self._update_dependencies():
            pass
        if should_commit:
            for name, manifest in self.updated_projects.items():
                if name in self.workspace.projects:
                    self.workspace.save_manifest(name, manifest)
            for change_file in self.change_files.values():
                change_file.write()

    def _update_versions_by_policy(self, policy_name: str | None, force: bool) -> None:
        for project in self.workspace.projects.values():
            if not project.version_policy_name:
                continue
            if policy_name and project.version_policy_name != policy_name:
                continue
            policy = self.workspace.version_policy(project)
            manifest = self.updated_projects.get(project.name, project.manifest)
            updated = policy.ensure(manifest, force)
            if updated is None:
                continue
            self.updated_projects[project.name] = updated
            if not is_prerelease(updated["version"]) and self.workspace.is_main_project(project):
                self._add_change_info(
                    project.name,
                    [
                        ChangeDescriptor(
                            package_name=project.name,
                            change_type=ChangeType.none,
                            new_version=updated["version"],
                        )
                    ],
                )

    def _update_dependencies(self) -> bool:
        updated = False
        for project in self.workspace.projects.values():
            cloned = self.updated_projects.get(project.name)
            version_changed = cloned is not None
            if cloned is None:
                cloned = copy.deepcopy(project.manifest)
            if self._update_project_dependencies(project, cloned, version_changed):
                updated = True
        return updated

    def _update_project_dependencies(
        self, project: Project, cloned: dict[str, Any], version_changed: bool
    ) -> bool:
        changes: list[ChangeDescriptor] = []
        updated = False
        for table in DEPENDENCY_TABLES:
            dependencies = cloned.get(table)
            if not dependencies:
                continue
            for dep_name, dep_manifest in list(self.updated_projects.items()):
                if dep_name not in dependencies:
                    continue
                if dep_name in project.decoupled_local_dependencies:
                    warn(f"Not updating decoupled dependency {dep_name} of {project.name}")
                    continue
                old_specifier = dependencies[dep_name]
                new_specifier = get_new_dependency_version(
                    dependencies, dep_name, dep_manifest["version"]
                )
                if new_specifier == old_specifier:
                    continue
                updated = True
                if self._should_track_dependency_change(project, dep_name):
                    self._track_dependency_change(
                        changes, cloned, version_changed, dep_manifest, old_specifier, new_specifier
                    )
                dependencies[dep_name] = new_specifier

        if updated:
            self.updated_projects[project.name] = cloned
            self._add_change_info(project.name, changes)
        return updated

    def _should_track_dependency_change(self, project: Project, dep_name: str) -> bool:
        dependency = self.workspace.get_project(dep_name)
        if dependency is None or not project.should_publish:
            return False
        policy = self.workspace.version_policy(project)
        if policy is None or not policy.is_lockstepped:
            return True
        # Lockstep members share one changelog, kept by the main project.
        return (
            self.workspace.is_main_project(project)
            and dependency.version_policy_name != project.version_policy_name
        )

    def _track_dependency_change(
        self,
        changes: list[ChangeDescriptor],
        cloned: dict[str, Any],
        version_changed: bool,
        dep_manifest: dict[str, Any],
        old_specifier: str,
        new_specifier: str,
    ) -> None:
        name = cloned["name"]
        old_range = parse_specifier(dep_manifest["name"], old_specifier).version_specifier
        if not version_changed and not satisfies(dep_manifest["version"], old_range):
            _add_change(changes, ChangeDescriptor(package_name=name, change_type=ChangeType.patch))
        if not is_prerelease(dep_manifest["version"]) and not is_prerelease(cloned["version"]):
            _add_change(
                changes,
                ChangeDescriptor(
                    package_name=name,
                    change_type=ChangeType.dependency,
                    comment=(
                        f"Dependency {dep_manifest['name']} version bump from "
                        f"{old_specifier} to {new_specifier}."
                    ),
                ),
            )

    def _add_change_info(self, package_name: str, changes: list[ChangeDescriptor]) -> None:
        if not changes:
            return
        change_file = self.change_files.get(package_name)
        if change_file is None:
            change_file = ChangeFile(package_name, self.workspace.changes_folder, self.user_email)
            self.change_files[package_name] = change_file
        for change in changes:
            change_file.add_change(change)


def _add_change(changes: list[ChangeDescriptor], change: ChangeDescriptor) -> None:
    if change not in changes:
        changes.append(change)
