"""Loading, resolving and applying change files."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable

from . import changelog
from .changefiles import ChangeFiles
from .deps import update_packages
from .errors import ConfigurationError
from .models import ChangeRequests, ResolvedChange
from .policies import LockStepVersionPolicy
from .prerelease import PrereleaseToken
from .propagation import find_change_requests, sort_change_requests
from .workspace import Workspace


class ChangeManager:
    """Resolves the change files of a workspace and applies the result.

    Typical use::

        manager = ChangeManager(workspace)
        manager.load()
        if manager.has_changes():
            manager.validate_changes()
            manager.apply(should_commit=True)
            manager.update_changelogs(should_commit=True)
    """

    def __init__(
        self, workspace: Workspace, projects_to_exclude: Iterable[str] | None = None
    ) -> None:
        self.workspace = workspace
        self.projects_to_exclude = frozenset(projects_to_exclude or ())
        self.prerelease_token: PrereleaseToken | None = None
        self._requests = ChangeRequests()
        self._ordered: list[ResolvedChange] = []

    def load(
        self,
        changes_path: Path | None = None,
        prerelease_token: PrereleaseToken | None = None,
        include_commit_details: bool = False,
    ) -> None:
        """Read the change files and resolve them.

        Args:
            changes_path: Folder to read; defaults to the workspace's.
            prerelease_token: Optional prerelease name or suffix.
            include_commit_details: Fill author/commit from git history.
        """
        self.prerelease_token = prerelease_token
        change_files = ChangeFiles(changes_path or self.workspace.changes_folder)
        self._requests = find_change_requests(
            self.workspace,
            change_files.load(include_commit_details),
            prerelease_token,
            self.projects_to_exclude,
        )
        self._ordered = sort_change_requests(self._requests)

    def has_changes(self) -> bool:
        return bool(self._requests.package_changes or self._requests.version_policy_changes)

    @property
    def changes(self) -> ChangeRequests:
        return self._requests

    @property
    def packages_to_publish(self) -> list[ResolvedChange]:
        """Resolved changes in publish order."""
        return list(self._ordered)

    def validate_changes(self) -> None:
        """Check every resolved version against its project's version policy.

        Lockstep members are checked against the policy's pending version
        when the policy itself is changing.

        Raises:
            ConfigurationError: If a version breaks its policy.
        """
        policy_changes = self._requests.version_policy_changes
        for change in self._ordered:
            project = self.workspace.projects[change.package_name]
            policy = self.workspace.version_policy(project)
            if policy is None or not change.new_version:
                continue
            pending = policy_changes.get(policy.policy_name)
            if isinstance(policy, LockStepVersionPolicy) and pending is not None:
                if change.new_version != pending.new_version:
                    raise ConfigurationError(
                        f"Invalid version {change.new_version} in {project.name}: "
                        f"policy {policy.policy_name} moves to {pending.new_version}"
                    )
            else:
                policy.validate(change.new_version, project.name)

    def apply(self, should_commit: bool) -> dict[str, dict[str, Any]] | None:
        """Update policies and manifests for the resolved changes.

        The updated manifests replace the in-memory ones and, when
        should_commit is set, are written to disk.

        Returns:
            Map of package name → updated manifest, or None without changes.
        """
        if not self.has_changes():
            return None

        for policy_name, policy_change in self._requests.version_policy_changes.items():
            self.workspace.version_policies.update(
                policy_name, policy_change.new_version, should_commit
            )

        updated = update_packages(
            self.workspace,
            self._requests,
            should_commit,
            self.prerelease_token,
            self.projects_to_exclude,
        )
        for name, manifest in updated.items():
            if should_commit:
                self.workspace.save_manifest(name, manifest)
            else:
                self.workspace.projects[name].manifest = manifest
        return updated

    def update_changelogs(self, should_commit: bool) -> list[changelog.Changelog]:
        return changelog.update_changelogs(self.workspace, self._requests, should_commit)
