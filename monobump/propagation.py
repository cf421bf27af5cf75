"""Change resolution.

Turns the change descriptors read from change files into one resolved
change per affected package:

1. Each descriptor is merged into its package's entry (largest magnitude
   wins, hotfix cannot be mixed with patch/minor/major) and a new version is
   computed.
2. Changes flow downstream: a consumer whose range no longer matches the new
   version gets a ``dependency`` change if its range still accepts the new
   version, else a ``patch`` change. Hotfixes propagate as hotfixes.
   Consumers of a package that keeps its version get a ``dependency``
   change, transitively.
3. Lockstep policies move every member to the largest version any member
   reached.
4. Steps 2 and 3 repeat until nothing changes, then versions are recomputed
   from the final magnitudes and every entry gets its depth: one more than
   the deepest changed project it depends on.

The workspace is only read. The result is returned to the caller.
"""

from __future__ import annotations

from collections import deque
from typing import Iterable

from .errors import ChangeConflictError
from .models import (
    DEPENDENCY_TABLES,
    ChangeDescriptor,
    ChangeRequests,
    ChangeType,
    Project,
    ResolvedChange,
    VersionPolicyChange,
    release_type,
)
from .policies import LockStepVersionPolicy
from .prerelease import PrereleaseToken
from .ranges import new_range_dependency, parse_specifier, satisfies
from .shell import info, warn
from .versions import gt, inc, is_prerelease
from .workspace import Workspace


def find_change_requests(
    workspace: Workspace,
    changes: Iterable[ChangeDescriptor],
    prerelease_token: PrereleaseToken | None = None,
    projects_to_exclude: Iterable[str] | None = None,
) -> ChangeRequests:
    """Resolve change descriptors against the workspace.

    Args:
        workspace: Loaded workspace; not modified.
        changes: Descriptors in the order they should be merged.
        prerelease_token: Optional prerelease name or suffix. When set,
            every consumer of a changed package is republished too.
        projects_to_exclude: Projects that keep their current version.

    Returns:
        The resolved package changes and lockstep policy changes.

    Raises:
        ChangeConflictError: For a hotfix mixed with a larger change on one
            package, or a hotfix while hotfixes are disabled.
        ChangeFileError: For an unknown change type in a change file.
    """
    return _Resolver(workspace, prerelease_token, projects_to_exclude).resolve(changes)


def sort_change_requests(requests: ChangeRequests) -> list[ResolvedChange]:
    """Resolved changes in publish order: by depth, then by name."""
    return sorted(
        requests.package_changes.values(), key=lambda change: (change.order, change.package_name)
    )


def should_skip_version_bump(
    project: Project,
    prerelease_token: PrereleaseToken | None,
    projects_to_exclude: Iterable[str] = (),
) -> bool:
    """Suffix releases, excluded projects and unpublished projects keep their version."""
    return (
        (prerelease_token is not None and prerelease_token.is_suffix)
        or project.name in projects_to_exclude
        or not project.should_publish
    )


class _Resolver:
    def __init__(
        self,
        workspace: Workspace,
        prerelease_token: PrereleaseToken | None,
        projects_to_exclude: Iterable[str] | None,
    ) -> None:
        self.workspace = workspace
        self.token = prerelease_token
        self.excluded = frozenset(projects_to_exclude or ())
        self.requests = ChangeRequests()

    @property
    def prerelease_active(self) -> bool:
        return self.token is not None and self.token.has_value

    def resolve(self, changes: Iterable[ChangeDescriptor]) -> ChangeRequests:
        for change in changes:
            self.add_change(change)

        has_changes = True
        while has_changes:
            has_changes = False
            for name in list(self.requests.package_changes):
                has_changes = self.propagate(name) or has_changes
            has_changes = self.apply_policy_changes() or has_changes

        self.finalize_versions()
        self.assign_orders()
        return self.requests

    def add_change(self, change: ChangeDescriptor) -> bool:
        """Merge one descriptor. Returns True if the package's entry changed."""
        project = self.workspace.get_project(change.package_name)
        if project is None:
            warn(f"Ignoring change for unknown package {change.package_name!r}")
            return False

        change_type = change.resolve_change_type()
        package_changes = self.requests.package_changes
        current = package_changes.get(project.name)
        if current is None:
            has_changed = True
            current = ResolvedChange(
                package_name=project.name, change_type=change_type, changes=[change]
            )
            package_changes[project.name] = current
        else:
            old_type = current.change_type
            if old_type == ChangeType.hotfix and change_type > old_type:
                raise ChangeConflictError(
                    f"Cannot apply {change_type.name} change after hotfix on same package"
                )
            if change_type == ChangeType.hotfix and old_type > change_type:
                raise ChangeConflictError(
                    f"Cannot apply hotfix alongside {old_type.name} change on same package"
                )
            current.change_type = max(old_type, change_type)
            current.changes.append(change)
            has_changed = old_type != current.change_type or bool(
                change.new_version
                and current.new_version
                and gt(change.new_version, current.new_version)
            )

        if should_skip_version_bump(project, self.token, self.excluded):
            current.new_version = change.new_version or project.version
            current.change_type = ChangeType.none
            current.new_range_dependency = new_range_dependency(current.new_version)
            return False

        if change_type == ChangeType.hotfix and not self.workspace.settings.hotfix_change_enabled:
            raise ChangeConflictError(
                f"Cannot add hotfix change for {project.name}; "
                "hotfix changes are disabled in the workspace configuration"
            )

        if current.change_type == ChangeType.hotfix:
            base = change.new_version or project.version
            if not is_prerelease(project.version):
                base = f"{base}-hotfix"
            current.new_version = inc(base, "prerelease")
        else:
            base = change.new_version or project.version
            if change.new_version is None and change_type >= ChangeType.hotfix:
                candidate = inc(base, release_type(current.change_type))
            else:
                candidate = base
            if current.new_version and gt(current.new_version, candidate):
                candidate = current.new_version
            current.new_version = candidate
            if has_changed:
                self._record_policy_change(project, current)

        if current.change_type == ChangeType.hotfix:
            current.new_range_dependency = current.new_version
        else:
            current.new_range_dependency = new_range_dependency(current.new_version)
        return has_changed

    def _record_policy_change(self, project: Project, change: ResolvedChange) -> None:
        policy = self.workspace.version_policy(project)
        if not isinstance(policy, LockStepVersionPolicy) or policy.next_bump is not None:
            return
        existing = self.requests.version_policy_changes.get(policy.policy_name)
        if existing is None or gt(change.new_version, existing.new_version):
            self.requests.version_policy_changes[policy.policy_name] = VersionPolicyChange(
                version_policy_name=policy.policy_name,
                change_type=change.change_type,
                new_version=change.new_version,
            )

    def propagate(self, package_name: str) -> bool:
        """Push one package's change to its consumers, transitively.

        Packages that keep their version (``none``) do not propagate unless a
        prerelease token is active.
        """
        has_changes = False
        pending = deque([package_name])
        while pending:
            producer = self.requests.package_changes[pending.popleft()]
            if producer.change_type == ChangeType.none and not self.prerelease_active:
                continue
            for consumer_name in self.workspace.graph.consumers_of(producer.package_name):
                consumer = self.workspace.projects[consumer_name]
                for table in DEPENDENCY_TABLES:
                    changed, revisit = self._update_consumer(consumer, table, producer)
                    has_changes = changed or has_changes
                    if revisit:
                        pending.append(consumer_name)
        return has_changes

    def _update_consumer(
        self, consumer: Project, table: str, producer: ResolvedChange
    ) -> tuple[bool, bool]:
        specifier = consumer.dependency_table(table).get(producer.package_name)
        if not specifier:
            return False, False

        if producer.change_type < ChangeType.hotfix and not self.prerelease_active:
            # The producer keeps its version; consumers only record the update.
            changed = self.add_change(
                ChangeDescriptor(package_name=consumer.name, change_type=ChangeType.dependency)
            )
            return changed, changed

        parsed = parse_specifier(producer.package_name, specifier)
        is_prerelease_consumer = (
            self.prerelease_active and consumer.name not in self.requests.package_changes
        )
        if not (
            is_prerelease_consumer
            or parsed.is_workspace_wildcard
            or parsed.version_specifier != producer.new_range_dependency
        ):
            return False, False

        if producer.change_type == ChangeType.hotfix:
            change_type = ChangeType.hotfix
        elif not parsed.is_workspace_wildcard and satisfies(
            producer.new_version, parsed.version_specifier
        ):
            change_type = ChangeType.dependency
        else:
            change_type = ChangeType.patch

        changed = self.add_change(
            ChangeDescriptor(package_name=consumer.name, change_type=change_type)
        )
        return changed, changed or is_prerelease_consumer

    def apply_policy_changes(self) -> bool:
        """Move every member of a changed lockstep policy to the policy's new version."""
        has_changes = False
        for project in self.workspace.projects.values():
            if not project.version_policy_name:
                continue
            policy_change = self.requests.version_policy_changes.get(project.version_policy_name)
            if policy_change is None:
                continue
            changed = self.add_change(
                ChangeDescriptor(
                    package_name=project.name,
                    change_type=policy_change.change_type,
                    new_version=policy_change.new_version,
                )
            )
            if changed:
                info(f"* APPLYING: update {project.name} to version {policy_change.new_version}")
            has_changes = changed or has_changes
        return has_changes

    def finalize_versions(self) -> None:
        """Recompute versions from the final magnitudes.

        Intermediate versions may be stale when a package's magnitude grew
        after its first version was computed.
        """
        for name, change in self.requests.package_changes.items():
            project = self.workspace.projects[name]
            if should_skip_version_bump(project, self.token, self.excluded):
                change.new_version = project.version
            elif change.change_type >= ChangeType.patch:
                change.new_version = inc(project.version, release_type(change.change_type))
            elif change.change_type < ChangeType.hotfix:
                change.new_version = change.new_version or project.version
            if change.change_type == ChangeType.hotfix:
                change.new_range_dependency = change.new_version
            else:
                change.new_range_dependency = new_range_dependency(change.new_version)

    def assign_orders(self) -> None:
        """Give every consumer a larger order than each of its changed dependencies."""
        package_changes = self.requests.package_changes
        graph = self.workspace.graph
        # Dependencies come first in graph order, so one pass settles every depth.
        for name in graph.order:
            change = package_changes.get(name)
            if change is None:
                continue
            change.order = max(
                (
                    package_changes[dep].order + 1
                    for dep in graph.dependencies_of(name)
                    if dep in package_changes
                ),
                default=0,
            )
