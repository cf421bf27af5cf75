"""Version policies.

A version policy groups projects that are versioned by shared rules:

- ``lockStepVersion``: every member has the same version, stored in the
  policy itself and bumped as one unit.
- ``individualVersion``: members version independently, optionally pinned to
  a locked major version.

Policies are read from a JSON array (``common/config/version-policies.json``
by default) and written back only when changes are committed.
"""

from __future__ import annotations

import copy
import json
from enum import IntEnum
from pathlib import Path
from typing import Any, Callable, Iterable, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigurationError, PolicyNotFoundError
from .models import Project
from .ranges import WORKSPACE_PREFIX, parse_specifier
from .shell import info
from .versions import compare, format_version, inc, parse_version


class BumpType(IntEnum):
    """Kinds of policy bumps. Values match the serialized policy files."""

    none = 0
    prerelease = 1
    patch = 2
    preminor = 3
    minor = 4
    major = 5
    premajor = 6
    prepatch = 7


class PolicyDependencies(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    version_format_for_publish: Literal["original", "exact"] | None = Field(
        default=None, alias="versionFormatForPublish"
    )
    version_format_for_commit: Literal["original", "wildcard"] | None = Field(
        default=None, alias="versionFormatForCommit"
    )


class VersionPolicyJson(BaseModel):
    """On-disk shape of one policy entry. Unknown keys are kept as they are."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    policy_name: str = Field(alias="policyName")
    definition_name: Literal["lockStepVersion", "individualVersion"] = Field(
        alias="definitionName"
    )
    version: str | None = None
    next_bump: str | None = Field(default=None, alias="nextBump")
    main_project: str | None = Field(default=None, alias="mainProject")
    locked_major: int | None = Field(default=None, alias="lockedMajor")
    dependencies: PolicyDependencies | None = None


class VersionPolicy:
    """Base class with the behavior shared by both policy kinds."""

    def __init__(self, data: VersionPolicyJson) -> None:
        self._data = data

    @staticmethod
    def load(data: VersionPolicyJson) -> VersionPolicy:
        if data.definition_name == "lockStepVersion":
            return LockStepVersionPolicy(data)
        return IndividualVersionPolicy(data)

    @property
    def policy_name(self) -> str:
        return self._data.policy_name

    @property
    def definition_name(self) -> str:
        return self._data.definition_name

    @property
    def is_lockstepped(self) -> bool:
        return False

    @property
    def version_format_for_publish(self) -> str:
        deps = self._data.dependencies
        return (deps.version_format_for_publish if deps else None) or "original"

    @property
    def version_format_for_commit(self) -> str:
        deps = self._data.dependencies
        return (deps.version_format_for_commit if deps else None) or "original"

    def to_json(self) -> dict[str, Any]:
        return self._data.model_dump(by_alias=True, exclude_none=True)

    def ensure(self, manifest: dict[str, Any], force: bool = False) -> dict[str, Any] | None:
        """Return an updated manifest copy if the project must change, else None."""
        raise NotImplementedError

    def bump(self, bump_type: BumpType | None = None, identifier: str | None = None) -> None:
        raise NotImplementedError

    def validate(self, version: str, package_name: str) -> None:
        """Raise ConfigurationError if version breaks the policy."""
        raise NotImplementedError

    def set_dependencies_before_publish(
        self, project: Project, projects: Mapping[str, Project]
    ) -> dict[str, Any] | None:
        """Pin workspace dependencies to exact versions if the policy asks for it.

        Returns:
            The updated manifest copy, or None when nothing changed.
        """
        if self.version_format_for_publish != "exact":
            return None
        return _rewrite_local_dependencies(project, projects, lambda dep: dep.version)

    def set_dependencies_before_commit(
        self, project: Project, projects: Mapping[str, Project]
    ) -> dict[str, Any] | None:
        """Reset workspace dependencies to "*" if the policy asks for it."""
        if self.version_format_for_commit != "wildcard":
            return None
        return _rewrite_local_dependencies(project, projects, lambda dep: "*")


class LockStepVersionPolicy(VersionPolicy):
    """All members share the policy's version.

    ``next_bump`` is the bump applied on the next ``bump`` call. A policy
    without it is only ever moved by change files on its members.
    """

    def __init__(self, data: VersionPolicyJson) -> None:
        super().__init__(data)
        if not data.version:
            raise ConfigurationError(
                f"Lockstep version policy {data.policy_name!r} needs a version"
            )
        if data.next_bump is not None and data.next_bump not in BumpType.__members__:
            raise ConfigurationError(
                f"Version policy {data.policy_name!r} has invalid nextBump {data.next_bump!r}"
            )
        self._version = format_version(parse_version(data.version))

    @property
    def is_lockstepped(self) -> bool:
        return True

    @property
    def version(self) -> str:
        return self._version

    @property
    def next_bump(self) -> BumpType | None:
        return BumpType[self._data.next_bump] if self._data.next_bump else None

    @property
    def main_project(self) -> str | None:
        return self._data.main_project

    def to_json(self) -> dict[str, Any]:
        self._data.version = self._version
        return super().to_json()

    def ensure(self, manifest: dict[str, Any], force: bool = False) -> dict[str, Any] | None:
        """Align a member's manifest with the policy version.

        Raises:
            ConfigurationError: If the member is ahead of the policy and
                force is not set.
        """
        current = manifest.get("version", "0.0.0")
        order = compare(current, self._version)
        if order == 0:
            return None
        if order > 0 and not force:
            raise ConfigurationError(
                f"Version {current} in package {manifest.get('name')} is higher than "
                f"locked version {self._version}."
            )
        updated = copy.deepcopy(manifest)
        updated["version"] = self._version
        return updated

    def bump(self, bump_type: BumpType | None = None, identifier: str | None = None) -> None:
        """Bump the policy version by bump_type, or by next_bump if not given."""
        release = bump_type if bump_type is not None else self.next_bump
        if release is None or release == BumpType.none:
            return
        self._version = inc(self._version, release.name, identifier)

    def update(self, new_version: str) -> bool:
        """Set the policy version. Returns False if it was already new_version."""
        new_version = format_version(parse_version(new_version))
        if new_version == self._version:
            return False
        self._version = new_version
        return True

    def validate(self, version: str, package_name: str) -> None:
        if version != self._version:
            raise ConfigurationError(
                f"Invalid version {version} in {package_name}: "
                f"policy {self.policy_name} requires {self._version}"
            )


class IndividualVersionPolicy(VersionPolicy):
    """Members version independently, optionally under a locked major."""

    @property
    def locked_major(self) -> int | None:
        return self._data.locked_major

    def ensure(self, manifest: dict[str, Any], force: bool = False) -> dict[str, Any] | None:
        """Move a member up to the locked major if it is behind.

        Raises:
            ConfigurationError: If the member is already past the locked major.
        """
        if self.locked_major is None:
            return None
        version = parse_version(manifest.get("version", "0.0.0"))
        if version.major < self.locked_major:
            updated = copy.deepcopy(manifest)
            updated["version"] = f"{self.locked_major}.0.0"
            return updated
        if version.major > self.locked_major:
            raise ConfigurationError(
                f"Version {manifest.get('version')} in package {manifest.get('name')} "
                f"is higher than locked major version {self.locked_major}."
            )
        return None

    def bump(self, bump_type: BumpType | None = None, identifier: str | None = None) -> None:
        # Members are bumped through change files.
        pass

    def validate(self, version: str, package_name: str) -> None:
        if self.locked_major is None:
            return
        if parse_version(version).major != self.locked_major:
            raise ConfigurationError(
                f"Invalid major version {version} in {package_name}: "
                f"policy {self.policy_name} locks major {self.locked_major}"
            )


class VersionPolicyConfiguration:
    """All version policies of a workspace, keyed by name.

    A missing policies file means the workspace has no policies.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self.version_policies: dict[str, VersionPolicy] = {}
        if path.is_file():
            self._load()

    def _load(self) -> None:
        try:
            raw = json.loads(self._path.read_text())
            entries = [VersionPolicyJson.model_validate(entry) for entry in raw]
        except (json.JSONDecodeError, TypeError, ValidationError) as exc:
            raise ConfigurationError(f"Invalid version policy file {self._path}: {exc}") from exc
        for entry in entries:
            if entry.policy_name in self.version_policies:
                raise ConfigurationError(f"Duplicate version policy {entry.policy_name!r}")
            self.version_policies[entry.policy_name] = VersionPolicy.load(entry)

    def get_version_policy(self, policy_name: str) -> VersionPolicy:
        try:
            return self.version_policies[policy_name]
        except KeyError:
            raise PolicyNotFoundError(f"Failed to find version policy {policy_name}") from None

    def validate(self, project_names: Iterable[str]) -> None:
        """Check that every lockstep main project is a workspace project."""
        names = set(project_names)
        for policy in self.version_policies.values():
            if isinstance(policy, LockStepVersionPolicy) and policy.main_project:
                if policy.main_project not in names:
                    raise ConfigurationError(
                        f"Version policy {policy.policy_name} has a non-existing "
                        f"mainProject: {policy.main_project}."
                    )

    def bump(
        self,
        policy_name: str | None = None,
        bump_type: BumpType | None = None,
        identifier: str | None = None,
        should_commit: bool = False,
    ) -> None:
        """Bump one policy, or every policy when no name is given."""
        if policy_name:
            self.get_version_policy(policy_name).bump(bump_type, identifier)
        else:
            for policy in self.version_policies.values():
                policy.bump(bump_type, identifier)
        self.save(should_commit)

    def update(self, policy_name: str, new_version: str, should_commit: bool = False) -> None:
        """Move a lockstep policy to new_version. Other policies are ignored."""
        policy = self.version_policies.get(policy_name)
        if not isinstance(policy, LockStepVersionPolicy):
            return
        previous = policy.version
        if policy.update(new_version):
            info(f"\nUpdate version policy {policy_name} from {previous} to {new_version}")
            self.save(should_commit)

    def save(self, should_commit: bool) -> None:
        if not should_commit:
            return
        data = [policy.to_json() for policy in self.version_policies.values()]
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(data, indent=2) + "\n")


def _rewrite_local_dependencies(
    project: Project,
    projects: Mapping[str, Project],
    new_specifier: Callable[[Project], str],
) -> dict[str, Any] | None:
    manifest = copy.deepcopy(project.manifest)
    dependencies = manifest.get("dependencies") or {}
    changed = False
    for name, specifier in dependencies.items():
        dependency = projects.get(name)
        if dependency is None or name in project.decoupled_local_dependencies:
            continue
        value = new_specifier(dependency)
        if parse_specifier(name, specifier).is_workspace:
            value = f"{WORKSPACE_PREFIX}{value}"
        if value != specifier:
            dependencies[name] = value
            changed = True
    return manifest if changed else None
