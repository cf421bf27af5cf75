"""Data models for monobump.

These Pydantic models represent the core data structures used throughout
change resolution: workspace projects, change descriptors read from change
files, and the resolved per-package change requests.
"""

from __future__ import annotations

import json
from enum import IntEnum
from pathlib import Path
from typing import Any, Iterator

from pydantic import BaseModel, ConfigDict, Field

from .errors import ChangeFileError, InternalError

# Manifest tables that may reference other workspace projects.
DEPENDENCY_TABLES = (
    "dependencies",
    "devDependencies",
    "peerDependencies",
    "optionalDependencies",
)


class ChangeType(IntEnum):
    """Magnitude of a change, ordered from smallest to largest.

    ``dependency`` means only dependency ranges changed and the package keeps
    its version. ``hotfix`` produces a ``-hotfix.N`` prerelease of the current
    version and cannot be mixed with patch/minor/major on the same package.
    """

    none = 0
    dependency = 1
    hotfix = 2
    patch = 3
    minor = 4
    major = 5


def release_type(change_type: ChangeType) -> str:
    """Map a change magnitude to the release name used for version increments."""
    if change_type == ChangeType.major:
        return "major"
    if change_type == ChangeType.minor:
        return "minor"
    if change_type == ChangeType.patch:
        return "patch"
    if change_type == ChangeType.hotfix:
        return "prerelease"
    raise InternalError(f"Unexpected change type {change_type.name!r} for a release")


class ChangeDescriptor(BaseModel):
    """One change request for one package.

    Change files on disk carry the magnitude as the ``type`` string;
    descriptors built in code set ``change_type`` directly. ``source`` is the
    change file the descriptor was loaded from and is never serialized.
    """

    model_config = ConfigDict(populate_by_name=True)

    package_name: str = Field(alias="packageName")
    type: str | None = None
    change_type: ChangeType | None = Field(default=None, alias="changeType")
    new_version: str | None = Field(default=None, alias="newVersion")
    comment: str | None = None
    author: str | None = None
    commit: str | None = None
    custom_fields: dict[str, Any] | None = Field(default=None, alias="customFields")
    source: Path | None = Field(default=None, exclude=True)

    def resolve_change_type(self) -> ChangeType:
        """Return the change magnitude, parsing ``type`` on first use.

        Raises:
            ChangeFileError: If the descriptor came from a change file and
                its type string is not a known magnitude.
            InternalError: If the descriptor was built in code with neither
                a valid type string nor a ``change_type``.
        """
        if self.change_type is None:
            try:
                self.change_type = ChangeType[self.type or ""]
            except KeyError:
                if self.source is not None:
                    raise ChangeFileError(
                        f"Invalid change type {json.dumps(self.type)} in {self.source}"
                    ) from None
                raise InternalError(f"Invalid change type {json.dumps(self.type)}") from None
        return self.change_type


class ChangeFileModel(BaseModel):
    """Contents of one change file (``changes/<package>/<name>.json``)."""

    model_config = ConfigDict(populate_by_name=True)

    package_name: str | None = Field(default=None, alias="packageName")
    email: str | None = None
    changes: list[ChangeDescriptor] = Field(default_factory=list)

    def to_json(self) -> dict[str, Any]:
        """Serialize with on-disk key names, omitting unset fields."""
        return self.model_dump(
            by_alias=True,
            exclude_none=True,
            exclude={"changes": {"__all__": {"change_type"}}},
        )


class ResolvedChange(BaseModel):
    """The merged, resolved change for one package.

    Attributes:
        package_name: Name of the affected package.
        change_type: Largest magnitude requested for the package.
        new_version: Version the package will be published at.
        new_range_dependency: Range consumers should use to depend on the
            new version (the exact version for hotfixes).
        order: Topological depth; dependencies always sort before consumers.
        changes: Every descriptor merged into this entry, in arrival order.
    """

    package_name: str
    change_type: ChangeType
    new_version: str | None = None
    new_range_dependency: str | None = None
    order: int = 0
    changes: list[ChangeDescriptor] = Field(default_factory=list)

    @property
    def comments(self) -> list[str]:
        return [change.comment for change in self.changes if change.comment]


class VersionPolicyChange(BaseModel):
    """Pending version update for a lockstep version policy."""

    version_policy_name: str
    change_type: ChangeType
    new_version: str


class ChangeRequests(BaseModel):
    """Output of change resolution: package changes plus policy changes."""

    package_changes: dict[str, ResolvedChange] = Field(default_factory=dict)
    version_policy_changes: dict[str, VersionPolicyChange] = Field(default_factory=dict)


class WorkspaceSettings(BaseModel):
    """The ``[workspace]`` table of ``monobump.toml``."""

    model_config = ConfigDict(populate_by_name=True)

    changes_folder: str = Field(default="common/changes", alias="changes-folder")
    version_policies: str = Field(
        default="common/config/version-policies.json", alias="version-policies"
    )
    hotfix_change_enabled: bool = Field(default=True, alias="hotfix-change-enabled")
    git_tag_separator: str = Field(default="_", alias="git-tag-separator")


class Project(BaseModel):
    """A single package in the workspace.

    The manifest is kept as the raw ``package.json`` mapping so that fields
    monobump does not know about round-trip unchanged.

    Attributes:
        name: Package name; must match the manifest's ``name``.
        path: Relative path from the workspace root to the package folder.
        manifest: Parsed ``package.json`` contents.
        version_policy_name: Version policy the project belongs to, if any.
        publish: Explicit ``should-publish`` flag from the workspace config.
        decoupled_local_dependencies: Workspace projects this project depends
            on without linking to the local copy. Edges to them are ignored.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str
    path: str
    manifest: dict[str, Any] = Field(default_factory=dict)
    version_policy_name: str | None = Field(default=None, alias="version-policy")
    publish: bool = Field(default=False, alias="should-publish")
    decoupled_local_dependencies: set[str] = Field(
        default_factory=set, alias="decoupled-local-dependencies"
    )

    @property
    def version(self) -> str:
        return str(self.manifest.get("version", "0.0.0"))

    @property
    def should_publish(self) -> bool:
        """Projects in a version policy are always published."""
        return self.publish or self.version_policy_name is not None

    def dependency_table(self, table: str) -> dict[str, str]:
        return self.manifest.get(table) or {}

    def iter_dependencies(self) -> Iterator[tuple[str, str, str]]:
        """Yield ``(table, name, specifier)`` for every declared dependency."""
        for table in DEPENDENCY_TABLES:
            for name, specifier in self.dependency_table(table).items():
                yield table, name, specifier
