"""Dependency specifier parsing and npm range matching.

Workspace manifests reference each other with npm specifiers: exact versions
("1.2.3"), caret/tilde ranges ("^1.2.3"), comparator ranges
(">=1.2.3 <2.0.0"), and the workspace protocol ("workspace:*",
"workspace:^1.2.3"). This module answers two questions about them: does a
version satisfy a specifier, and what should a specifier be rewritten to when
the referenced package gets a new version.
"""

from __future__ import annotations

import re
from functools import lru_cache

import nodesemver
from pydantic import BaseModel, ConfigDict

from .versions import inc, parse_version

WORKSPACE_PREFIX = "workspace:"

# Bare workspace specifiers that always link to the local copy and are only
# resolved to a concrete version at publish time.
WORKSPACE_WILDCARDS = frozenset({"*", "~", "^"})

_RANGE_DEPENDENCY_RE = re.compile(r">=?(?:\d+\.){2}\d+(\-[0-9A-Za-z-.]*)?\s+<(?:\d+\.){2}\d+")


class DependencySpecifier(BaseModel):
    """A parsed dependency specifier.

    Attributes:
        package_name: The dependency's package name.
        raw: The specifier exactly as written in the manifest.
        version_specifier: The specifier with any "workspace:" prefix removed.
        is_workspace: Whether the workspace protocol was used.
    """

    model_config = ConfigDict(frozen=True)

    package_name: str
    raw: str
    version_specifier: str
    is_workspace: bool = False

    @property
    def is_workspace_wildcard(self) -> bool:
        return self.is_workspace and self.version_specifier in WORKSPACE_WILDCARDS


@lru_cache(maxsize=None)
def parse_specifier(package_name: str, raw: str) -> DependencySpecifier:
    """Parse a manifest specifier. Results are cached; the model is frozen."""
    if raw.startswith(WORKSPACE_PREFIX):
        return DependencySpecifier(
            package_name=package_name,
            raw=raw,
            version_specifier=raw[len(WORKSPACE_PREFIX) :],
            is_workspace=True,
        )
    return DependencySpecifier(package_name=package_name, raw=raw, version_specifier=raw)


def is_range_dependency(specifier: str) -> bool:
    """True for comparator ranges like ">=1.0.0 <2.0.0"."""
    return _RANGE_DEPENDENCY_RE.match(specifier) is not None


def new_range_dependency(new_version: str) -> str:
    """Range accepting new_version up to the next major.

    A prerelease is completed before taking the next major:
    "1.0.0-hotfix.0" → ">=1.0.0-hotfix.0 <2.0.0".
    """
    upper = new_version
    if parse_version(new_version).prerelease is not None:
        upper = inc(upper, "patch")
    return f">={new_version} <{inc(upper, 'major')}"


def get_new_dependency_version(
    dependencies: dict[str, str], dependency_name: str, new_project_version: str
) -> str:
    """Rewrite the specifier for dependency_name to point at a new version.

    The style of the existing specifier is preserved:
    - "*" and the bare workspace wildcards are left as they are
    - ">=1.0.0 <2.0.0" → ">=V <next-major"
    - "~1.0.0" → "~V", "^1.0.0" → "^V"
    - anything else → "V"
    A "workspace:" prefix is kept.
    """
    current = parse_specifier(dependency_name, dependencies[dependency_name])
    specifier = current.version_specifier
    if specifier == "*" or current.is_workspace_wildcard:
        new_specifier = specifier
    elif is_range_dependency(specifier):
        new_specifier = new_range_dependency(new_project_version)
    elif specifier.startswith("~"):
        new_specifier = f"~{new_project_version}"
    elif specifier.startswith("^"):
        new_specifier = f"^{new_project_version}"
    else:
        new_specifier = new_project_version
    return f"{WORKSPACE_PREFIX}{new_specifier}" if current.is_workspace else new_specifier


def get_publish_dependency_version(specifier: DependencySpecifier, new_version: str) -> str:
    """Resolve a workspace wildcard to the concrete form that gets published.

    "workspace:*" → "V", "workspace:~" → "~V", "workspace:^" → "^V". Any other
    specifier resolves to the version itself.
    """
    if specifier.is_workspace:
        if specifier.version_specifier == "~":
            return f"~{new_version}"
        if specifier.version_specifier == "^":
            return f"^{new_version}"
    return new_version


def satisfies(version_str: str, range_str: str) -> bool:
    """Check a version against an npm range with node-semver.

    Invalid versions and ranges never match. A prerelease version only
    matches a comparator set that names a prerelease of the same
    major.minor.patch, so "1.0.1-alpha.0" does not satisfy "^1.0.0".
    """
    try:
        return nodesemver.satisfies(version_str, range_str)
    except ValueError:
        return False
