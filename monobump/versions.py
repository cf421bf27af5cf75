"""Version parsing and bumping utilities.

Handles conversion between version strings and semver objects and
implements npm-style version increments, including the prerelease rules
(``1.0.0-hotfix`` → ``1.0.0-hotfix.0`` → ``1.0.0-hotfix.1``).
"""

from __future__ import annotations

import semver

RELEASE_TYPES = (
    "major",
    "minor",
    "patch",
    "premajor",
    "preminor",
    "prepatch",
    "prerelease",
)


def parse_version(version_str: str) -> semver.Version:
    """Parse a version string into a semver.Version object.

    Handles incomplete versions by padding with zeros:
    - "1" → "1.0.0"
    - "1.2" → "1.2.0"
    - "1.2.3-beta.1" → "1.2.3-beta.1"

    A leading "v" or "=" is ignored, as npm does.

    Raises:
        ValueError: If the string is not a valid version.
    """
    return semver.Version.parse(version_str.strip().lstrip("=v"), optional_minor_and_patch=True)


def format_version(version: semver.Version) -> str:
    """Format without build metadata, which npm drops from normalized versions."""
    return str(version.replace(build=None))


def is_prerelease(version_str: str) -> bool:
    return parse_version(version_str).prerelease is not None


def compare(a: str, b: str) -> int:
    """Compare two versions by semver precedence (build metadata ignored)."""
    return parse_version(a).compare(parse_version(b))


def gt(a: str, b: str) -> bool:
    return compare(a, b) > 0


def strip_build(version_str: str) -> str:
    """Drop build metadata: "1.0.0+sha.1" → "1.0.0"."""
    return version_str.split("+", 1)[0]


def bump_prerelease_identifier(prerelease: str | None, identifier: str | None = None) -> str:
    """Increment a prerelease string the way npm's ``inc('pre')`` does.

    The last numeric component is incremented; if there is none, ".0" is
    appended. When an identifier is given and differs from the current one,
    the result restarts at ``<identifier>.0``.

    Examples:
        None → "0"
        "hotfix" → "hotfix.0"
        "alpha.1" → "alpha.2"
        "alpha.1", "beta" → "beta.0"
    """
    parts = prerelease.split(".") if prerelease else []
    if not parts:
        parts = ["0"]
    else:
        for i in range(len(parts) - 1, -1, -1):
            if parts[i].isdigit():
                parts[i] = str(int(parts[i]) + 1)
                break
        else:
            parts.append("0")
    if identifier:
        if parts[0] != identifier or len(parts) < 2 or not parts[1].isdigit():
            parts = [identifier, "0"]
    return ".".join(parts)


def inc(version_str: str, release: str, identifier: str | None = None) -> str:
    """Increment a version following npm semver rules.

    Unlike a plain bump, a prerelease is "completed" rather than skipped:
    - inc("1.0.0-beta.1", "patch") → "1.0.0"
    - inc("1.1.0-beta.1", "minor") → "1.1.0"
    - inc("1.0.0", "prerelease") → "1.0.1-0"
    - inc("1.1.0", "premajor", "pr") → "2.0.0-pr.0"

    Args:
        version_str: Version to increment.
        release: One of RELEASE_TYPES.
        identifier: Optional prerelease identifier for the pre* releases.

    Raises:
        ValueError: For an unknown release type or an invalid version.
    """
    if release not in RELEASE_TYPES:
        raise ValueError(f"Invalid release type: {release!r}")
    version = parse_version(version_str)
    major, minor, patch = version.major, version.minor, version.patch
    prerelease = version.prerelease

    if release == "premajor":
        major, minor, patch = major + 1, 0, 0
        prerelease = bump_prerelease_identifier(None, identifier)
    elif release == "preminor":
        minor, patch = minor + 1, 0
        prerelease = bump_prerelease_identifier(None, identifier)
    elif release == "prepatch":
        patch += 1
        prerelease = bump_prerelease_identifier(None, identifier)
    elif release == "prerelease":
        if prerelease is None:
            patch += 1
        prerelease = bump_prerelease_identifier(prerelease, identifier)
    elif release == "major":
        # 1.0.0-5 bumps to 1.0.0, 1.1.0-5 bumps to 2.0.0
        if minor != 0 or patch != 0 or prerelease is None:
            major += 1
        minor, patch, prerelease = 0, 0, None
    elif release == "minor":
        if patch != 0 or prerelease is None:
            minor += 1
        patch, prerelease = 0, None
    else:
        if prerelease is None:
            patch += 1
        prerelease = None

    return str(semver.Version(major, minor, patch, prerelease=prerelease))
