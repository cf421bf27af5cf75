"""Tests for monobump.versions."""

from __future__ import annotations

import pytest

from monobump.versions import (
    bump_prerelease_identifier,
    compare,
    format_version,
    gt,
    inc,
    is_prerelease,
    parse_version,
    strip_build,
)


class TestParseVersion:
    def test_full_semver(self) -> None:
        v = parse_version("1.2.3")
        assert (v.major, v.minor, v.patch) == (1, 2, 3)

    def test_two_part_version(self) -> None:
        v = parse_version("1.2")
        assert (v.major, v.minor, v.patch) == (1, 2, 0)

    def test_single_part_version(self) -> None:
        v = parse_version("5")
        assert (v.major, v.minor, v.patch) == (5, 0, 0)

    def test_leading_v_and_equals(self) -> None:
        assert str(parse_version("v1.2.3")) == "1.2.3"
        assert str(parse_version("=1.2.3")) == "1.2.3"

    def test_prerelease(self) -> None:
        assert parse_version("1.0.0-hotfix.0").prerelease == "hotfix.0"

    def test_invalid(self) -> None:
        with pytest.raises(ValueError):
            parse_version("not-a-version")


class TestFormatVersion:
    def test_drops_build_metadata(self) -> None:
        assert format_version(parse_version("1.0.0-beta.1+sha.abc")) == "1.0.0-beta.1"


class TestComparisons:
    def test_is_prerelease(self) -> None:
        assert is_prerelease("1.0.0-alpha")
        assert not is_prerelease("1.0.0")

    def test_prerelease_sorts_below_release(self) -> None:
        assert compare("1.0.0-alpha.1", "1.0.0") < 0
        assert gt("1.0.1-0", "1.0.0")

    def test_build_metadata_ignored(self) -> None:
        assert compare("1.0.0+a", "1.0.0+b") == 0

    def test_strip_build(self) -> None:
        assert strip_build("1.0.0+sha.1") == "1.0.0"
        assert strip_build("1.0.0") == "1.0.0"


class TestBumpPrereleaseIdentifier:
    def test_no_prerelease(self) -> None:
        assert bump_prerelease_identifier(None) == "0"

    def test_appends_counter(self) -> None:
        assert bump_prerelease_identifier("hotfix") == "hotfix.0"

    def test_increments_last_number(self) -> None:
        assert bump_prerelease_identifier("alpha.1") == "alpha.2"

    def test_new_identifier_restarts(self) -> None:
        assert bump_prerelease_identifier("alpha.1", "beta") == "beta.0"

    def test_same_identifier_increments(self) -> None:
        assert bump_prerelease_identifier("beta.3", "beta") == "beta.4"


class TestInc:
    """npm-compatible increments."""

    @pytest.mark.parametrize(
        ("version", "release", "expected"),
        [
            ("1.2.3", "major", "2.0.0"),
            ("1.2.3", "minor", "1.3.0"),
            ("1.2.3", "patch", "1.2.4"),
            ("1.0.0-beta.1", "patch", "1.0.0"),
            ("1.1.0-beta.1", "minor", "1.1.0"),
            ("1.0.0-5", "major", "1.0.0"),
            ("1.1.0-5", "major", "2.0.0"),
            ("1.0.0", "prerelease", "1.0.1-0"),
            ("1.0.0-hotfix", "prerelease", "1.0.0-hotfix.0"),
            ("1.0.0-hotfix.0", "prerelease", "1.0.0-hotfix.1"),
            ("1.2.3", "prepatch", "1.2.4-0"),
            ("1.2.3", "preminor", "1.3.0-0"),
            ("1.2.3", "premajor", "2.0.0-0"),
        ],
    )
    def test_release_types(self, version: str, release: str, expected: str) -> None:
        assert inc(version, release) == expected

    def test_identifier(self) -> None:
        assert inc("1.1.0", "premajor", "pr") == "2.0.0-pr.0"
        assert inc("1.0.0-pr.0", "prerelease", "pr") == "1.0.0-pr.1"

    def test_unknown_release(self) -> None:
        with pytest.raises(ValueError, match="Invalid release type"):
            inc("1.0.0", "huge")
