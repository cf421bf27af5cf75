"""Prerelease and suffix tokens applied on top of resolved versions."""

from __future__ import annotations


class PrereleaseToken:
    """Either a prerelease name or a version suffix, never both.

    A prerelease name (``alpha.1``) turns every changed package's version into
    a prerelease of its next version. A suffix (``dk.1``) is appended to every
    package's current version without bumping it. With ``partial_prerelease``
    only packages with patch or larger changes get the prerelease name.
    """

    def __init__(
        self,
        prerelease_name: str | None = None,
        suffix_name: str | None = None,
        partial_prerelease: bool = False,
    ) -> None:
        if prerelease_name and suffix_name:
            raise ValueError("Pre-release name and suffix cannot be provided at the same time.")
        self._name = prerelease_name or suffix_name or ""
        self._prerelease_name = prerelease_name
        self._suffix_name = suffix_name
        self._partial_prerelease = partial_prerelease

    def __repr__(self) -> str:
        kind = "suffix" if self.is_suffix else "prerelease"
        return f"PrereleaseToken({kind}={self._name!r}, partial={self._partial_prerelease})"

    @property
    def name(self) -> str:
        return self._name

    @property
    def has_value(self) -> bool:
        return bool(self._prerelease_name or self._suffix_name)

    @property
    def is_prerelease(self) -> bool:
        return bool(self._prerelease_name)

    @property
    def is_suffix(self) -> bool:
        return bool(self._suffix_name)

    @property
    def is_partial_prerelease(self) -> bool:
        return self.is_prerelease and self._partial_prerelease
