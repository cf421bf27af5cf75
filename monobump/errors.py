"""Exception types raised by monobump.

Library code raises these; only the CLI and the publish pipeline turn them
into a process exit via ``shell.fatal``.
"""

from __future__ import annotations


class MonobumpError(RuntimeError):
    """Base class for all errors reported to the user."""


class ChangeConflictError(MonobumpError):
    """Raised when change requests for one package cannot be merged.

    The typical case is a hotfix mixed with a patch/minor/major change on the
    same package in a single resolution pass.
    """


class ConfigurationError(MonobumpError):
    """Raised for invalid workspace or version policy configuration."""


class PolicyNotFoundError(ConfigurationError, KeyError):
    """Raised when a version policy name is not registered."""

    def __str__(self) -> str:
        # KeyError.__str__ would quote the message.
        return str(self.args[0]) if self.args else ""


class ChangeFileError(MonobumpError):
    """Raised when a change file cannot be read or contains invalid data."""


class InternalError(MonobumpError):
    """Raised when trusted code produces data that should never exist."""
