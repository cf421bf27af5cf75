"""Shell and git utilities.

Provides simple wrappers around subprocess calls for running shell commands
and git operations, plus output formatting helpers. All user-facing output
of monobump goes through the print helpers here.
"""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path


def git(*args: str, check: bool = True, cwd: Path | None = None) -> str:
    """Run a git command and return stdout.

    Args:
        *args: Arguments to pass to git (e.g., "status", "--short").
        check: If True (default), raise on non-zero exit. Set to False
               for commands that may legitimately fail (e.g., log lookup
               outside a repository).
        cwd: Directory to run in; defaults to the current directory.

    Returns:
        Stripped stdout from the git command.
    """
    result = subprocess.run(["git", *args], capture_output=True, text=True, check=check, cwd=cwd)
    return result.stdout.strip()


def npm(*args: str, cwd: Path | None = None) -> subprocess.CompletedProcess[str]:
    """Run an npm command, capturing output.

    Never raises on a non-zero exit; callers inspect returncode since
    e.g. ``npm view`` fails for packages that were never published.
    """
    return subprocess.run(["npm", *args], capture_output=True, text=True, check=False, cwd=cwd)


def run(
    *args: str, check: bool = True, cwd: Path | None = None
) -> subprocess.CompletedProcess[bytes]:
    """Run an arbitrary shell command.

    Unlike git(), this doesn't capture output - it streams directly to
    the terminal so users can see publish progress, etc.

    Args:
        *args: Command and arguments (e.g., "npm", "publish").
        check: If True (default), raise on non-zero exit.
        cwd: Directory to run in; defaults to the current directory.

    Returns:
        CompletedProcess with returncode for checking success.
    """
    return subprocess.run(args, check=check, cwd=cwd)


def exec_command(should_execute: bool, *args: str, cwd: Path | None = None) -> bool:
    """Run a command, or only print it in dry-run mode.

    Returns:
        True if the command ran and succeeded, False if it failed. Dry runs
        count as success.
    """
    label = "EXECUTING" if should_execute else "DRYRUN"
    where = f" ({cwd})" if cwd else ""
    info(f"\n* {label}: {' '.join(args)}{where}")
    if not should_execute:
        return True
    return run(*args, check=False, cwd=cwd).returncode == 0


def step(msg: str) -> None:
    """Print a visually distinct step header.

    Used to separate major phases of the publish pipeline in terminal output.
    """
    print(f"\n{'─' * 60}\n{msg}\n{'─' * 60}")


def info(msg: str) -> None:
    print(msg)


def warn(msg: str) -> None:
    print(f"WARNING: {msg}", file=sys.stderr)


def fatal(msg: str) -> None:
    """Print an error message and exit with code 1.

    Use for unrecoverable errors that should halt the pipeline.
    """
    print(f"ERROR: {msg}", file=sys.stderr)
    sys.exit(1)
