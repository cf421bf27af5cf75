"""Change file reading and writing.

Change files live under the workspace changes folder, one JSON document per
file (``<changes>/<package>/<branch>_<timestamp>.json``)::

    {
      "packageName": "a",
      "email": "dev@example.com",
      "changes": [{"packageName": "a", "type": "minor", "comment": "Add x"}]
    }
"""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from .errors import ChangeFileError
from .models import ChangeDescriptor, ChangeFileModel
from .shell import git, info

_COMMIT_RE = re.compile(r"^commit ([0-9a-f]+)", re.MULTILINE)
_AUTHOR_RE = re.compile(r"^Author: .*<(.*)>", re.MULTILINE)


class ChangeFiles:
    """The set of change files in one changes folder."""

    def __init__(self, changes_path: Path) -> None:
        self._changes_path = changes_path

    def get_files(self) -> list[Path]:
        """All change files, sorted by path so loading order is stable."""
        if not self._changes_path.is_dir():
            return []
        return sorted(self._changes_path.rglob("*.json"))

    def load(self, include_commit_details: bool = False) -> list[ChangeDescriptor]:
        """Read every change file and return its descriptors in file order.

        Each descriptor remembers the file it came from.

        Raises:
            ChangeFileError: If a file is not valid JSON or does not have the
                change file shape.
        """
        descriptors: list[ChangeDescriptor] = []
        for path in self.get_files():
            change_file = load_change_file(path)
            if include_commit_details:
                update_commit_details(path, change_file.changes)
            for change in change_file.changes:
                change.source = path
                descriptors.append(change)
        return descriptors

    def delete_all(self, should_commit: bool) -> int:
        """Delete every change file. Returns how many there were."""
        files = self.get_files()
        if not files:
            return 0
        label = "APPLYING" if should_commit else "DRYRUN"
        info(f"\n* {label}: Delete change files")
        for path in files:
            info(f"  - {path}")
            if should_commit:
                path.unlink()
        return len(files)


def load_change_file(path: Path) -> ChangeFileModel:
    try:
        return ChangeFileModel.model_validate(json.loads(path.read_text()))
    except json.JSONDecodeError as exc:
        raise ChangeFileError(f"Invalid JSON in change file {path}: {exc}") from exc
    except ValidationError as exc:
        raise ChangeFileError(f"Invalid change file {path}: {exc}") from exc


def update_commit_details(path: Path, changes: list[ChangeDescriptor]) -> None:
    """Fill author and commit from the git commit that added the file.

    Outside a git repository the descriptors are left as they are.
    """
    output = git("log", "-n", "1", "--", path.name, check=False, cwd=path.parent)
    author = _AUTHOR_RE.search(output)
    commit = _COMMIT_RE.search(output)
    for change in changes:
        if author and not change.author:
            change.author = author.group(1)
        if commit and not change.commit:
            change.commit = commit.group(1)


class ChangeFile:
    """A change file being generated for one package."""

    def __init__(self, package_name: str, changes_path: Path, email: str | None = None) -> None:
        self._changes_path = changes_path
        self._model = ChangeFileModel(package_name=package_name, email=email)

    @property
    def package_name(self) -> str:
        return self._model.package_name or ""

    @property
    def changes(self) -> list[ChangeDescriptor]:
        return self._model.changes

    def add_change(self, change: ChangeDescriptor) -> None:
        """Add a descriptor, storing its magnitude as the type string."""
        change_type = change.resolve_change_type()
        self._model.changes.append(change.model_copy(update={"type": change_type.name}))

    def generate_path(self, prefix: str = "version-bump") -> Path:
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d-%H-%M-%S")
        return self._changes_path / self.package_name / f"{prefix}_{stamp}.json"

    def write(self, should_commit: bool = True) -> Path:
        path = self.generate_path()
        if should_commit:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(self._model.to_json(), indent=2) + "\n")
        return path
