"""Changelog generation.

Each published project keeps a machine-readable ``CHANGELOG.json`` and a
rendered ``CHANGELOG.md`` next to its manifest. New entries are prepended,
one per published version.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from email.utils import format_datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigurationError
from .models import ChangeRequests, ChangeType, ResolvedChange
from .shell import info
from .versions import is_prerelease
from .workspace import Workspace

CHANGELOG_JSON = "CHANGELOG.json"
CHANGELOG_MD = "CHANGELOG.md"

# Markdown section titles, largest change first.
_SECTION_TITLES = (
    (ChangeType.major, "Major changes"),
    (ChangeType.minor, "Minor changes"),
    (ChangeType.patch, "Patches"),
    (ChangeType.hotfix, "Hotfixes"),
    (ChangeType.dependency, "Updates"),
)


class ChangelogComment(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    comment: str
    author: str | None = None
    commit: str | None = None
    custom_fields: dict[str, Any] | None = Field(default=None, alias="customFields")


class ChangelogEntry(BaseModel):
    version: str
    tag: str
    date: str | None = None
    comments: dict[str, list[ChangelogComment]] = Field(default_factory=dict)


class Changelog(BaseModel):
    name: str
    entries: list[ChangelogEntry] = Field(default_factory=list)

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def create_tagname(package_name: str, version: str, separator: str = "_") -> str:
    """Git tag for a published version: ``<name><separator>v<version>``."""
    return f"{package_name}{separator}v{version}"


def load_changelog(package_name: str, project_folder: Path) -> Changelog:
    """Read a project's CHANGELOG.json, or start an empty one."""
    path = project_folder / CHANGELOG_JSON
    if not path.is_file():
        return Changelog(name=package_name)
    try:
        return Changelog.model_validate(json.loads(path.read_text()))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise ConfigurationError(f"Invalid changelog {path}: {exc}") from exc


def update_changelogs(
    workspace: Workspace, requests: ChangeRequests, should_commit: bool = False
) -> list[Changelog]:
    """Add an entry for every resolved change that gets published.

    Prerelease versions only get entries for hotfixes. In a lockstep policy
    with a main project, only the main project keeps a changelog.
    """
    updated: list[Changelog] = []
    for name, change in requests.package_changes.items():
        project = workspace.get_project(name)
        if project is None or not project.should_publish:
            continue
        if is_prerelease(project.version) and change.change_type != ChangeType.hotfix:
            continue
        policy = workspace.version_policy(project)
        if policy is not None and policy.is_lockstepped and not workspace.is_main_project(project):
            continue
        changelog = update_individual_changelog(
            change,
            workspace.project_folder(project),
            should_commit,
            workspace.settings.git_tag_separator,
        )
        if changelog is not None:
            updated.append(changelog)
    return updated


def update_individual_changelog(
    change: ResolvedChange,
    project_folder: Path,
    should_commit: bool,
    tag_separator: str = "_",
) -> Changelog | None:
    """Prepend an entry for change.new_version unless one already exists.

    Returns:
        The updated changelog, or None when the version was already logged.
    """
    changelog = load_changelog(change.package_name, project_folder)
    if any(entry.version == change.new_version for entry in changelog.entries):
        return None

    entry = ChangelogEntry(
        version=change.new_version,
        tag=create_tagname(change.package_name, change.new_version, tag_separator),
        date=format_datetime(datetime.now(timezone.utc), usegmt=True),
    )
    for descriptor in change.changes:
        if not descriptor.comment:
            continue
        entry.comments.setdefault(descriptor.resolve_change_type().name, []).append(
            ChangelogComment(
                comment=descriptor.comment,
                author=descriptor.author,
                commit=descriptor.commit,
                custom_fields=descriptor.custom_fields,
            )
        )
    changelog.entries.insert(0, entry)

    label = "APPLYING" if should_commit else "DRYRUN"
    info(f'\n* {label}: Changelog update for "{change.package_name}@{change.new_version}".')
    if should_commit:
        (project_folder / CHANGELOG_JSON).write_text(
            json.dumps(changelog.to_json(), indent=2) + "\n"
        )
        (project_folder / CHANGELOG_MD).write_text(render_markdown(changelog))
    return changelog


def render_markdown(changelog: Changelog) -> str:
    """Render a changelog as Markdown, newest version first."""
    generated = format_datetime(datetime.now(timezone.utc), usegmt=True)
    lines = [
        f"# Change Log - {changelog.name}",
        "",
        f"This log was last generated on {generated} and should not be manually modified.",
        "",
    ]
    for entry in changelog.entries:
        lines.append(f"## {entry.version}")
        if entry.date:
            lines.append(entry.date)
        lines.append("")
        sections = [
            (title, entry.comments.get(change_type.name, []))
            for change_type, title in _SECTION_TITLES
        ]
        sections = [(title, comments) for title, comments in sections if comments]
        if not sections:
            lines.extend(["_Version update only_", ""])
        for title, comments in sections:
            lines.append(f"### {title}")
            lines.append("")
            lines.extend(f"- {comment.comment}" for comment in comments)
            lines.append("")
    return "\n".join(lines)


def regenerate_changelogs(workspace: Workspace) -> list[Path]:
    """Re-render every existing CHANGELOG.md from its CHANGELOG.json.

    Returns:
        Paths of the rewritten Markdown files.

    Raises:
        ConfigurationError: For a CHANGELOG.md without a CHANGELOG.json.
    """
    written: list[Path] = []
    for project in workspace.projects.values():
        folder = workspace.project_folder(project)
        markdown = folder / CHANGELOG_MD
        if not markdown.is_file():
            continue
        info(f"  Found: {markdown}")
        if not (folder / CHANGELOG_JSON).is_file():
            raise ConfigurationError(f"A CHANGELOG.md without json: {markdown}")
        markdown.write_text(render_markdown(load_changelog(project.name, folder)))
        written.append(markdown)
    return written
