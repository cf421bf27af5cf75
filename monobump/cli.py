"""CLI entry point for monobump."""

from __future__ import annotations

import functools
from pathlib import Path
from typing import Any, Callable

import click

from monobump import changelog
from monobump.change_manager import ChangeManager
from monobump.changefiles import ChangeFiles
from monobump.errors import MonobumpError
from monobump.pipeline import run_publish, run_publish_all
from monobump.policies import BumpType
from monobump.prerelease import PrereleaseToken
from monobump.version_manager import VersionManager
from monobump.workspace import Workspace


def _prerelease_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Shared options that build a PrereleaseToken."""

    @click.option("--prerelease-name", default=None, help="Publish prereleases, e.g. beta.1.")
    @click.option("--suffix", default=None, help="Append a suffix without bumping versions.")
    @click.option(
        "--partial-prerelease",
        is_flag=True,
        help="Only give the prerelease name to packages with patch or larger changes.",
    )
    @functools.wraps(func)
    def wrapper(*args: Any, prerelease_name, suffix, partial_prerelease, **kwargs: Any) -> Any:
        try:
            token = PrereleaseToken(prerelease_name, suffix, partial_prerelease)
        except ValueError as exc:
            raise click.UsageError(str(exc)) from exc
        return func(*args, prerelease_token=token, **kwargs)

    return wrapper


def _load_workspace(ctx: click.Context) -> Workspace:
    try:
        return Workspace.load(ctx.obj["root"])
    except MonobumpError as exc:
        raise click.ClickException(str(exc)) from exc


@click.group()
@click.version_option(package_name="monobump")
@click.option(
    "--root",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Folder inside the workspace (default: current directory).",
)
@click.pass_context
def cli(ctx: click.Context, root: Path | None) -> None:
    """Change-file driven versioning for npm monorepos."""
    ctx.ensure_object(dict)
    ctx.obj["root"] = root


@cli.command()
@_prerelease_options
@click.option("--exclude", multiple=True, help="Project that keeps its current version.")
@click.pass_context
def plan(ctx: click.Context, exclude: tuple[str, ...], prerelease_token: PrereleaseToken) -> None:
    """Show the version changes the pending change files would make."""
    workspace = _load_workspace(ctx)
    manager = ChangeManager(workspace, exclude)
    try:
        manager.load(prerelease_token=prerelease_token)
        manager.validate_changes()
    except MonobumpError as exc:
        raise click.ClickException(str(exc)) from exc

    if not manager.has_changes():
        click.echo("No changes found.")
        return
    for change in manager.packages_to_publish:
        project = workspace.projects[change.package_name]
        click.echo(
            f"  {change.order}  {change.package_name}: {project.version} → {change.new_version}"
            f" ({change.change_type.name})"
        )
    for name, policy_change in manager.changes.version_policy_changes.items():
        click.echo(
            f"  policy {name} → {policy_change.new_version} ({policy_change.change_type.name})"
        )


@cli.command()
@_prerelease_options
@click.option("--exclude", multiple=True, help="Project that keeps its current version.")
@click.option("--commit", "should_commit", is_flag=True, help="Write the changes to disk.")
@click.pass_context
def apply(
    ctx: click.Context,
    exclude: tuple[str, ...],
    should_commit: bool,
    prerelease_token: PrereleaseToken,
) -> None:
    """Apply change files to manifests and changelogs (dry run without --commit)."""
    workspace = _load_workspace(ctx)
    manager = ChangeManager(workspace, exclude)
    try:
        manager.load(prerelease_token=prerelease_token)
        if not manager.has_changes():
            click.echo("No changes found.")
            return
        manager.validate_changes()
        manager.apply(should_commit)
        manager.update_changelogs(should_commit)
        ChangeFiles(workspace.changes_folder).delete_all(should_commit)
    except MonobumpError as exc:
        raise click.ClickException(str(exc)) from exc


@cli.group()
def version() -> None:
    """Enforce and bump version policies."""


@version.command()
@click.option("--policy", "policy_name", default=None, help="Only check this version policy.")
@click.option("--force", is_flag=True, help="Move members down to a lower policy version.")
@click.option("--commit", "should_commit", is_flag=True, help="Write the changes to disk.")
@click.pass_context
def ensure(ctx: click.Context, policy_name: str | None, force: bool, should_commit: bool) -> None:
    """Make every project agree with its version policy."""
    workspace = _load_workspace(ctx)
    manager = VersionManager(workspace)
    try:
        manager.ensure(policy_name, should_commit, force)
    except MonobumpError as exc:
        raise click.ClickException(str(exc)) from exc
    for name, manifest in manager.updated_projects.items():
        click.echo(f"  {name}: {manifest['version']}")
    if not manager.updated_projects:
        click.echo("All projects match their version policies.")


@version.command()
@click.option("--policy", "policy_name", default=None, help="Only bump this version policy.")
@click.option(
    "--bump-type",
    type=click.Choice([t.name for t in BumpType if t != BumpType.none]),
    default=None,
    help="Override the policies' nextBump.",
)
@click.option("--identifier", default=None, help="Prerelease identifier for pre* bumps.")
@click.option("--commit", "should_commit", is_flag=True, help="Write the changes to disk.")
@click.pass_context
def bump(
    ctx: click.Context,
    policy_name: str | None,
    bump_type: str | None,
    identifier: str | None,
    should_commit: bool,
) -> None:
    """Bump version policies and apply change files to the other projects."""
    workspace = _load_workspace(ctx)
    manager = VersionManager(workspace)
    try:
        manager.bump(
            policy_name,
            BumpType[bump_type] if bump_type else None,
            identifier,
            should_commit,
        )
    except MonobumpError as exc:
        raise click.ClickException(str(exc)) from exc
    for name, manifest in manager.updated_projects.items():
        click.echo(f"  {name}: {manifest['version']}")


@cli.command()
@_prerelease_options
@click.option("--commit", "should_commit", is_flag=True, help="Write the changes to disk.")
@click.option("--execute", "should_execute", is_flag=True, help="Run git and npm commands.")
@click.option("--include-commit-details", is_flag=True, help="Read changelog authors from git.")
@click.option("--npm-tag", default=None, help="Dist-tag for npm publish.")
@click.option(
    "--include-all",
    is_flag=True,
    help="Publish every project whose version is not in the registry, ignoring change files.",
)
@click.option(
    "--version-policy", "policy_name", default=None, help="With --include-all, only this policy."
)
@click.option(
    "--regenerate-changelogs",
    is_flag=True,
    help="Rewrite every CHANGELOG.md from its CHANGELOG.json and stop.",
)
@click.pass_context
def publish(
    ctx: click.Context,
    should_commit: bool,
    should_execute: bool,
    include_commit_details: bool,
    npm_tag: str | None,
    include_all: bool,
    policy_name: str | None,
    regenerate_changelogs: bool,
    prerelease_token: PrereleaseToken,
) -> None:
    """Run the publish pipeline (usually called from CI)."""
    if regenerate_changelogs:
        workspace = _load_workspace(ctx)
        click.echo("Regenerating changelogs")
        try:
            changelog.regenerate_changelogs(workspace)
        except MonobumpError as exc:
            raise click.ClickException(str(exc)) from exc
        return
    if policy_name and not include_all:
        raise click.UsageError("--version-policy can only be used with --include-all")
    if include_all:
        run_publish_all(
            ctx.obj["root"],
            should_execute=should_execute,
            npm_tag=npm_tag,
            policy_name=policy_name,
        )
        return
    run_publish(
        ctx.obj["root"],
        should_commit=should_commit,
        should_execute=should_execute,
        prerelease_token=prerelease_token,
        include_commit_details=include_commit_details,
        npm_tag=npm_tag,
    )
