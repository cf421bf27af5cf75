"""Tests for monobump.pipeline."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Any, Callable
from unittest.mock import MagicMock, call, patch

import pytest

from monobump.change_manager import ChangeManager
from monobump.models import ChangeType, ResolvedChange
from monobump.pipeline import (
    get_published_versions,
    is_releasable,
    is_version_published,
    publish_all,
    publish_packages,
    run_publish,
    run_publish_all,
    tag_packages,
)
from monobump.prerelease import PrereleaseToken
from monobump.workspace import Workspace

from conftest import read_manifest, write_change_file


def _resolved(name: str, change_type: ChangeType, version: str = "1.0.1") -> ResolvedChange:
    return ResolvedChange(package_name=name, change_type=change_type, new_version=version)


def _npm_result(stdout: str, returncode: int = 0) -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(["npm"], returncode, stdout=stdout, stderr="")


class TestGetPublishedVersions:
    """Tests for get_published_versions()."""

    @patch("monobump.pipeline.npm")
    def test_list_of_versions(self, mock_npm: MagicMock) -> None:
        mock_npm.return_value = _npm_result('["1.0.0", "1.0.1+sha.1"]')
        assert get_published_versions("a") == {"1.0.0", "1.0.1"}
        mock_npm.assert_called_once_with("view", "a", "versions", "--json", cwd=None)

    @patch("monobump.pipeline.npm")
    def test_single_version(self, mock_npm: MagicMock) -> None:
        """npm prints a bare string when only one version exists."""
        mock_npm.return_value = _npm_result('"1.0.0"')
        assert get_published_versions("a") == {"1.0.0"}

    @patch("monobump.pipeline.npm")
    def test_never_published(self, mock_npm: MagicMock) -> None:
        mock_npm.return_value = _npm_result("", returncode=1)
        assert get_published_versions("a") == set()


class TestReleasable:
    def test_rules(self, repo: Workspace) -> None:
        project = repo.projects["a"]
        assert is_releasable(_resolved("a", ChangeType.patch), project)
        assert not is_releasable(_resolved("a", ChangeType.dependency), project)
        assert is_releasable(_resolved("a", ChangeType.dependency), project, prerelease=True)
        unpublished = project.model_copy(update={"publish": False})
        assert not is_releasable(_resolved("a", ChangeType.major), unpublished)

    def test_version_published(self) -> None:
        assert is_version_published("1.0.0+build", {"1.0.0"})
        assert not is_version_published("1.0.1", {"1.0.0"})


class TestTagPackages:
    """Tests for tag_packages()."""

    @patch("monobump.pipeline.exec_command")
    @patch("monobump.pipeline.step")
    def test_tags_released_packages(
        self, mock_step: MagicMock, mock_exec: MagicMock, repo: Workspace
    ) -> None:
        changes = [_resolved("a", ChangeType.patch), _resolved("b", ChangeType.dependency)]
        tags = tag_packages(repo, changes, should_execute=False)

        assert tags == ["a_v1.0.0"]
        mock_exec.assert_called_once_with(
            False, "git", "tag", "-a", "a_v1.0.0", "-m", "a v1.0.0", cwd=repo.root
        )


class TestPublishPackages:
    """Tests for publish_packages()."""

    @patch("monobump.pipeline.get_published_versions")
    @patch("monobump.pipeline.exec_command")
    @patch("monobump.pipeline.step")
    def test_dry_run_does_not_query_registry(
        self,
        mock_step: MagicMock,
        mock_exec: MagicMock,
        mock_versions: MagicMock,
        repo: Workspace,
    ) -> None:
        mock_exec.return_value = True
        published = publish_packages(
            repo, [_resolved("a", ChangeType.patch)], should_execute=False, npm_tag="next"
        )

        assert published == ["a"]
        mock_versions.assert_not_called()
        mock_exec.assert_called_once_with(
            False, "npm", "publish", "--tag", "next", cwd=repo.root / "packages" / "a"
        )

    @patch("monobump.pipeline.get_published_versions")
    @patch("monobump.pipeline.exec_command")
    @patch("monobump.pipeline.step")
    def test_skips_published_versions(
        self,
        mock_step: MagicMock,
        mock_exec: MagicMock,
        mock_versions: MagicMock,
        repo: Workspace,
    ) -> None:
        mock_versions.return_value = {"1.0.0"}
        published = publish_packages(repo, [_resolved("a", ChangeType.patch)], True)
        assert published == []
        mock_exec.assert_not_called()

    @patch("monobump.pipeline.exec_command")
    @patch("monobump.pipeline.step")
    def test_failure_is_fatal(
        self, mock_step: MagicMock, mock_exec: MagicMock, repo: Workspace
    ) -> None:
        mock_exec.return_value = False
        with pytest.raises(SystemExit) as exc_info:
            publish_packages(repo, [_resolved("a", ChangeType.patch)], False)
        assert exc_info.value.code == 1

    @patch("monobump.pipeline.get_published_versions")
    @patch("monobump.pipeline.exec_command")
    @patch("monobump.pipeline.step")
    def test_exact_versions_pinned_during_publish(
        self,
        mock_step: MagicMock,
        mock_exec: MagicMock,
        mock_versions: MagicMock,
        make_workspace: Callable[..., Workspace],
        tmp_path: Path,
    ) -> None:
        """The manifest is pinned while npm runs and restored afterwards."""
        workspace = make_workspace(
            {
                "a": {"version": "1.2.0"},
                "b": {"dependencies": {"a": "workspace:^1.0.0"}, "version-policy": "ind"},
            },
            [
                {
                    "policyName": "ind",
                    "definitionName": "individualVersion",
                    "dependencies": {"versionFormatForPublish": "exact"},
                }
            ],
        )
        mock_versions.return_value = set()
        seen: dict[str, Any] = {}

        def fake_exec(should_execute: bool, *args: str, cwd: Path | None = None) -> bool:
            seen.update(read_manifest(tmp_path, "b"))
            return True

        mock_exec.side_effect = fake_exec
        publish_packages(workspace, [_resolved("b", ChangeType.patch)], True)

        assert seen["dependencies"] == {"a": "1.2.0"}
        assert read_manifest(tmp_path, "b")["dependencies"] == {"a": "workspace:^1.0.0"}

    @patch("monobump.pipeline.get_published_versions")
    @patch("monobump.pipeline.exec_command")
    @patch("monobump.pipeline.step")
    def test_workspace_ranges_resolved_during_publish(
        self,
        mock_step: MagicMock,
        mock_exec: MagicMock,
        mock_versions: MagicMock,
        make_workspace: Callable[..., Workspace],
        tmp_path: Path,
    ) -> None:
        """npm never sees a "workspace:" specifier, whatever the policy."""
        workspace = make_workspace({"a": {}, "b": {"dependencies": {"a": "workspace:^1.0.0"}}})
        write_change_file(tmp_path, "a", [{"type": "major"}], "one")
        manager = ChangeManager(workspace)
        manager.load()
        manager.apply(True)
        mock_versions.return_value = set()
        seen: dict[str, dict[str, Any]] = {}

        def fake_exec(should_execute: bool, *args: str, cwd: Path | None = None) -> bool:
            assert cwd is not None
            seen[cwd.name] = read_manifest(tmp_path, cwd.name)
            return True

        mock_exec.side_effect = fake_exec
        published = publish_packages(workspace, manager.packages_to_publish, True)

        assert published == ["a", "b"]
        assert seen["b"]["dependencies"] == {"a": "^2.0.0"}
        assert read_manifest(tmp_path, "b")["dependencies"] == {"a": "workspace:^2.0.0"}

    @patch("monobump.pipeline.get_published_versions")
    @patch("monobump.pipeline.exec_command")
    @patch("monobump.pipeline.step")
    def test_workspace_wildcard_resolved_during_publish(
        self,
        mock_step: MagicMock,
        mock_exec: MagicMock,
        mock_versions: MagicMock,
        make_workspace: Callable[..., Workspace],
        tmp_path: Path,
    ) -> None:
        workspace = make_workspace(
            {"a": {"version": "1.2.0"}, "b": {"dependencies": {"a": "workspace:*"}}}
        )
        mock_versions.return_value = set()
        seen: dict[str, Any] = {}

        def fake_exec(should_execute: bool, *args: str, cwd: Path | None = None) -> bool:
            seen.update(read_manifest(tmp_path, "b"))
            return True

        mock_exec.side_effect = fake_exec
        publish_packages(workspace, [_resolved("b", ChangeType.patch)], True)

        assert seen["dependencies"] == {"a": "1.2.0"}
        assert read_manifest(tmp_path, "b")["dependencies"] == {"a": "workspace:*"}


class TestPublishAll:
    """Tests for publish_all()."""

    def _workspace(self, make_workspace: Callable[..., Workspace]) -> Workspace:
        return make_workspace(
            {
                "b": {"dependencies": {"a": "^1.0.0"}, "version-policy": "ind"},
                "a": {},
                "c": {"should-publish": False},
                "d": {},
            },
            [{"policyName": "ind", "definitionName": "individualVersion"}],
        )

    @patch("monobump.pipeline.get_published_versions")
    @patch("monobump.pipeline.exec_command")
    @patch("monobump.pipeline.step")
    def test_publishes_unreleased_in_dependency_order(
        self,
        mock_step: MagicMock,
        mock_exec: MagicMock,
        mock_versions: MagicMock,
        make_workspace: Callable[..., Workspace],
    ) -> None:
        workspace = self._workspace(make_workspace)
        mock_versions.side_effect = lambda name, cwd=None: {"1.0.0"} if name == "d" else set()
        mock_exec.return_value = True

        published = publish_all(workspace, True)

        assert published == ["a", "b"]
        commands = [c.args[1:] for c in mock_exec.call_args_list]
        assert commands == [
            ("npm", "publish"),
            ("git", "tag", "-a", "a_v1.0.0", "-m", "a v1.0.0"),
            ("npm", "publish"),
            ("git", "tag", "-a", "b_v1.0.0", "-m", "b v1.0.0"),
        ]

    @patch("monobump.pipeline.get_published_versions")
    @patch("monobump.pipeline.exec_command")
    @patch("monobump.pipeline.step")
    def test_version_policy_filter(
        self,
        mock_step: MagicMock,
        mock_exec: MagicMock,
        mock_versions: MagicMock,
        make_workspace: Callable[..., Workspace],
    ) -> None:
        workspace = self._workspace(make_workspace)
        mock_exec.return_value = True

        assert publish_all(workspace, False, npm_tag="next", policy_name="ind") == ["b"]
        mock_versions.assert_not_called()
        assert call(
            False, "npm", "publish", "--tag", "next", cwd=workspace.root / "packages" / "b"
        ) in mock_exec.call_args_list

    @patch("monobump.pipeline.exec_command")
    def test_unknown_policy_is_fatal(
        self, mock_exec: MagicMock, repo_root: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        with pytest.raises(SystemExit):
            run_publish_all(repo_root, policy_name="nope")
        assert "Failed to find version policy nope" in capsys.readouterr().err
        mock_exec.assert_not_called()

    @patch("monobump.pipeline.exec_command")
    def test_ignores_change_files(self, mock_exec: MagicMock, repo_root: Path) -> None:
        change_file = write_change_file(repo_root, "a", [{"type": "major"}], "one")
        mock_exec.return_value = True

        published = run_publish_all(repo_root)

        assert "a" in published
        assert read_manifest(repo_root, "a")["version"] == "1.0.0"
        assert change_file.exists()
        assert call(
            False, "git", "tag", "-a", "a_v1.0.0", "-m", "a v1.0.0", cwd=repo_root.resolve()
        ) in mock_exec.call_args_list


class TestRunPublish:
    """Tests for run_publish()."""

    @patch("monobump.pipeline.exec_command")
    def test_no_changes(self, mock_exec: MagicMock, repo_root: Path) -> None:
        assert run_publish(repo_root) == []
        mock_exec.assert_not_called()

    @patch("monobump.pipeline.exec_command")
    def test_dry_run(self, mock_exec: MagicMock, repo_root: Path) -> None:
        change_file = write_change_file(repo_root, "a", [{"type": "minor"}], "one")
        mock_exec.return_value = True

        ordered = run_publish(repo_root)

        assert ordered[0].package_name == "a"
        assert ordered[0].new_version == "1.1.0"
        assert read_manifest(repo_root, "a")["version"] == "1.0.0"
        assert change_file.exists()
        commands = [c.args[1:3] for c in mock_exec.call_args_list]
        assert ("git", "commit") not in commands
        assert call(
            False, "git", "tag", "-a", "a_v1.1.0", "-m", "a v1.1.0", cwd=repo_root.resolve()
        ) in mock_exec.call_args_list
        assert all(c.args[0] is False for c in mock_exec.call_args_list)

    @patch("monobump.pipeline.exec_command")
    def test_commit_without_execute(self, mock_exec: MagicMock, repo_root: Path) -> None:
        change_file = write_change_file(repo_root, "a", [{"type": "patch"}], "one")
        mock_exec.return_value = True

        run_publish(repo_root, should_commit=True)

        assert read_manifest(repo_root, "a")["version"] == "1.0.1"
        assert read_manifest(repo_root, "b")["dependencies"] == {"a": ">=1.0.1 <2.0.0"}
        assert (repo_root / "packages" / "a" / "CHANGELOG.json").exists()
        assert not change_file.exists()
        commands = [c.args[1:3] for c in mock_exec.call_args_list]
        assert ("git", "commit") in commands
        assert all(c.args[0] is False for c in mock_exec.call_args_list)

    @patch("monobump.pipeline.exec_command")
    def test_commit_uses_policy_commit_format(
        self, mock_exec: MagicMock, make_workspace: Callable[..., Workspace], tmp_path: Path
    ) -> None:
        """Manifests are in the commit format by the time git commits them."""
        make_workspace(
            {"a": {}, "b": {"dependencies": {"a": "^1.0.0"}, "version-policy": "ind"}},
            [
                {
                    "policyName": "ind",
                    "definitionName": "individualVersion",
                    "dependencies": {"versionFormatForCommit": "wildcard"},
                }
            ],
        )
        write_change_file(tmp_path, "a", [{"type": "patch"}], "one")
        committed: dict[str, Any] = {}

        def fake_exec(should_execute: bool, *args: str, cwd: Path | None = None) -> bool:
            if args[:2] == ("git", "commit"):
                committed.update(read_manifest(tmp_path, "b"))
            return True

        mock_exec.side_effect = fake_exec
        run_publish(tmp_path, should_commit=True)

        assert committed["dependencies"] == {"a": "*"}
        assert read_manifest(tmp_path, "b")["dependencies"] == {"a": "*"}

    @patch("monobump.pipeline.exec_command")
    def test_prerelease_publishes_dependency_changes(
        self, mock_exec: MagicMock, repo_root: Path
    ) -> None:
        write_change_file(repo_root, "a", [{"type": "patch"}], "one")
        mock_exec.return_value = True

        run_publish(repo_root, prerelease_token=PrereleaseToken("alpha.1"))

        tags = [c.args[4] for c in mock_exec.call_args_list if c.args[1:3] == ("git", "tag")]
        assert "a_v1.0.1-alpha.1" in tags
        assert "b_v1.0.1-alpha.1" in tags

    def test_errors_are_fatal(
        self, repo_root: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        write_change_file(repo_root, "a", [{"type": "hotfix"}], "1-hotfix")
        write_change_file(repo_root, "a", [{"type": "major"}], "2-major")
        with pytest.raises(SystemExit):
            run_publish(repo_root)
        assert "ERROR: Cannot apply major change after hotfix" in capsys.readouterr().err
