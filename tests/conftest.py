"""Shared test fixtures."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable

import pytest

from monobump.workspace import Workspace

RANGE = ">=1.0.0 <2.0.0"

LOCKSTEP_POLICY = {
    "policyName": "lockStepWithoutNextBump",
    "definitionName": "lockStepVersion",
    "version": "1.0.0",
}


def write_workspace(
    root: Path,
    packages: dict[str, dict[str, Any]],
    policies: list[dict[str, Any]] | None = None,
    workspace_table: str = "",
) -> Path:
    """Write a monobump.toml, one package.json per package and a policy file.

    Each package value may hold manifest tables (``dependencies``, ...), a
    ``version`` and the config keys ``version-policy``,
    ``decoupled-local-dependencies`` and ``should-publish`` (default True).
    """
    lines = ["[workspace]", workspace_table, ""]
    for name, spec in packages.items():
        spec = dict(spec)
        policy = spec.pop("version-policy", None)
        decoupled = spec.pop("decoupled-local-dependencies", None)
        publish = spec.pop("should-publish", True)
        lines += ["[[projects]]", f'name = "{name}"', f'path = "packages/{name}"']
        lines.append(f"should-publish = {'true' if publish else 'false'}")
        if policy:
            lines.append(f'version-policy = "{policy}"')
        if decoupled:
            lines.append(f"decoupled-local-dependencies = {json.dumps(decoupled)}")
        lines.append("")

        folder = root / "packages" / name
        folder.mkdir(parents=True, exist_ok=True)
        manifest = {"name": name, "version": spec.pop("version", "1.0.0"), **spec}
        (folder / "package.json").write_text(json.dumps(manifest, indent=2) + "\n")

    (root / "monobump.toml").write_text("\n".join(lines))
    if policies is not None:
        policy_file = root / "common" / "config" / "version-policies.json"
        policy_file.parent.mkdir(parents=True, exist_ok=True)
        policy_file.write_text(json.dumps(policies, indent=2))
    return root


def write_change_file(root: Path, package: str, changes: list[dict[str, Any]], name: str) -> Path:
    """Write a change file for package under common/changes."""
    path = root / "common" / "changes" / package / f"{name}.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    body = {
        "packageName": package,
        "email": "dev@example.com",
        "changes": [{"packageName": package, **change} for change in changes],
    }
    path.write_text(json.dumps(body, indent=2))
    return path


def read_manifest(root: Path, package: str) -> dict[str, Any]:
    return json.loads((root / "packages" / package / "package.json").read_text())


@pytest.fixture
def repo_packages() -> dict[str, dict[str, Any]]:
    """A workspace covering every edge kind the resolver handles.

    ``h`` and ``i`` share a lockstep policy without nextBump. ``j`` pins ``i``
    exactly. The two cyclic packages depend on each other, with one side
    decoupled.
    """
    return {
        "a": {},
        "b": {"dependencies": {"a": RANGE}},
        "c": {"dependencies": {"b": RANGE}},
        "d": {"dependencies": {"c": RANGE}},
        "e": {"devDependencies": {"a": RANGE}, "peerDependencies": {"a": RANGE}},
        "f": {
            "dependencies": {"b": RANGE},
            "peerDependencies": {"h": "^1.0.0"},
            "devDependencies": {"h": "^1.0.0"},
        },
        "g": {"dependencies": {"a": "*"}},
        "h": {"dependencies": {"a": RANGE}, "version-policy": "lockStepWithoutNextBump"},
        "i": {"version-policy": "lockStepWithoutNextBump"},
        "j": {"dependencies": {"i": "1.0.0"}},
        "cyclic-dep-1": {
            "dependencies": {"cyclic-dep-2": RANGE},
            "decoupled-local-dependencies": ["cyclic-dep-2"],
        },
        "cyclic-dep-2": {"dependencies": {"cyclic-dep-1": RANGE}},
    }


@pytest.fixture
def repo_root(tmp_path: Path, repo_packages: dict[str, dict[str, Any]]) -> Path:
    """The shared workspace written to disk, without change files."""
    return write_workspace(tmp_path, repo_packages, [dict(LOCKSTEP_POLICY)])


@pytest.fixture
def repo(repo_root: Path) -> Workspace:
    return Workspace.load(repo_root)


@pytest.fixture
def make_workspace(tmp_path: Path) -> Callable[..., Workspace]:
    """Factory writing a small workspace and loading it."""

    def factory(
        packages: dict[str, dict[str, Any]],
        policies: list[dict[str, Any]] | None = None,
        workspace_table: str = "",
    ) -> Workspace:
        write_workspace(tmp_path, packages, policies, workspace_table)
        return Workspace.load(tmp_path)

    return factory
