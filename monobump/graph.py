"""Dependency graph utilities.

Builds the consumer graph between workspace projects and provides
topological sorting. An edge B → A ("A consumes B") exists when A declares a
dependency on B that links to the local copy: either through the workspace
protocol or with a range the local version satisfies. Decoupled local
dependencies never produce edges.
"""

from __future__ import annotations

from typing import Iterable, Mapping

from .errors import ConfigurationError
from .models import Project
from .ranges import parse_specifier, satisfies


def topo_sort(dependencies: Mapping[str, Iterable[str]]) -> list[str]:
    """Topologically sort names by their dependencies.

    Uses Kahn's algorithm to produce an order where dependencies come before
    dependents. Ties are broken alphabetically for deterministic output.

    Args:
        dependencies: Map of name → names it depends on. Names not present
            as keys are ignored.

    Returns:
        List of names, dependencies first.

    Raises:
        ConfigurationError: If a dependency cycle is detected.
    """
    in_degree = {n: 0 for n in dependencies}
    reverse_deps: dict[str, list[str]] = {n: [] for n in dependencies}

    for name, deps in dependencies.items():
        for dep in set(deps):
            if dep in dependencies and dep != name:
                in_degree[name] += 1
                reverse_deps[dep].append(name)

    queue = sorted(n for n, d in in_degree.items() if d == 0)
    order: list[str] = []

    while queue:
        node = queue.pop(0)
        order.append(node)
        for dependent in sorted(reverse_deps[node]):
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                queue.append(dependent)
        queue.sort()

    if len(order) != len(dependencies):
        remaining = sorted(set(dependencies) - set(order))
        raise ConfigurationError(
            f"Dependency cycle detected involving: {', '.join(remaining)}. "
            "Break it by listing one side in decoupled-local-dependencies."
        )

    return order


class ProjectGraph:
    """Dependency and consumer relations between workspace projects.

    Both directions are computed once at construction and the graph is
    checked for cycles, so lookups during change resolution are plain dict
    reads.
    """

    def __init__(self, projects: Iterable[Project]) -> None:
        self._projects = {project.name: project for project in projects}
        self._dependencies: dict[str, frozenset[str]] = {}
        self._consumers: dict[str, frozenset[str]] = {}
        self._build()
        self._order = topo_sort(self._dependencies)

    def _build(self) -> None:
        consumers: dict[str, set[str]] = {name: set() for name in self._projects}
        for name, project in self._projects.items():
            deps: set[str] = set()
            for _, dep_name, specifier in project.iter_dependencies():
                if dep_name == name or dep_name not in self._projects:
                    continue
                if dep_name in project.decoupled_local_dependencies:
                    continue
                if self._links_locally(dep_name, specifier):
                    deps.add(dep_name)
            self._dependencies[name] = frozenset(deps)
            for dep_name in deps:
                consumers[dep_name].add(name)
        self._consumers = {name: frozenset(names) for name, names in consumers.items()}

    def _links_locally(self, dep_name: str, specifier: str) -> bool:
        parsed = parse_specifier(dep_name, specifier)
        if parsed.is_workspace:
            return True
        return satisfies(self._projects[dep_name].version, parsed.version_specifier)

    def dependencies_of(self, name: str) -> frozenset[str]:
        """Workspace projects that ``name`` links to."""
        return self._dependencies.get(name, frozenset())

    def consumers_of(self, name: str) -> list[str]:
        """Workspace projects linking to ``name``, sorted by name."""
        return sorted(self._consumers.get(name, ()))

    @property
    def order(self) -> list[str]:
        """All project names, dependencies first."""
        return list(self._order)
