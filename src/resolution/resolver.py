"""Dependency version resolver.

Resolution runs in rounds. Each round walks the graph from the root over the
current choices, groups the constraints on every active package and picks a
version for it: the current choice while it still fits, then a pinned
version, then the highest registry version that matches. Rounds repeat until
no choice changes.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from constants import Constants, DependencyKind
from common.errors import (
    CyclicDependencyError,
    MissingPathDependencyError,
    UnresolvableConstraintError,
)
from common.logging_utils import extra_context, is_debug_enabled, Timer
from recipe.io import find_recipe_file, load_recipe
from recipe.models import Recipe, base_name, sub_name
from registry.base import RegistryClient
from selections.manager import relative_path
from selections.models import SelectedVersion, Selections
from versioning.models import ANY, Version, highest_matching

from .graph import DependencyGraph, Edge

logger = logging.getLogger(__name__)

LocalRecipes = Callable[[str, Version], Optional[Recipe]]
LocalVersions = Callable[[str], List[Version]]
ScmRecipes = Callable[[str, str, Version], Recipe]


@dataclass(frozen=True)
class _Choice:
    version: Version
    path: Optional[Path] = None
    repository: Optional[str] = None

    @property
    def key(self) -> Tuple:
        if self.path is not None:
            return ("path", str(self.path))
        if self.repository is not None:
            return ("scm", self.repository, str(self.version))
        return ("version", str(self.version))


class VersionResolver:
    """Computes a consistent set of package versions for a root recipe.

    Args:
        registry: Source of version lists and recipes.
        local_recipes: Consulted before the registry for recipes, so packages
            that are already cached need no registry query.
        local_versions: Versions available without the registry (the package
            cache); they are candidates alongside the registry versions.
        scm_recipes: Loads recipes of repository dependencies.
        max_workers: Upper bound of concurrent registry requests.
        loop_limit: Maximum number of resolution rounds.
    """

    def __init__(
        self,
        registry: RegistryClient,
        *,
        local_recipes: Optional[LocalRecipes] = None,
        local_versions: Optional[LocalVersions] = None,
        scm_recipes: Optional[ScmRecipes] = None,
        max_workers: int = Constants.RESOLVER_MAX_WORKERS,
        loop_limit: int = Constants.RESOLVER_LOOP_LIMIT,
    ) -> None:
        self.registry = registry
        self.local_recipes = local_recipes
        self.local_versions = local_versions
        self.scm_recipes = scm_recipes
        self.max_workers = max(1, max_workers)
        self.loop_limit = loop_limit
        self._versions: Dict[str, List[Version]] = {}
        self._recipes: Dict[Tuple, Optional[Recipe]] = {}
        self._unusable: Set[Tuple[str, Version]] = set()

    def resolve(
        self,
        root: Recipe,
        pinned: Optional[Selections] = None,
        previous: Optional[Selections] = None,
    ) -> Selections:
        """Resolve the dependency graph of ``root``.

        Args:
            root: Recipe of the project being built.
            pinned: Previous selections. Matching pinned versions are reused
                without querying the registry.
            previous: Selections that decide which optional dependencies are
                active. Defaults to ``pinned``; a scoped upgrade passes the
                whole lockfile here and only the unscoped entries as pins.

        Returns:
            Selections keyed by base package name, excluding the root.

        Raises:
            UnresolvableConstraintError: constraints on a package cannot be met.
            CyclicDependencyError: the selected graph has a cycle.
            MissingPathDependencyError: a path dependency has no recipe.
            NetworkFetchError: every registry failed for a needed query.
        """
        self._versions = {}
        self._recipes = {}
        self._unusable = set()
        choices: Dict[str, _Choice] = {}
        if previous is None:
            previous = pinned

        with Timer() as t:
            for round_no in range(1, self.loop_limit + 1):
                graph = self._walk(root, choices, previous)
                targets = graph.targets()
                self._prefetch_versions(
                    base for base, edges in targets.items()
                    if self._needs_versions(base, edges, choices.get(base), pinned)
                )
                new_choices: Dict[str, _Choice] = {}
                for base, edges in targets.items():
                    choice = self._decide(root, base, edges, choices.get(base), pinned)
                    if choice is not None:
                        new_choices[base] = choice
                self._prefetch_recipes(new_choices)
                dropped = False
                for base, choice in list(new_choices.items()):
                    if self._recipes.get((base,) + choice.key) is None:
                        self._unusable.add((base, choice.version))
                        del new_choices[base]
                        dropped = True
                if is_debug_enabled(logger):
                    logger.debug(
                        "Resolution round",
                        extra=extra_context(
                            event="resolve_round",
                            component="resolver",
                            round=round_no,
                            packages=len(new_choices),
                        ),
                    )
                if new_choices == choices and not dropped:
                    break
                choices = new_choices
            else:
                raise UnresolvableConstraintError(
                    root.name, [], reason=f"resolution did not settle after {self.loop_limit} rounds"
                )

            graph = self._walk(root, choices, previous)
            cycle = graph.find_cycle()
            if cycle:
                raise CyclicDependencyError(cycle)

        result = Selections()
        for base in sorted(choices):
            result.versions[base] = self._to_selected(choices[base], root)
        logger.info(
            "Resolved %d packages for %s",
            len(result.versions),
            root.name,
            extra=extra_context(
                event="resolve",
                component="resolver",
                outcome="success",
                package=root.name,
                duration_ms=t.duration_ms(),
            ),
        )
        return result

    # graph walk

    def _edge_kind(self, target_base: str, kind: DependencyKind, previous: Optional[Selections]) -> DependencyKind:
        if previous is None or not len(previous):
            return kind
        if kind is DependencyKind.OPTIONAL_DEFAULT and target_base not in previous:
            return DependencyKind.OPTIONAL
        if kind is DependencyKind.OPTIONAL and target_base in previous:
            return DependencyKind.OPTIONAL_DEFAULT
        return kind

    def _node_recipe(self, root: Recipe, name: str, choices: Dict[str, _Choice]) -> Optional[Recipe]:
        base = base_name(name)
        if base == root.name:
            base_recipe = root
        else:
            choice = choices.get(base)
            if choice is None:
                return None
            base_recipe = self._recipes.get((base,) + choice.key)
            if base_recipe is None:
                return None
        sub = sub_name(name)
        if not sub:
            return base_recipe
        found = base_recipe.get_subpackage(sub)
        if found is None:
            raise UnresolvableConstraintError(
                name, [], reason=f"package {base} {base_recipe.version} has no sub package {sub!r}"
            )
        return found

    def _walk(self, root: Recipe, choices: Dict[str, _Choice], previous: Optional[Selections]) -> DependencyGraph:
        graph = DependencyGraph(root.name)
        graph.add_node(root.name, str(root.version))
        queue = [root.name]
        visited = {root.name}
        while queue:
            name = queue.pop(0)
            recipe = self._node_recipe(root, name, choices)
            if recipe is None:
                continue
            for dep_name, spec in recipe.all_dependencies().items():
                target_base = base_name(dep_name)
                kind = self._edge_kind(target_base, spec.kind, previous)
                edge = Edge(
                    name, str(recipe.version), dep_name, spec, kind,
                    recipe.resolve_dependency_path(spec) if spec.is_path else None,
                )
                if target_base == root.name:
                    if edge.activates:
                        graph.add_edge(edge)
                        if dep_name not in visited:
                            visited.add(dep_name)
                            graph.add_node(dep_name, str(root.version))
                            queue.append(dep_name)
                    continue
                graph.add_edge(edge)
                if not edge.activates or dep_name in visited:
                    continue
                if target_base in choices:
                    visited.add(dep_name)
                    graph.add_node(dep_name, str(choices[target_base].version))
                    queue.append(dep_name)
        return graph

    # decisions

    def _needs_versions(
        self,
        base: str,
        edges: List[Edge],
        current: Optional[_Choice],
        pinned: Optional[Selections],
    ) -> bool:
        if base in self._versions:
            return False
        if any(e.spec.is_path or e.spec.is_scm for e in edges):
            return False
        merged = self._merge(edges)
        if not merged.is_valid():
            return False
        if current is not None and current.path is None and current.repository is None \
                and merged.matches(current.version) and (base, current.version) not in self._unusable:
            return False
        pin = pinned.get(base) if pinned is not None else None
        if pin is not None and not pin.is_scm:
            if pin.is_path:
                return False
            if merged.matches(pin.version) and (base, pin.version) not in self._unusable:
                return False
        return True

    @staticmethod
    def _merge(edges: Iterable[Edge]):
        merged = ANY
        for edge in edges:
            merged = merged.merge(edge.spec.range)
        return merged

    def _decide(
        self,
        root: Recipe,
        base: str,
        edges: List[Edge],
        current: Optional[_Choice],
        pinned: Optional[Selections],
    ) -> Optional[_Choice]:
        sources = [e.as_source() for e in edges]
        only_optional = not any(e.kind is DependencyKind.REQUIRED for e in edges)

        path_edges = [e for e in edges if e.spec.is_path]
        if path_edges:
            return self._decide_path(base, edges, path_edges, sources)

        scm_edges = [e for e in edges if e.spec.is_scm]
        if scm_edges:
            refs = {(e.spec.repository, e.spec.range.low) for e in scm_edges}
            if len(refs) > 1:
                raise UnresolvableConstraintError(base, sources, reason="conflicting repository references")
            repository, ref = refs.pop()
            return _Choice(version=ref, repository=repository)

        merged = self._merge(edges)
        if not merged.is_valid():
            return self._fail(base, sources, only_optional, "the version constraints do not overlap")

        if current is not None and current.path is None and current.repository is None \
                and merged.matches(current.version) and (base, current.version) not in self._unusable:
            return current

        pin = pinned.get(base) if pinned is not None else None
        if pin is not None and pin.is_path:
            choice = self._pinned_path(root, base, pin, merged)
            if choice is not None:
                return choice
        elif pin is not None and not pin.is_scm and merged.matches(pin.version) \
                and (base, pin.version) not in self._unusable:
            return _Choice(version=pin.version)

        candidates = [v for v in self._get_versions(base) if (base, v) not in self._unusable]
        if not candidates:
            return self._fail(base, sources, only_optional, "package not found in any registry")
        allow_prerelease = any(e.spec.range.explicit_prerelease for e in edges)
        best = highest_matching(candidates, merged, allow_prerelease)
        if best is None:
            return self._fail(base, sources, only_optional, f"no available version matches {merged}")
        if is_debug_enabled(logger):
            logger.debug(
                "Selected version",
                extra=extra_context(
                    event="select",
                    component="resolver",
                    package=base,
                    version=str(best),
                    constraint=str(merged),
                    candidates=len(candidates),
                ),
            )
        return _Choice(version=best)

    @staticmethod
    def _fail(base: str, sources, only_optional: bool, reason: str) -> None:
        if only_optional:
            logger.debug("Dropping optional dependency %s: %s", base, reason)
            return None
        raise UnresolvableConstraintError(base, sources, reason=reason)

    def _decide_path(
        self,
        base: str,
        edges: List[Edge],
        path_edges: List[Edge],
        sources,
    ) -> _Choice:
        paths = set()
        for edge in path_edges:
            if edge.path is None:
                raise MissingPathDependencyError(base, edge.spec.path)
            paths.add(edge.path)
        if len(paths) > 1:
            raise UnresolvableConstraintError(
                base, sources, reason="path dependencies point to different directories"
            )
        path = paths.pop()
        recipe = self._path_recipe(base, path)
        for edge in edges:
            if edge.spec.is_path or edge.spec.range.matches_any():
                continue
            if not edge.spec.range.matches(recipe.version):
                raise UnresolvableConstraintError(
                    base, sources, reason=f"package at {path} has version {recipe.version}"
                )
        return _Choice(version=recipe.version, path=path)

    def _pinned_path(self, root: Recipe, base: str, pin: SelectedVersion, merged) -> Optional[_Choice]:
        path = Path(pin.path)
        if not path.is_absolute():
            if root.directory is None:
                return None
            path = root.directory / path
        path = Path(os.path.normpath(str(path)))
        if find_recipe_file(path) is None:
            return None
        recipe = self._path_recipe(base, path)
        if not merged.matches(recipe.version):
            return None
        return _Choice(version=recipe.version, path=path)

    def _path_recipe(self, base: str, path: Path) -> Recipe:
        key = (base, "path", str(path))
        recipe = self._recipes.get(key)
        if recipe is None:
            if find_recipe_file(path) is None:
                raise MissingPathDependencyError(base, path)
            recipe = load_recipe(path)
            self._recipes[key] = recipe
        return recipe

    # registry access

    def _get_versions(self, base: str) -> List[Version]:
        if base not in self._versions:
            self._prefetch_versions([base])
        return self._versions[base]

    def _run_parallel(self, keys: List, func) -> Dict:
        results: Dict = {}
        if not keys:
            return results
        if len(keys) == 1 or self.max_workers == 1:
            for key in keys:
                results[key] = func(key)
            return results
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(keys))) as pool:
            futures = {key: pool.submit(func, key) for key in keys}
        for key in keys:
            results[key] = futures[key].result()
        return results

    def _prefetch_versions(self, bases: Iterable[str]) -> None:
        missing = sorted(set(b for b in bases if b not in self._versions))
        self._versions.update(self._run_parallel(missing, self._list_versions))

    def _list_versions(self, base: str) -> List[Version]:
        versions = set(self.registry.list_versions(base))
        if self.local_versions is not None:
            versions.update(self.local_versions(base))
        return sorted(versions)

    def _load_version_recipe(self, key: Tuple[str, Version]) -> Optional[Recipe]:
        base, version = key
        if self.local_recipes is not None:
            recipe = self.local_recipes(base, version)
            if recipe is not None:
                return recipe
        return self.registry.fetch_recipe(base, version)

    def _prefetch_recipes(self, choices: Dict[str, _Choice]) -> None:
        wanted = []
        for base in sorted(choices):
            choice = choices[base]
            key = (base,) + choice.key
            if key in self._recipes:
                continue
            if choice.repository is not None:
                if self.scm_recipes is None:
                    raise UnresolvableConstraintError(
                        base, [], reason=f"no repository checkout available for {choice.repository}"
                    )
                self._recipes[key] = self.scm_recipes(base, choice.repository, choice.version)
            else:
                wanted.append((base, choice.version))
        for (base, version), recipe in self._run_parallel(wanted, self._load_version_recipe).items():
            self._recipes[(base,) + _Choice(version=version).key] = recipe
            if recipe is None:
                logger.warning("No recipe available for %s %s, skipping that version", base, version)

    def _to_selected(self, choice: _Choice, root: Recipe) -> SelectedVersion:
        if choice.path is not None:
            if root.directory is not None:
                return SelectedVersion(path=relative_path(choice.path, root.directory))
            return SelectedVersion(path=choice.path.as_posix())
        if choice.repository is not None:
            return SelectedVersion(version=choice.version, repository=choice.repository)
        return SelectedVersion(version=choice.version)
