"""Resolve, lock and fetch pipeline for a project.

``resolve_for_build`` reuses the lockfile when it still satisfies the
project, ``resolve_for_upgrade`` re-resolves (all packages or one) and always
writes the lockfile, and ``ensure_all`` materializes every selection in the
package cache.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional, Union

from constants import Constants
from common.logging_utils import extra_context
from package_cache.store import PackageCache
from recipe.io import load_recipe
from recipe.models import Recipe, base_name, sub_name
from registry.registry_list import RegistryList
from resolution.resolver import VersionResolver
from selections.manager import find_selections_file, is_reusable, load_selections, save_selections
from selections.models import SelectedVersion, Selections
from settings import Settings, default_user_dir, load_settings

logger = logging.getLogger(__name__)


def _project_dir(root: Recipe, project_dir: Optional[Union[str, Path]]) -> Path:
    if project_dir is not None:
        return Path(project_dir).resolve()
    if root.directory is None:
        raise ValueError("A project directory is required for recipes not loaded from disk")
    return root.directory


def _recipe_lookup(cache: PackageCache, project_dir: Path):
    """Recipe source for ``is_reusable``: cached packages and path selections only."""

    def lookup(name: str, selected: SelectedVersion) -> Optional[Recipe]:
        if selected.is_path:
            path = Path(selected.path)
            if not path.is_absolute():
                path = project_dir / path
            try:
                recipe = load_recipe(path)
            except FileNotFoundError:
                return None
            sub = sub_name(name)
            return recipe.get_subpackage(sub) if sub else recipe
        return cache.load_recipe(name, selected.version)

    return lookup


def _make_resolver(cache: PackageCache, registries: RegistryList, max_workers: int) -> VersionResolver:
    return VersionResolver(
        registries,
        local_recipes=cache.load_recipe,
        local_versions=cache.versions,
        scm_recipes=cache.load_repository_recipe,
        max_workers=max_workers,
    )


def _load_existing(project: Path) -> Optional[Selections]:
    path = find_selections_file(project)
    if path is None:
        return None
    if path.parent != project:
        logger.info("Using inherited selections from %s", path)
    return load_selections(path, base_dir=project)


def resolve_for_build(
    root: Recipe,
    cache: PackageCache,
    registries: RegistryList,
    *,
    project_dir: Optional[Union[str, Path]] = None,
    max_workers: int = Constants.RESOLVER_MAX_WORKERS,
) -> Selections:
    """Selections to build ``root`` with.

    An existing lockfile that still satisfies the project is returned as is,
    without any registry query. Otherwise the graph is resolved with the
    lockfile as pins and the lockfile is rewritten when the result differs.

    Raises:
        MalformedLockfileError: the existing lockfile cannot be read.
    """
    project = _project_dir(root, project_dir)
    existing = _load_existing(project)
    if existing is not None and is_reusable(existing, root, _recipe_lookup(cache, project)):
        logger.debug(
            "Reusing selections",
            extra=extra_context(event="lockfile_reuse", component="orchestrator", package=root.name),
        )
        return existing

    resolved = _make_resolver(cache, registries, max_workers).resolve(root, existing)
    if existing is not None:
        resolved.extra = {k: v for k, v in existing.extra.items() if k != "inheritable"}
    if not resolved.same_versions(existing):
        save_selections(resolved, project / Constants.SELECTIONS_FILE)
    return resolved


def resolve_for_upgrade(
    root: Recipe,
    cache: PackageCache,
    registries: RegistryList,
    scope: Optional[str] = None,
    *,
    project_dir: Optional[Union[str, Path]] = None,
    max_workers: int = Constants.RESOLVER_MAX_WORKERS,
) -> Selections:
    """Re-resolve and always write the lockfile.

    Args:
        scope: Package to upgrade. ``None`` upgrades everything; otherwise
            every other package keeps its pinned version when it still fits.
    """
    project = _project_dir(root, project_dir)
    pinned: Optional[Selections] = None
    existing = _load_existing(project)
    if scope is not None and existing is not None:
        pinned = existing.copy()
        pinned.remove(base_name(scope))
    resolved = _make_resolver(cache, registries, max_workers).resolve(root, pinned, existing)
    if existing is not None:
        resolved.extra = {k: v for k, v in existing.extra.items() if k != "inheritable"}
    save_selections(resolved, project / Constants.SELECTIONS_FILE)
    logger.info(
        "Upgraded %s",
        scope or "all packages",
        extra=extra_context(event="upgrade", component="orchestrator", package=root.name, scope=scope),
    )
    return resolved


def ensure_all(
    selections: Selections,
    cache: PackageCache,
    registries: RegistryList,
    project_dir: Union[str, Path],
) -> Dict[str, Path]:
    """Make every selected package available locally.

    Returns:
        Mapping of base package name to its directory.
    """
    paths: Dict[str, Path] = {}
    for name, selected in selections:
        paths[name] = cache.ensure_selected(name, selected, registries, project_dir)
    return paths


class Orchestrator:
    """Bundles settings, cache and registries for one project."""

    def __init__(
        self,
        project_dir: Union[str, Path],
        cache: PackageCache,
        registries: RegistryList,
        settings: Optional[Settings] = None,
    ) -> None:
        self.project_dir = Path(project_dir).resolve()
        self.cache = cache
        self.registries = registries
        self.settings = settings or Settings()

    @classmethod
    def from_settings(
        cls,
        project_dir: Union[str, Path],
        settings: Optional[Settings] = None,
        user_dir: Optional[Union[str, Path]] = None,
    ) -> "Orchestrator":
        user_dir = Path(user_dir) if user_dir is not None else default_user_dir()
        settings = settings or load_settings(project_dir, user_dir)
        cache = PackageCache(settings.cache_root(project_dir, user_dir), lock_timeout=settings.lock_timeout)
        return cls(project_dir, cache, settings.build_registries(), settings)

    def load_root(self) -> Recipe:
        return load_recipe(self.project_dir)

    def resolve_for_build(self, root: Optional[Recipe] = None) -> Selections:
        return resolve_for_build(
            root or self.load_root(),
            self.cache,
            self.registries,
            project_dir=self.project_dir,
            max_workers=self.settings.max_workers,
        )

    def resolve_for_upgrade(self, scope: Optional[str] = None, root: Optional[Recipe] = None) -> Selections:
        return resolve_for_upgrade(
            root or self.load_root(),
            self.cache,
            self.registries,
            scope,
            project_dir=self.project_dir,
            max_workers=self.settings.max_workers,
        )

    def ensure_all(self, selections: Selections) -> Dict[str, Path]:
        return ensure_all(selections, self.cache, self.registries, self.project_dir)
