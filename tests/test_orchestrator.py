"""Tests for the resolve, lock and fetch pipeline."""

import json
from unittest.mock import patch

import pytest

from common.errors import MalformedLockfileError
from conftest import write_recipe
from constants import CacheLocation, SkipRegistry
from orchestrator import Orchestrator, ensure_all, resolve_for_build, resolve_for_upgrade
from package_cache.store import PackageCache
from recipe.io import load_recipe
from registry.registry_list import RegistryList
from selections.manager import load_selections
from settings import Settings
from versioning.models import Version


def lockfile(project_dir):
    return project_dir / "dub.selections.json"


def write_lock(project_dir, versions, **extra):
    lockfile(project_dir).write_text(
        json.dumps({"fileVersion": 1, **extra, "versions": versions}), encoding="utf-8"
    )


@pytest.fixture
def populated(registry):
    for name in ("a", "b"):
        for version in ("1.0.0", "1.1.0"):
            registry.add(name, version)
    return registry


class TestResolveForBuild:
    """Test lockfile reuse and creation for builds."""

    def test_creates_lockfile(self, registry, project_dir, cache_root):
        """Test a first build resolves and writes the lockfile."""
        registry.add("a", "1.0.0")
        registry.add("a", "1.5.0")
        registry.add("a", "2.0.0")
        write_recipe(project_dir, {"name": "app", "dependencies": {"a": ">=1.0.0 <2.0.0"}})
        selections = resolve_for_build(load_recipe(project_dir), PackageCache(cache_root), registry)
        assert selections.get("a").version == Version("1.5.0")
        assert load_selections(lockfile(project_dir)).same_versions(selections)

    def test_warm_cache_needs_no_registry(self, populated, project_dir, cache_root):
        """Test a warm cache rebuild makes no registry calls."""
        write_recipe(project_dir, {"name": "app", "dependencies": {"a": "*"}})
        cache = PackageCache(cache_root)
        root = load_recipe(project_dir)
        first = resolve_for_build(root, cache, populated)
        ensure_all(first, cache, populated, project_dir)
        before = lockfile(project_dir).read_text(encoding="utf-8")
        populated.calls.clear()

        again = resolve_for_build(root, cache, populated)
        assert again.same_versions(first)
        assert populated.total_calls == 0
        assert lockfile(project_dir).read_text(encoding="utf-8") == before

    def test_unchanged_result_not_saved(self, populated, project_dir, cache_root):
        """Test the lockfile is not rewritten when nothing changed."""
        write_recipe(project_dir, {"name": "app", "dependencies": {"a": "*"}})
        write_lock(project_dir, {"a": "1.0.0"})
        with patch('orchestrator.save_selections') as mock_save:
            selections = resolve_for_build(load_recipe(project_dir), PackageCache(cache_root), populated)
        assert selections.get("a").version == Version("1.0.0")
        mock_save.assert_not_called()
        assert populated.calls["list_versions"] == 0

    def test_edited_constraint_rewrites(self, populated, project_dir, cache_root):
        """Test an edited constraint re-resolves and keeps unknown keys."""
        write_recipe(project_dir, {"name": "app", "dependencies": {"a": ">=1.1.0"}})
        write_lock(project_dir, {"a": "1.0.0"}, custom="kept")
        resolve_for_build(load_recipe(project_dir), PackageCache(cache_root), populated)
        data = json.loads(lockfile(project_dir).read_text(encoding="utf-8"))
        assert data["versions"] == {"a": "1.1.0"}
        assert data["custom"] == "kept"

    def test_new_dependency_keeps_other_pins(self, populated, project_dir, cache_root):
        """Test adding a dependency keeps existing selections."""
        write_recipe(project_dir, {"name": "app", "dependencies": {"a": "*", "b": "*"}})
        write_lock(project_dir, {"a": "1.0.0"})
        selections = resolve_for_build(load_recipe(project_dir), PackageCache(cache_root), populated)
        assert selections.get("a").version == Version("1.0.0")
        assert selections.get("b").version == Version("1.1.0")

    def test_removed_dependency_dropped(self, populated, project_dir, cache_root):
        """Test a dependency removed from the recipe leaves the lockfile."""
        write_recipe(project_dir, {"name": "app", "dependencies": {"a": "*"}})
        write_lock(project_dir, {"a": "1.0.0", "removed": "3.0.0"})
        cache = PackageCache(cache_root)
        cache.ensure("a", Version("1.0.0"), populated)
        selections = resolve_for_build(load_recipe(project_dir), cache, populated)
        assert "removed" not in selections
        assert json.loads(lockfile(project_dir).read_text(encoding="utf-8"))["versions"] == {"a": "1.0.0"}
        assert list(ensure_all(selections, cache, populated, project_dir)) == ["a"]

    def test_offline_uses_cached_versions(self, populated, project_dir, cache_root):
        """Test cached packages resolve offline without a lockfile."""
        write_recipe(project_dir, {"name": "app", "dependencies": {"a": "*"}})
        cache = PackageCache(cache_root)
        cache.ensure("a", Version("1.0.0"), populated)
        selections = resolve_for_build(load_recipe(project_dir), cache, RegistryList.offline())
        assert selections.get("a").version == Version("1.0.0")

    def test_malformed_lockfile(self, populated, project_dir, cache_root):
        """Test a malformed lockfile is reported."""
        write_recipe(project_dir, {"name": "app", "dependencies": {"a": "*"}})
        lockfile(project_dir).write_text("{", encoding="utf-8")
        with pytest.raises(MalformedLockfileError):
            resolve_for_build(load_recipe(project_dir), PackageCache(cache_root), populated)

    def test_inherited_lockfile_reused(self, populated, tmp_path, cache_root):
        """Test an inheritable parent lockfile is reused without writing one."""
        workspace = tmp_path / "ws"
        project = workspace / "app"
        write_recipe(project, {"name": "app", "dependencies": {"a": "*"}})
        write_lock(workspace, {"a": "1.0.0"}, inheritable=True)
        selections = resolve_for_build(load_recipe(project), PackageCache(cache_root), populated)
        assert selections.get("a").version == Version("1.0.0")
        assert not lockfile(project).exists()


class TestResolveForUpgrade:
    """Test full and scoped upgrades."""

    def test_full_upgrade(self, populated, project_dir, cache_root):
        """Test a full upgrade ignores existing selections."""
        write_recipe(project_dir, {"name": "app", "dependencies": {"a": "*", "b": "*"}})
        write_lock(project_dir, {"a": "1.0.0", "b": "1.0.0"})
        selections = resolve_for_upgrade(load_recipe(project_dir), PackageCache(cache_root), populated)
        assert selections.get("a").version == Version("1.1.0")
        assert selections.get("b").version == Version("1.1.0")

    def test_scoped_upgrade(self, populated, project_dir, cache_root):
        """Test a scoped upgrade only moves the named package."""
        write_recipe(project_dir, {"name": "app", "dependencies": {"a": "*", "b": "*"}})
        write_lock(project_dir, {"a": "1.0.0", "b": "1.0.0"})
        selections = resolve_for_upgrade(load_recipe(project_dir), PackageCache(cache_root), populated, "b")
        assert selections.get("a").version == Version("1.0.0")
        assert selections.get("b").version == Version("1.1.0")

    def test_scoped_upgrade_keeps_optional_default(self, populated, project_dir, cache_root):
        """Test upgrading a selected optional dependency keeps it in the lockfile."""
        populated.add("o", "1.0.0")
        populated.add("o", "1.1.0")
        write_recipe(project_dir, {
            "name": "app",
            "dependencies": {"a": "*", "o": {"version": "*", "optional": True, "default": True}},
        })
        write_lock(project_dir, {"a": "1.0.0", "o": "1.0.0"})
        selections = resolve_for_upgrade(load_recipe(project_dir), PackageCache(cache_root), populated, "o")
        assert selections.get("a").version == Version("1.0.0")
        assert selections.get("o").version == Version("1.1.0")

    def test_upgrade_is_idempotent(self, populated, project_dir, cache_root):
        """Test repeated upgrades produce the same lockfile."""
        write_recipe(project_dir, {"name": "app", "dependencies": {"a": "*", "b": "*"}})
        root = load_recipe(project_dir)
        cache = PackageCache(cache_root)
        resolve_for_upgrade(root, cache, populated)
        first = lockfile(project_dir).read_text(encoding="utf-8")
        resolve_for_upgrade(root, cache, populated)
        assert lockfile(project_dir).read_text(encoding="utf-8") == first


class TestEnsureAll:
    """Test materializing all selections."""

    def test_registry_and_path(self, populated, tmp_path, cache_root):
        """Test registry and path selections are both materialized."""
        project = tmp_path / "app"
        write_recipe(tmp_path / "lib", {"name": "lib"})
        write_recipe(project, {"name": "app", "dependencies": {"a": "*", "lib": {"path": "../lib"}}})
        cache = PackageCache(cache_root)
        selections = resolve_for_build(load_recipe(project), cache, populated)
        paths = ensure_all(selections, cache, populated, project)
        assert paths["a"] == cache.entry_path("a", Version("1.1.0"))
        assert paths["lib"].resolve() == (tmp_path / "lib").resolve()


class TestOrchestrator:
    """Test the settings-driven facade."""

    def test_from_settings(self, project_dir, tmp_path):
        """Test the facade is built from settings."""
        settings = Settings(skip_registry=SkipRegistry.ALL, cache_location=CacheLocation.LOCAL, lock_timeout=5.0)
        orchestrator = Orchestrator.from_settings(project_dir, settings, user_dir=tmp_path / "home")
        assert orchestrator.cache.root == (project_dir / ".dub" / "packages").resolve()
        assert orchestrator.cache.lock_timeout == 5.0
        assert orchestrator.registries.registries == []

    def test_offline_path_only_project(self, tmp_path):
        """Test a path-only project works with registries disabled."""
        project = tmp_path / "app"
        write_recipe(tmp_path / "lib", {"name": "lib"})
        write_recipe(project, {"name": "app", "dependencies": {"lib": {"path": "../lib"}}})
        settings = Settings(skip_registry=SkipRegistry.ALL, cache_location=CacheLocation.LOCAL)
        orchestrator = Orchestrator.from_settings(project, settings, user_dir=tmp_path / "home")
        selections = orchestrator.resolve_for_build()
        assert selections.get("lib").path == "../lib"
        assert orchestrator.ensure_all(selections)["lib"].is_dir()
