"""Persistent package cache shared by concurrent processes.

Layout under a cache root::

    <root>/<name>/<version>/                      extracted package (published)
    <root>/<name>/<version>.lock                  per-entry lock file
    <root>/<name>/.staging-<version>-<uuid>/      in-progress fetch

A fetch downloads and extracts into a staging directory while holding the
entry lock and publishes it with a single rename. Readers never take the
lock: an entry directory either does not exist or is complete.
"""

import json
import logging
import os
import shutil
import subprocess
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from constants import Constants
from common.errors import MissingPathDependencyError, NetworkFetchError, RecipeError
from common.logging_utils import extra_context, is_debug_enabled, redact, Timer
from recipe.io import find_recipe_file, load_recipe
from recipe.models import Recipe, base_name, sub_name
from registry.base import RegistryClient
from selections.models import SelectedVersion
from versioning.models import Version

from .archive import extract_package, write_stream
from .locking import FileLockProvider, LockProvider
from .models import CacheEntry

logger = logging.getLogger(__name__)


class PackageCache:
    """Cache of fetched packages rooted at one directory."""

    def __init__(
        self,
        root: Union[str, Path],
        *,
        lock_provider: Optional[LockProvider] = None,
        lock_timeout: float = Constants.LOCK_TIMEOUT_SEC,
    ) -> None:
        self.root = Path(root).resolve()
        self.lock_provider: LockProvider = lock_provider or FileLockProvider()
        self.lock_timeout = lock_timeout

    def __repr__(self) -> str:
        return f"PackageCache({str(self.root)!r})"

    def entry_path(self, name: str, version: Version) -> Path:
        return self.root / base_name(name) / str(version)

    def lock_path(self, name: str, version: Version) -> Path:
        return self.root / base_name(name) / f"{version}{Constants.LOCK_SUFFIX}"

    @staticmethod
    def _read_metadata(path: Path) -> Optional[Dict[str, Any]]:
        try:
            data = json.loads((path / Constants.ENTRY_METADATA_FILE).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return None
        return data if isinstance(data, dict) else None

    def _valid_metadata(self, name: str, version: Version, path: Path) -> Optional[Dict[str, Any]]:
        """Metadata of a complete entry, ``None`` for missing or broken ones."""
        if not path.is_dir():
            return None
        metadata = self._read_metadata(path)
        if metadata is None:
            return None
        if metadata.get("name") != base_name(name) or metadata.get("version") != str(version):
            return None
        if find_recipe_file(path) is None:
            return None
        return metadata

    def get_entry(self, name: str, version: Version) -> Optional[CacheEntry]:
        path = self.entry_path(name, version)
        metadata = self._valid_metadata(name, version, path)
        if metadata is None:
            return None
        return CacheEntry(
            name=base_name(name),
            version=version,
            path=path,
            root=self.root,
            lock_path=self.lock_path(name, version),
            metadata=metadata,
        )

    def has_entry(self, name: str, version: Version) -> bool:
        return self.get_entry(name, version) is not None

    def _package_entries(self, name: str) -> List[CacheEntry]:
        entries: List[CacheEntry] = []
        package_dir = self.root / base_name(name)
        if not package_dir.is_dir():
            return entries
        for version_dir in package_dir.iterdir():
            if not version_dir.is_dir() or version_dir.name.startswith("."):
                continue
            try:
                version = Version(version_dir.name)
            except ValueError:
                continue
            entry = self.get_entry(name, version)
            if entry is not None:
                entries.append(entry)
        return entries

    def list_entries(self) -> List[CacheEntry]:
        """All complete entries, sorted by name and version."""
        entries: List[CacheEntry] = []
        if not self.root.is_dir():
            return entries
        for package_dir in self.root.iterdir():
            if package_dir.is_dir() and not package_dir.name.startswith("."):
                entries.extend(self._package_entries(package_dir.name))
        entries.sort(key=lambda e: (e.name, e.version))
        return entries

    def versions(self, name: str) -> List[Version]:
        """Sorted versions of ``name`` fetched from a registry into this cache.

        Repository checkouts are left out; they are only used when a
        dependency names their repository.
        """
        return sorted(e.version for e in self._package_entries(name) if "repository" not in e.metadata)

    def load_recipe(self, name: str, version: Version) -> Optional[Recipe]:
        """Recipe of a cached package (or subpackage), ``None`` when not cached."""
        path = self.entry_path(name, version)
        if self._valid_metadata(name, version, path) is None:
            return None
        recipe = load_recipe(path, version=version)
        sub = sub_name(name)
        return recipe.get_subpackage(sub) if sub else recipe

    def _move_aside(self, path: Path) -> None:
        aside = path.parent / f"{Constants.BROKEN_PREFIX}{path.name}-{uuid.uuid4().hex}"
        os.replace(path, aside)
        shutil.rmtree(aside, ignore_errors=True)

    def _clear_staging(self, name: str, version: Version) -> None:
        package_dir = self.root / base_name(name)
        if not package_dir.is_dir():
            return
        prefix = f"{Constants.STAGING_PREFIX}{version}-"
        for leftover in package_dir.iterdir():
            if leftover.name.startswith(prefix):
                logger.debug("Removing interrupted fetch %s", leftover)
                shutil.rmtree(leftover, ignore_errors=True)

    def _prepare_locked(self, name: str, version: Version, path: Path) -> None:
        self._clear_staging(name, version)
        if path.exists():
            logger.warning(
                "Cache entry %s %s is incomplete or corrupt, fetching it again",
                name,
                version,
                extra=extra_context(
                    event="cache_broken",
                    component="package_cache",
                    package=name,
                    version=str(version),
                    path=str(path),
                ),
            )
            self._move_aside(path)

    def _publish(self, staged_tree: Path, path: Path, metadata: Dict[str, Any]) -> None:
        (staged_tree / Constants.ENTRY_METADATA_FILE).write_text(
            json.dumps(metadata, indent=2, sort_keys=True) + "\n", encoding="utf-8"
        )
        os.replace(staged_tree, path)

    def ensure(self, name: str, version: Version, registry: RegistryClient) -> Path:
        """Return the path of ``name`` at ``version``, fetching it if needed.

        Concurrent callers (threads or processes) for the same entry are
        serialized by the entry lock; exactly one of them fetches.
        Transient download failures are retried a bounded number of times,
        each attempt in a fresh staging directory.

        Raises:
            CacheLockTimeoutError: the entry lock was not acquired in time.
            NetworkFetchError: the archive could not be downloaded or is invalid.
            RecipeError: the archive's recipe names another package.
        """
        base = base_name(name)
        path = self.entry_path(base, version)
        if self._valid_metadata(base, version, path) is not None:
            if is_debug_enabled(logger):
                logger.debug(
                    "Cache hit",
                    extra=extra_context(event="cache_hit", component="package_cache", package=base, version=str(version)),
                )
            return path

        with self.lock_provider.acquire(self.lock_path(base, version), self.lock_timeout):
            if self._valid_metadata(base, version, path) is not None:
                logger.debug("%s %s was fetched by another process", base, version)
                return path
            self._prepare_locked(base, version, path)

            with Timer() as t:
                for attempt in range(Constants.HTTP_RETRY_MAX):
                    try:
                        self._fetch_into(base, version, registry, path)
                        break
                    except NetworkFetchError as exc:
                        if not exc.retryable or attempt + 1 >= Constants.HTTP_RETRY_MAX:
                            raise
                        logger.warning(
                            "Fetching %s %s failed (attempt %d of %d), retrying: %s",
                            base,
                            version,
                            attempt + 1,
                            Constants.HTTP_RETRY_MAX,
                            exc.message,
                            extra=extra_context(
                                event="fetch_retry",
                                component="package_cache",
                                package=base,
                                version=str(version),
                                attempt=attempt + 1,
                            ),
                        )
                        time.sleep(Constants.HTTP_RETRY_BASE_DELAY_SEC * (2 ** attempt))

        logger.info(
            "Fetched %s %s",
            base,
            version,
            extra=extra_context(
                event="fetch",
                component="package_cache",
                outcome="success",
                package=base,
                version=str(version),
                duration_ms=t.duration_ms(),
            ),
        )
        return path

    def _fetch_into(self, base: str, version: Version, registry: RegistryClient, path: Path) -> None:
        """One download attempt, staged in a fresh directory and published on success."""
        staging = path.parent / f"{Constants.STAGING_PREFIX}{version}-{uuid.uuid4().hex}"
        try:
            staging.mkdir(parents=True)
            archive_path = staging / "package.zip"
            digest = write_stream(registry.fetch_archive(base, version), archive_path)
            tree = staging / "tree"
            extract_package(archive_path, tree)
            recipe = load_recipe(tree, version=version)
            if recipe.name != base:
                raise RecipeError(
                    f"Archive for {base} {version} contains package {recipe.name!r}",
                    context={"package": base, "version": str(version)},
                )
            self._publish(tree, path, {
                "name": base,
                "version": str(version),
                "sha256": digest,
                "fetched_at": time.time(),
                "source": registry.description,
            })
        finally:
            shutil.rmtree(staging, ignore_errors=True)

    def ensure_repository(self, name: str, repository: str, ref: Version) -> Path:
        """Check out ``ref`` of a git repository into the cache.

        ``repository`` is written as ``git+<url>``. The checkout is staged and
        published under the same lock discipline as registry fetches.
        """
        base = base_name(name)
        path = self.entry_path(base, ref)
        if self._valid_metadata(base, ref, path) is not None:
            return path

        url = repository[len("git+"):] if repository.startswith("git+") else repository
        with self.lock_provider.acquire(self.lock_path(base, ref), self.lock_timeout):
            if self._valid_metadata(base, ref, path) is not None:
                return path
            self._prepare_locked(base, ref, path)
            staging = path.parent / f"{Constants.STAGING_PREFIX}{ref}-{uuid.uuid4().hex}"
            try:
                tree = staging / "tree"
                staging.mkdir(parents=True)
                checkout = str(ref)[1:] if ref.is_branch else str(ref)
                _run_git(["clone", "--quiet", url, str(tree)], repository)
                _run_git(["-C", str(tree), "checkout", "--quiet", checkout], repository)
                shutil.rmtree(tree / ".git", ignore_errors=True)
                if find_recipe_file(tree) is None:
                    raise NetworkFetchError(redact(repository), f"no {Constants.RECIPE_FILE} at {ref}")
                self._publish(tree, path, {
                    "name": base,
                    "version": str(ref),
                    "repository": redact(repository),
                    "fetched_at": time.time(),
                })
            finally:
                shutil.rmtree(staging, ignore_errors=True)
        logger.info("Checked out %s %s from %s", base, ref, redact(repository))
        return path

    def load_repository_recipe(self, name: str, repository: str, ref: Version) -> Recipe:
        """Recipe of an SCM dependency, checking it out first when needed."""
        path = self.ensure_repository(name, repository, ref)
        recipe = load_recipe(path, version=ref)
        sub = sub_name(name)
        if sub:
            found = recipe.get_subpackage(sub)
            if found is None:
                raise RecipeError(f"{repository} at {ref} has no sub package {sub!r}")
            return found
        return recipe

    def ensure_selected(
        self,
        name: str,
        selected: SelectedVersion,
        registry: RegistryClient,
        project_dir: Union[str, Path],
    ) -> Path:
        """Materialize one lockfile entry and return its directory.

        Path selections are returned as they are, without locking or copying.
        """
        if selected.is_path:
            path = Path(selected.path)
            if not path.is_absolute():
                path = Path(project_dir) / path
            path = Path(os.path.normpath(str(path)))
            if not path.is_dir():
                raise MissingPathDependencyError(name, path)
            return path
        if selected.is_scm:
            return self.ensure_repository(name, selected.repository, selected.version)
        return self.ensure(name, selected.version, registry)

    def remove(self, name: str, version: Version) -> bool:
        """Evict an entry; returns whether there was one.

        The lock file stays in place so later fetches still serialize on it.
        """
        path = self.entry_path(name, version)
        with self.lock_provider.acquire(self.lock_path(name, version), self.lock_timeout):
            if not path.exists():
                return False
            self._move_aside(path)
        logger.info("Removed %s %s from cache", base_name(name), version)
        return True


def _run_git(args: List[str], repository: str) -> None:
    try:
        subprocess.run(["git", *args], check=True, capture_output=True, text=True)
    except FileNotFoundError as exc:
        raise NetworkFetchError(redact(repository), "git executable not found") from exc
    except subprocess.CalledProcessError as exc:
        raise NetworkFetchError(
            redact(repository),
            f"git {args[0] if args[0] != '-C' else args[2]} failed: {exc.stderr.strip()}",
            retryable=True,
        ) from exc
