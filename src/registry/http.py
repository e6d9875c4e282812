"""Client for the HTTP package registry API.

Metadata comes from ``api/packages/<name>/info?minimize=true``, which lists
every version together with its recipe data. Archives are downloaded from
``packages/<name>/<version>.zip``.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, Iterator, List, Optional, Tuple
from urllib.parse import quote

from constants import Constants
from common.errors import NetworkFetchError, VersionFormatError
from common.http_client import get_json, iter_download
from common.logging_utils import extra_context, is_debug_enabled, safe_url
from recipe.io import recipe_from_dict
from recipe.models import Recipe
from versioning.models import Version

from .base import RegistryClient

logger = logging.getLogger(__name__)


class HttpRegistry(RegistryClient):
    """Registry reachable over HTTP(S), with a per-instance metadata cache."""

    def __init__(self, base_url: str, *, metadata_ttl: float = Constants.REGISTRY_METADATA_TTL_SEC) -> None:
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.metadata_ttl = metadata_ttl
        self._metadata_cache: Dict[str, Tuple[Optional[Dict[str, Any]], float]] = {}
        self._lock = threading.Lock()

    @property
    def description(self) -> str:
        return f"registry at {safe_url(self.base_url)}"

    def _metadata(self, name: str) -> Optional[Dict[str, Any]]:
        now = time.time()
        with self._lock:
            cached = self._metadata_cache.get(name)
        if cached is not None and now - cached[1] < self.metadata_ttl:
            if is_debug_enabled(logger):
                logger.debug(
                    "Registry metadata cache hit",
                    extra=extra_context(event="cache_hit", component="registry", package=name),
                )
            return cached[0]

        url = f"{self.base_url}api/packages/{quote(name, safe='')}/info?minimize=true"
        status_code, data = get_json(url)
        if status_code == 404:
            data = None
        elif status_code != 200:
            raise NetworkFetchError(safe_url(url), f"HTTP {status_code}", retryable=False)
        elif not isinstance(data, dict):
            raise NetworkFetchError(safe_url(url), "unexpected metadata format")

        with self._lock:
            self._metadata_cache[name] = (data, now)
        return data

    def _version_entries(self, name: str) -> List[Dict[str, Any]]:
        data = self._metadata(name)
        if not data:
            return []
        entries = data.get("versions") or []
        return [e for e in entries if isinstance(e, dict) and isinstance(e.get("version"), str)]

    def list_versions(self, name: str) -> List[Version]:
        versions = []
        for entry in self._version_entries(name):
            try:
                versions.append(Version(entry["version"]))
            except VersionFormatError:
                logger.debug("Skipping invalid version %r of %s", entry["version"], name)
        versions.sort()
        return versions

    def fetch_recipe(self, name: str, version: Version) -> Optional[Recipe]:
        for entry in self._version_entries(name):
            try:
                if Version(entry["version"]) != version:
                    continue
            except VersionFormatError:
                continue
            data = dict(entry)
            data.setdefault("name", name)
            return recipe_from_dict(data, version=version)
        return None

    def fetch_archive(self, name: str, version: Version) -> Iterator[bytes]:
        url = f"{self.base_url}packages/{quote(name, safe='')}/{quote(str(version), safe='')}.zip"
        logger.info(
            "Downloading %s %s from %s",
            name,
            version,
            self.description,
            extra=extra_context(event="download", component="registry", package=name, version=str(version)),
        )
        return iter_download(url)
