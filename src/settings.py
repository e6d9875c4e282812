"""User and project settings.

Settings are read from YAML files (``dubpm.yml``), first the user-level file,
then the project-level one, then environment overrides. This is the only
module that reads the environment or the home directory; everything below
it receives explicit paths.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml

from constants import CacheLocation, Constants, SkipRegistry
from common.errors import SettingsError
from registry.base import RegistryClient
from registry.filesystem import FileSystemRegistry
from registry.http import HttpRegistry
from registry.registry_list import RegistryList

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settings:
    """Effective configuration of the package manager core."""
    registry_urls: List[str] = field(default_factory=list)
    skip_registry: SkipRegistry = SkipRegistry.NONE
    cache_location: CacheLocation = CacheLocation.USER
    custom_cache_path: Optional[str] = None
    lock_timeout: float = Constants.LOCK_TIMEOUT_SEC
    max_workers: int = Constants.RESOLVER_MAX_WORKERS

    def cache_root(self, project_dir: Union[str, Path], user_dir: Union[str, Path]) -> Path:
        """Absolute cache root for the configured location."""
        if self.cache_location is CacheLocation.LOCAL:
            return (Path(project_dir) / Constants.LOCAL_CACHE_DIR).resolve()
        if self.cache_location is CacheLocation.CUSTOM:
            if not self.custom_cache_path:
                raise SettingsError("cache_location 'custom' requires custom_cache_path")
            return Path(self.custom_cache_path).expanduser().resolve()
        return (Path(user_dir) / Constants.USER_CACHE_SUBDIR).resolve()

    def build_registries(self) -> RegistryList:
        """Registry list in priority order: configured registries, then the default one."""
        registries: List[RegistryClient] = []
        if self.skip_registry not in (SkipRegistry.CONFIGURED, SkipRegistry.ALL):
            for url in self.registry_urls:
                registries.append(_registry_for(url))
        if self.skip_registry not in (SkipRegistry.STANDARD, SkipRegistry.ALL):
            registries.append(HttpRegistry(Constants.REGISTRY_URL_DEFAULT))
        return RegistryList(registries)

    def merged(self, data: Mapping[str, Any], source: str) -> "Settings":
        """Return a copy with the keys of ``data`` applied."""
        changes: Dict[str, Any] = {}
        unknown = sorted(set(data) - _KEYS)
        if unknown:
            logger.warning("Ignoring unknown settings in %s: %s", source, ", ".join(unknown))
        try:
            if "registry_urls" in data:
                urls = data["registry_urls"]
                if isinstance(urls, str):
                    urls = [u for u in urls.split(",") if u.strip()]
                if not isinstance(urls, list):
                    raise SettingsError(f"registry_urls in {source} must be a list")
                changes["registry_urls"] = [str(u).strip() for u in urls] + [
                    u for u in self.registry_urls if u not in urls
                ]
            if "skip_registry" in data:
                changes["skip_registry"] = SkipRegistry(str(data["skip_registry"]).lower())
            if "cache_location" in data:
                changes["cache_location"] = CacheLocation(str(data["cache_location"]).lower())
            if "custom_cache_path" in data:
                changes["custom_cache_path"] = str(data["custom_cache_path"])
            if "lock_timeout" in data:
                changes["lock_timeout"] = float(data["lock_timeout"])
            if "max_workers" in data:
                changes["max_workers"] = int(data["max_workers"])
        except (TypeError, ValueError) as exc:
            raise SettingsError(f"Invalid setting in {source}: {exc}") from exc
        return replace(self, **changes)


_KEYS = {
    "registry_urls",
    "skip_registry",
    "cache_location",
    "custom_cache_path",
    "lock_timeout",
    "max_workers",
}


def _registry_for(url: str) -> RegistryClient:
    if url.startswith("file://"):
        return FileSystemRegistry(url[len("file://"):])
    if "://" not in url:
        return FileSystemRegistry(url)
    return HttpRegistry(url)


def read_settings_file(path: Union[str, Path]) -> Dict[str, Any]:
    """Decode a YAML (or JSON) settings file; a missing file yields ``{}``."""
    path = Path(path)
    if not path.is_file():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise SettingsError(f"Failed to parse settings file {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise SettingsError(f"Settings file {path} must contain a mapping")
    return data


def _env_overrides(env: Mapping[str, str]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if env.get(Constants.ENV_REGISTRY_URLS):
        out["registry_urls"] = env[Constants.ENV_REGISTRY_URLS]
    if env.get(Constants.ENV_SKIP_REGISTRY):
        out["skip_registry"] = env[Constants.ENV_SKIP_REGISTRY]
    if env.get(Constants.ENV_CACHE_DIR):
        out["cache_location"] = CacheLocation.CUSTOM.value
        out["custom_cache_path"] = env[Constants.ENV_CACHE_DIR]
    if env.get(Constants.ENV_LOCK_TIMEOUT):
        out["lock_timeout"] = env[Constants.ENV_LOCK_TIMEOUT]
    return out


def load_settings(
    project_dir: Optional[Union[str, Path]] = None,
    user_dir: Optional[Union[str, Path]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Load settings from the user directory, the project and the environment.

    Args:
        project_dir: Project root; its ``dubpm.yml`` overrides user settings.
        user_dir: User settings directory (defaults to ``~/.dub``).
        env: Environment mapping (defaults to ``os.environ``).
    """
    settings = Settings()
    user_dir = Path(user_dir) if user_dir is not None else default_user_dir()
    user_file = user_dir / Constants.SETTINGS_FILE
    settings = settings.merged(read_settings_file(user_file), str(user_file))
    if project_dir is not None:
        project_file = Path(project_dir) / Constants.SETTINGS_FILE
        settings = settings.merged(read_settings_file(project_file), str(project_file))
    settings = settings.merged(_env_overrides(os.environ if env is None else env), "environment")
    logger.debug("Effective settings: %s", settings)
    return settings


def default_user_dir() -> Path:
    return Path.home() / ".dub"
