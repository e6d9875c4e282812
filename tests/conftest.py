"""Shared fixtures: in-memory registry, archive builders and project helpers."""

import io
import json
import zipfile
from collections import Counter
from pathlib import Path
from typing import Dict, Iterator, List, Optional

import pytest

from common.errors import NetworkFetchError
from recipe.io import recipe_from_dict
from registry.base import RegistryClient
from versioning.models import Version


def build_archive(recipe: dict, prefix: str = "", files: Optional[Dict[str, str]] = None) -> bytes:
    """Zip bytes of a package with ``dub.json`` and optional extra files."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr(prefix + "dub.json", json.dumps(recipe))
        for name, content in (files or {}).items():
            archive.writestr(prefix + name, content)
    return buffer.getvalue()


class FakeRegistry(RegistryClient):
    """Registry serving recipes from a dict and counting every call."""

    def __init__(self, packages: Optional[Dict[str, Dict[str, dict]]] = None, name: str = "fake") -> None:
        self.packages: Dict[str, Dict[str, dict]] = packages or {}
        self.name = name
        self.calls: Counter = Counter()
        self.fail_with: Optional[Exception] = None

    @property
    def description(self) -> str:
        return f"{self.name} registry"

    def add(self, name: str, version: str, dependencies: Optional[dict] = None, **extra) -> None:
        recipe = {"name": name, "version": version, **extra}
        if dependencies:
            recipe["dependencies"] = dependencies
        self.packages.setdefault(name, {})[version] = recipe

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    def list_versions(self, name: str) -> List[Version]:
        self.calls["list_versions"] += 1
        if self.fail_with is not None:
            raise self.fail_with
        return sorted(Version(v) for v in self.packages.get(name, {}))

    def fetch_recipe(self, name: str, version: Version):
        self.calls["fetch_recipe"] += 1
        if self.fail_with is not None:
            raise self.fail_with
        data = self.packages.get(name, {}).get(str(version))
        if data is None:
            return None
        return recipe_from_dict(dict(data), version=version)

    def fetch_archive(self, name: str, version: Version) -> Iterator[bytes]:
        self.calls["fetch_archive"] += 1
        if self.fail_with is not None:
            raise self.fail_with
        data = self.packages.get(name, {}).get(str(version))
        if data is None:
            raise NetworkFetchError(f"{name}@{version}", "not found")
        return iter([build_archive(data, prefix=f"{name}-{version}/")])


def write_recipe(directory: Path, recipe: dict) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    (directory / "dub.json").write_text(json.dumps(recipe), encoding="utf-8")
    return directory


@pytest.fixture
def registry():
    return FakeRegistry()


@pytest.fixture
def project_dir(tmp_path):
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
def cache_root(tmp_path):
    return tmp_path / "cache"
