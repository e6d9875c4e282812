"""Registry backed by a directory of ``<name>-<version>.zip`` archives."""

import json
import logging
import zipfile
from pathlib import Path
from typing import Iterator, List, Optional, Union

from constants import Constants
from common.errors import NetworkFetchError, RecipeError, VersionFormatError
from common.logging_utils import extra_context, is_debug_enabled
from recipe.io import recipe_from_dict
from recipe.models import Recipe
from versioning.models import Version

from .base import RegistryClient

logger = logging.getLogger(__name__)


def read_recipe_from_zip(archive: zipfile.ZipFile) -> Optional[dict]:
    """Return the decoded recipe of a package archive.

    The recipe may sit at the top of the archive or inside a single top-level
    folder, as produced by source-hosting services.
    """
    names = archive.namelist()
    if Constants.RECIPE_FILE in names:
        member = Constants.RECIPE_FILE
    else:
        nested = sorted(
            n for n in names
            if n.count("/") == 1 and n.endswith("/" + Constants.RECIPE_FILE)
        )
        if not nested:
            return None
        member = nested[0]
    try:
        return json.loads(archive.read(member).decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise RecipeError(f"Invalid recipe in archive member {member}: {exc}") from exc


class FileSystemRegistry(RegistryClient):
    """Serves packages from ``<root>/<name>-<version>.zip`` files."""

    def __init__(self, root: Union[str, Path]) -> None:
        self.root = Path(root)

    @property
    def description(self) -> str:
        return f"file repository at {self.root}"

    def _archive_path(self, name: str, version: Version) -> Path:
        return self.root / f"{name}-{version}.zip"

    def list_versions(self, name: str) -> List[Version]:
        prefix = f"{name}-"
        versions = []
        if not self.root.is_dir():
            return versions
        for entry in self.root.glob(f"{prefix}*.zip"):
            raw = entry.name[len(prefix):-len(".zip")]
            try:
                versions.append(Version(raw))
            except VersionFormatError:
                continue
        versions.sort()
        if is_debug_enabled(logger):
            logger.debug(
                "Listed versions",
                extra=extra_context(
                    event="list_versions",
                    component="registry",
                    registry=self.description,
                    package=name,
                    count=len(versions),
                ),
            )
        return versions

    def fetch_recipe(self, name: str, version: Version) -> Optional[Recipe]:
        path = self._archive_path(name, version)
        if not path.is_file():
            return None
        try:
            with zipfile.ZipFile(path) as archive:
                data = read_recipe_from_zip(archive)
        except zipfile.BadZipFile as exc:
            raise NetworkFetchError(str(path), f"corrupt archive: {exc}") from exc
        if data is None:
            return None
        data = dict(data)
        data.setdefault("name", name)
        return recipe_from_dict(data, version=version)

    def fetch_archive(self, name: str, version: Version) -> Iterator[bytes]:
        path = self._archive_path(name, version)
        if not path.is_file():
            raise NetworkFetchError(str(path), "archive not found")
        return self._read_chunks(path)

    @staticmethod
    def _read_chunks(path: Path) -> Iterator[bytes]:
        with open(path, "rb") as handle:
            while True:
                chunk = handle.read(Constants.DOWNLOAD_CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk
