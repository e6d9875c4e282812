"""Download and extraction of package archives."""

import hashlib
import logging
import os
import stat
import zipfile
from pathlib import Path, PurePosixPath
from typing import Iterable, Optional

from constants import Constants
from common.errors import NetworkFetchError

logger = logging.getLogger(__name__)


def write_stream(chunks: Iterable[bytes], target: Path) -> str:
    """Write ``chunks`` to ``target`` and return the SHA-256 hex digest."""
    digest = hashlib.sha256()
    with open(target, "wb") as handle:
        for chunk in chunks:
            digest.update(chunk)
            handle.write(chunk)
        handle.flush()
        os.fsync(handle.fileno())
    return digest.hexdigest()


def archive_prefix(names: Iterable[str]) -> str:
    """Common top-level folder to strip, or ``""``.

    Archives from source-hosting services wrap the package in a single
    folder; the recipe then sits one level down.
    """
    names = [n for n in names if n and not n.startswith("__MACOSX/")]
    if Constants.RECIPE_FILE in names or not names:
        return ""
    firsts = {n.split("/", 1)[0] for n in names}
    if len(firsts) != 1 or not all("/" in n for n in names):
        return ""
    return firsts.pop() + "/"


def _safe_relative(member: str, prefix: str) -> Optional[PurePosixPath]:
    rel = member[len(prefix):]
    if not rel.strip("/"):
        return None
    path = PurePosixPath(rel)
    if path.is_absolute() or ".." in path.parts or "\\" in rel:
        raise NetworkFetchError(member, "archive member escapes the package directory")
    return path


def extract_package(archive_path: Path, destination: Path) -> None:
    """Extract a package archive into ``destination``.

    Raises:
        NetworkFetchError: the file is not a zip archive, a member would be
            written outside ``destination``, or the archive has no recipe.
    """
    try:
        archive = zipfile.ZipFile(archive_path)
    except zipfile.BadZipFile as exc:
        raise NetworkFetchError(str(archive_path), f"not a valid zip archive: {exc}") from exc

    with archive:
        members = archive.infolist()
        prefix = archive_prefix(m.filename for m in members)
        destination.mkdir(parents=True, exist_ok=True)
        for info in members:
            if not info.filename.startswith(prefix) or info.filename.startswith("__MACOSX/"):
                continue
            rel = _safe_relative(info.filename, prefix)
            if rel is None:
                continue
            target = destination.joinpath(*rel.parts)
            if info.is_dir():
                target.mkdir(parents=True, exist_ok=True)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            with archive.open(info) as src, open(target, "wb") as dst:
                while True:
                    chunk = src.read(Constants.DOWNLOAD_CHUNK_SIZE)
                    if not chunk:
                        break
                    dst.write(chunk)
            mode = (info.external_attr >> 16) & 0o777
            if mode & stat.S_IXUSR:
                os.chmod(target, mode | stat.S_IRUSR | stat.S_IWUSR)

    if not (destination / Constants.RECIPE_FILE).is_file():
        raise NetworkFetchError(str(archive_path), f"archive contains no {Constants.RECIPE_FILE}")
    logger.debug("Extracted %s into %s", archive_path.name, destination)
