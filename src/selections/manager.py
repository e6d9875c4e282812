"""Loading, saving and validation of ``dub.selections.json``."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from constants import Constants
from common.errors import MalformedLockfileError
from common.logging_utils import extra_context
from recipe.models import Recipe, base_name, sub_name

from .models import SelectedVersion, Selections

logger = logging.getLogger(__name__)

RecipeLookup = Callable[[str, SelectedVersion], Optional[Recipe]]


def parse_selections(text: str, path: Any = "<memory>") -> Selections:
    """Decode lockfile text.

    Raises:
        MalformedLockfileError: invalid JSON, unknown ``fileVersion`` or an
            entry that cannot be decoded.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedLockfileError(path, f"invalid JSON ({exc})") from exc
    if not isinstance(data, dict):
        raise MalformedLockfileError(path, "top level must be an object")

    file_version = data.get("fileVersion")
    if isinstance(file_version, bool) or not isinstance(file_version, int):
        raise MalformedLockfileError(path, "missing or non-integer 'fileVersion'")
    if file_version != Constants.SELECTIONS_FILE_VERSION:
        raise MalformedLockfileError(path, f"unsupported fileVersion {file_version}")

    raw_versions = data.get("versions", {})
    if not isinstance(raw_versions, dict):
        raise MalformedLockfileError(path, "'versions' must be an object")

    versions: Dict[str, SelectedVersion] = {}
    for name, value in raw_versions.items():
        if base_name(name) != name:
            raise MalformedLockfileError(path, f"entry {name!r} must use the base package name")
        try:
            versions[name] = SelectedVersion.from_json(value)
        except ValueError as exc:
            raise MalformedLockfileError(path, f"invalid entry for {name!r}: {exc}") from exc

    extra = {k: v for k, v in data.items() if k not in ("fileVersion", "versions")}
    return Selections(versions=versions, file_version=file_version, extra=extra)


def serialize_selections(selections: Selections) -> str:
    """Deterministic lockfile text: ``fileVersion`` first, sorted entries, tab indent."""
    out: Dict[str, Any] = {"fileVersion": selections.file_version}
    for key, value in selections.extra.items():
        out[key] = value
    out["versions"] = {name: sel.to_json() for name, sel in sorted(selections.versions.items())}
    return json.dumps(out, indent="\t", ensure_ascii=False) + "\n"


def load_selections(path: Union[str, Path], base_dir: Optional[Union[str, Path]] = None) -> Selections:
    """Read a lockfile from disk.

    Args:
        path: Lockfile location.
        base_dir: Directory that relative path entries should be relative to.
            Defaults to the lockfile's directory; when it differs (an
            inherited parent lockfile) path entries are re-based onto it.
    """
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    selections = parse_selections(text, path)
    if base_dir is not None and Path(base_dir).resolve() != path.parent.resolve():
        for name, selected in list(selections.versions.items()):
            if selected.is_path:
                absolute = (path.parent / selected.path).resolve()
                selections.versions[name] = SelectedVersion(path=relative_path(absolute, Path(base_dir).resolve()))
    return selections


def save_selections(selections: Selections, path: Union[str, Path]) -> None:
    """Atomically replace the lockfile at ``path``.

    The new content goes to a temporary file in the same directory first, so
    readers observe either the old or the new file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    text = serialize_selections(selections)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
    logger.info(
        "Wrote %s with %d entries",
        path.name,
        len(selections.versions),
        extra=extra_context(event="lockfile_write", component="selections", path=str(path)),
    )


def find_selections_file(project_dir: Union[str, Path]) -> Optional[Path]:
    """The project's own lockfile, or the closest inheritable one above it."""
    project_dir = Path(project_dir).resolve()
    own = project_dir / Constants.SELECTIONS_FILE
    if own.is_file():
        return own
    for parent in project_dir.parents:
        candidate = parent / Constants.SELECTIONS_FILE
        if not candidate.is_file():
            continue
        try:
            if parse_selections(candidate.read_text(encoding="utf-8"), candidate).inheritable:
                return candidate
        except MalformedLockfileError:
            logger.warning("Ignoring malformed parent selections file %s", candidate)
        return None
    return None


def relative_path(target: Path, base: Path) -> str:
    """``target`` relative to ``base`` with forward slashes, absolute when impossible."""
    try:
        return Path(os.path.relpath(str(target), str(base))).as_posix()
    except ValueError:
        return target.as_posix()


def _selected_path(selected: SelectedVersion, project_dir: Optional[Path]) -> Optional[Path]:
    if selected.path is None:
        return None
    path = Path(selected.path)
    if not path.is_absolute():
        if project_dir is None:
            return None
        path = project_dir / path
    return Path(os.path.normpath(str(path)))


def is_reusable(
    selections: Selections,
    root: Recipe,
    recipes: Optional[RecipeLookup] = None,
) -> bool:
    """Check whether ``selections`` still satisfies the graph rooted at ``root``.

    Without ``recipes`` only the root's direct dependencies are checked. With
    it the walk continues through every selected package; a recipe that is
    not available locally, or an entry the walk never reaches, makes the
    selections non-reusable.
    """
    root_base = base_name(root.name)
    project_dir = root.directory
    reached = set()
    seen = set()
    stack = [root]
    while stack:
        recipe = stack.pop()
        if recipe.full_name in seen:
            continue
        seen.add(recipe.full_name)
        for name, spec in recipe.all_dependencies().items():
            if base_name(name) == root_base:
                sub = root.get_subpackage(sub_name(name)) if sub_name(name) else root
                if sub is not None:
                    stack.append(sub)
                continue

            selected = selections.get(name)
            if selected is None:
                if spec.optional:
                    continue
                logger.debug("Selections miss %s", name)
                return False
            reached.add(base_name(name))

            if spec.is_path:
                wanted = recipe.resolve_dependency_path(spec)
                if not selected.is_path or _selected_path(selected, project_dir) != wanted:
                    return False
            elif spec.is_scm:
                if not selected.is_scm or selected.repository != spec.repository \
                        or selected.version != spec.range.low:
                    return False
            elif not selected.is_path and not spec.range.matches(selected.version):
                logger.debug("Selected %s %s no longer matches %s", name, selected, spec.range)
                return False

            if recipes is None:
                if selected.is_path and not spec.is_path:
                    return False
                continue
            dep = recipes(name, selected)
            if dep is None:
                return False
            if selected.is_path and not spec.is_path and not spec.range.matches(dep.version):
                return False
            stack.append(dep)

    if recipes is not None:
        unused = sorted(set(selections.versions) - reached)
        if unused:
            logger.debug("Selections contain unused packages: %s", ", ".join(unused))
            return False
    return True
