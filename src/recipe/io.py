"""Reading and writing of JSON package recipes (``dub.json``).

Only the parts of the recipe that affect dependency resolution are read:
name, version, dependencies, sub packages and the dependencies of each
configuration. Everything else in the file is ignored.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from constants import Constants
from common.errors import RecipeError, VersionFormatError
from common.logging_utils import extra_context, is_debug_enabled
from versioning.models import ANY, MASTER, Version
from versioning.parser import parse_version_spec

from .models import SUBPACKAGE_SEPARATOR, Configuration, DependencySpec, Recipe

logger = logging.getLogger(__name__)


def find_recipe_file(directory: Union[str, Path]) -> Optional[Path]:
    """Return the recipe file inside ``directory`` if there is one."""
    candidate = Path(directory) / Constants.RECIPE_FILE
    return candidate if candidate.is_file() else None


def load_recipe(directory: Union[str, Path], version: Optional[Version] = None) -> Recipe:
    """Load the recipe stored in ``directory``.

    Args:
        directory: Package directory containing ``dub.json``.
        version: Version to assign when the recipe does not declare one
            (cached registry packages get the version they were fetched as).

    Raises:
        FileNotFoundError: no recipe file in the directory.
        RecipeError: the file is not a valid recipe.
    """
    directory = Path(directory).resolve()
    recipe_file = find_recipe_file(directory)
    if recipe_file is None:
        raise FileNotFoundError(f"No {Constants.RECIPE_FILE} found in {directory}")
    try:
        data = json.loads(recipe_file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise RecipeError(f"Invalid JSON in {recipe_file}: {exc}") from exc
    recipe = recipe_from_dict(data, directory=directory, version=version)
    if is_debug_enabled(logger):
        logger.debug(
            "Loaded recipe",
            extra=extra_context(
                event="recipe_load",
                component="recipe",
                package=recipe.name,
                version=str(recipe.version),
                path=str(recipe_file),
            ),
        )
    return recipe


def _parse_dependency(owner: str, name: str, value: Any) -> DependencySpec:
    try:
        if isinstance(value, str):
            return DependencySpec(range=parse_version_spec(value))
        if not isinstance(value, dict):
            raise RecipeError(f"Dependency {name!r} of {owner!r} must be a string or an object")
        path = value.get("path")
        repository = value.get("repository")
        raw_version = value.get("version")
        if raw_version is None:
            if repository is not None:
                raise RecipeError(f"Repository dependency {name!r} of {owner!r} needs a version")
            constraint = ANY
        else:
            constraint = parse_version_spec(str(raw_version))
        return DependencySpec(
            range=constraint,
            path=str(path) if path is not None else None,
            repository=str(repository) if repository is not None else None,
            optional=bool(value.get("optional", False)),
            default=bool(value.get("default", False)),
        )
    except VersionFormatError as exc:
        raise RecipeError(f"Invalid version for dependency {name!r} of {owner!r}: {exc}") from exc


def _parse_dependencies(owner: str, root_name: str, data: Any) -> Dict[str, DependencySpec]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise RecipeError(f"'dependencies' of {owner!r} must be an object")
    deps: Dict[str, DependencySpec] = {}
    for name, value in data.items():
        full = f"{root_name}{name}" if name.startswith(SUBPACKAGE_SEPARATOR) else name
        deps[full] = _parse_dependency(owner, full, value)
    return deps


def recipe_from_dict(
    data: Dict[str, Any],
    directory: Optional[Path] = None,
    version: Optional[Version] = None,
    parent: Optional[str] = None,
) -> Recipe:
    """Build a ``Recipe`` from decoded recipe JSON.

    Dependencies written as ``":sub"`` are expanded to ``"<root>:sub"``.
    Sub packages can be inline objects or paths to directories with their
    own recipe file.
    """
    if not isinstance(data, dict):
        raise RecipeError("Recipe must be a JSON object")
    name = data.get("name")
    if not isinstance(name, str) or not name:
        raise RecipeError("Recipe is missing a package name")
    full_name = f"{parent}{SUBPACKAGE_SEPARATOR}{name}" if parent else name
    root_name = full_name.split(SUBPACKAGE_SEPARATOR, 1)[0]

    if version is None:
        raw = data.get("version")
        try:
            version = Version(str(raw)) if raw is not None else MASTER
        except VersionFormatError as exc:
            raise RecipeError(f"Invalid version in recipe {full_name!r}: {exc}") from exc

    configurations = []
    for config in data.get("configurations") or []:
        if not isinstance(config, dict):
            raise RecipeError(f"Configurations of {full_name!r} must be objects")
        configurations.append(
            Configuration(
                name=str(config.get("name", "")),
                dependencies=_parse_dependencies(full_name, root_name, config.get("dependencies")),
            )
        )

    subpackages = []
    for sub in data.get("subPackages") or []:
        if isinstance(sub, str):
            if directory is None:
                raise RecipeError(f"Path sub package {sub!r} of {full_name!r} needs a base directory")
            sub_dir = (directory / sub).resolve()
            recipe_file = find_recipe_file(sub_dir)
            if recipe_file is None:
                raise RecipeError(f"Sub package directory {sub_dir} has no {Constants.RECIPE_FILE}")
            try:
                sub_data = json.loads(recipe_file.read_text(encoding="utf-8"))
            except json.JSONDecodeError as exc:
                raise RecipeError(f"Invalid JSON in {recipe_file}: {exc}") from exc
            subpackages.append(recipe_from_dict(sub_data, sub_dir, version, full_name))
        elif isinstance(sub, dict):
            subpackages.append(recipe_from_dict(sub, directory, version, full_name))
        else:
            raise RecipeError(f"Invalid sub package entry in {full_name!r}")

    return Recipe(
        name=name,
        version=version,
        dependencies=_parse_dependencies(full_name, root_name, data.get("dependencies")),
        subpackages=subpackages,
        configurations=configurations,
        directory=directory,
        parent=parent,
    )


def _dependency_to_json(spec: DependencySpec) -> Any:
    if spec.path is None and spec.repository is None and not spec.optional:
        return str(spec.range)
    out: Dict[str, Any] = {"version": str(spec.range)}
    if spec.path is not None:
        out["path"] = spec.path
    if spec.repository is not None:
        out["repository"] = spec.repository
    if spec.optional:
        out["optional"] = True
        if spec.default:
            out["default"] = True
    return out


def recipe_to_dict(recipe: Recipe) -> Dict[str, Any]:
    """Inverse of ``recipe_from_dict`` for the fields this package models."""
    out: Dict[str, Any] = {"name": recipe.name}
    if recipe.parent is None:
        out["version"] = str(recipe.version)
    if recipe.dependencies:
        out["dependencies"] = {n: _dependency_to_json(d) for n, d in sorted(recipe.dependencies.items())}
    if recipe.configurations:
        out["configurations"] = [
            {
                "name": c.name,
                **({"dependencies": {n: _dependency_to_json(d) for n, d in sorted(c.dependencies.items())}}
                   if c.dependencies else {}),
            }
            for c in recipe.configurations
        ]
    if recipe.subpackages:
        out["subPackages"] = [recipe_to_dict(s) for s in recipe.subpackages]
    return out
