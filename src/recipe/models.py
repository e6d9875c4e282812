"""Data models for package recipes and their dependency declarations."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from constants import DependencyKind
from versioning.models import ANY, MASTER, Version, VersionRange

SUBPACKAGE_SEPARATOR = ":"


def base_name(name: str) -> str:
    """``"a:b:c"`` -> ``"a"``."""
    return name.split(SUBPACKAGE_SEPARATOR, 1)[0]


def sub_name(name: str) -> Optional[str]:
    """``"a:b:c"`` -> ``"b:c"``; ``None`` for base packages."""
    parts = name.split(SUBPACKAGE_SEPARATOR, 1)
    return parts[1] if len(parts) > 1 else None


def join_name(base: str, sub: Optional[str]) -> str:
    return f"{base}{SUBPACKAGE_SEPARATOR}{sub}" if sub else base


def is_subpackage(name: str) -> bool:
    return SUBPACKAGE_SEPARATOR in name


@dataclass(frozen=True)
class DependencySpec:
    """A single dependency declaration.

    ``path`` is kept as written in the recipe (relative to the declaring
    package); ``repository`` is a ``git+<url>`` reference whose ``range`` is
    the exact commit or branch to check out.
    """
    range: VersionRange = ANY
    path: Optional[str] = None
    repository: Optional[str] = None
    optional: bool = False
    default: bool = False

    @property
    def is_path(self) -> bool:
        return self.path is not None

    @property
    def is_scm(self) -> bool:
        return self.repository is not None

    @property
    def kind(self) -> DependencyKind:
        if not self.optional:
            return DependencyKind.REQUIRED
        return DependencyKind.OPTIONAL_DEFAULT if self.default else DependencyKind.OPTIONAL

    def __str__(self) -> str:
        text = str(self.range)
        if self.repository:
            text = f"{self.repository}#{text}"
        if self.optional:
            text += " (optional, default)" if self.default else " (optional)"
        if self.path:
            text += f" @{self.path}"
        return text


@dataclass
class Configuration:
    """Named build configuration; only its dependencies matter here."""
    name: str
    dependencies: Dict[str, DependencySpec] = field(default_factory=dict)


@dataclass
class Recipe:
    """Parsed package manifest."""
    name: str
    version: Version = MASTER
    dependencies: Dict[str, DependencySpec] = field(default_factory=dict)
    subpackages: List["Recipe"] = field(default_factory=list)
    configurations: List[Configuration] = field(default_factory=list)
    directory: Optional[Path] = None
    parent: Optional[str] = None

    @property
    def full_name(self) -> str:
        return join_name(self.parent, self.name) if self.parent else self.name

    @property
    def optional_dependencies(self) -> List[str]:
        return sorted(n for n, d in self.all_dependencies().items() if d.optional)

    def all_dependencies(self) -> Dict[str, DependencySpec]:
        """Base dependencies merged with those of every configuration.

        A dependency declared at the base level wins over the same name
        declared in a configuration; among configurations the first one wins.
        """
        merged: Dict[str, DependencySpec] = {}
        for config in self.configurations:
            for name, spec in config.dependencies.items():
                merged.setdefault(name, spec)
        merged.update(self.dependencies)
        return dict(sorted(merged.items()))

    def get_subpackage(self, name: str) -> Optional["Recipe"]:
        """Look up a subpackage by its name relative to this recipe (``"b"`` or ``"b:c"``)."""
        head, _, rest = name.partition(SUBPACKAGE_SEPARATOR)
        for sub in self.subpackages:
            if sub.name == head:
                return sub.get_subpackage(rest) if rest else sub
        return None

    def resolve_dependency_path(self, spec: DependencySpec) -> Optional[Path]:
        """Absolute directory of a path dependency."""
        if spec.path is None:
            return None
        path = Path(spec.path)
        if not path.is_absolute():
            if self.directory is None:
                return None
            path = self.directory / path
        return Path(os.path.normpath(str(path)))
