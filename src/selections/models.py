"""Data models for the selections lockfile."""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional, Tuple

from constants import Constants
from recipe.models import base_name
from versioning.models import Version


@dataclass(frozen=True)
class SelectedVersion:
    """Pinned choice for one package: a version, a path or a repository commit."""
    version: Optional[Version] = None
    path: Optional[str] = None
    repository: Optional[str] = None

    def __post_init__(self) -> None:
        if self.path is not None:
            if self.version is not None or self.repository is not None:
                raise ValueError("A path selection cannot carry a version or repository")
        elif self.version is None:
            raise ValueError("A selection needs a version or a path")

    @property
    def is_path(self) -> bool:
        return self.path is not None

    @property
    def is_scm(self) -> bool:
        return self.repository is not None

    def to_json(self) -> Any:
        if self.path is not None:
            return {"path": self.path}
        if self.repository is not None:
            return {"repository": self.repository, "version": str(self.version)}
        return str(self.version)

    @classmethod
    def from_json(cls, value: Any) -> "SelectedVersion":
        """Decode one ``versions`` entry.

        Raises:
            ValueError: the entry has an unknown shape or an invalid version.
        """
        if isinstance(value, str):
            return cls(version=Version(value))
        if isinstance(value, dict):
            if "path" in value:
                if not isinstance(value["path"], str):
                    raise ValueError("'path' must be a string")
                return cls(path=value["path"])
            if "version" in value:
                if not isinstance(value["version"], str):
                    raise ValueError("'version' must be a string")
                repository = value.get("repository")
                if repository is not None and not isinstance(repository, str):
                    raise ValueError("'repository' must be a string")
                return cls(version=Version(value["version"]), repository=repository)
        raise ValueError(f"unsupported selection entry {value!r}")

    def __str__(self) -> str:
        if self.path is not None:
            return f"path {self.path}"
        if self.repository is not None:
            return f"{self.repository}#{self.version}"
        return str(self.version)


@dataclass
class Selections:
    """Contents of ``dub.selections.json``.

    ``versions`` is keyed by base package name; subpackages share the entry
    of their parent. Top-level keys other than ``fileVersion`` and
    ``versions`` are kept in ``extra`` and written back unchanged.
    """
    versions: Dict[str, SelectedVersion] = field(default_factory=dict)
    file_version: int = Constants.SELECTIONS_FILE_VERSION
    extra: Dict[str, Any] = field(default_factory=dict)

    def get(self, name: str) -> Optional[SelectedVersion]:
        return self.versions.get(base_name(name))

    def set(self, name: str, selected: SelectedVersion) -> None:
        self.versions[base_name(name)] = selected

    def remove(self, name: str) -> None:
        self.versions.pop(base_name(name), None)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and base_name(name) in self.versions

    def __iter__(self) -> Iterator[Tuple[str, SelectedVersion]]:
        return iter(sorted(self.versions.items()))

    def __len__(self) -> int:
        return len(self.versions)

    @property
    def inheritable(self) -> bool:
        return bool(self.extra.get("inheritable", False))

    def copy(self) -> "Selections":
        return Selections(dict(self.versions), self.file_version, dict(self.extra))

    def same_versions(self, other: Optional["Selections"]) -> bool:
        """Compare the pinned versions only, ignoring key order and extras."""
        return other is not None and self.versions == other.versions

