"""Data models for cache entries."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

from versioning.models import Version


@dataclass(frozen=True)
class CacheEntry:
    """A fetched package stored under ``<root>/<name>/<version>``."""
    name: str
    version: Version
    path: Path
    root: Path
    lock_path: Path
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def sha256(self) -> Any:
        return self.metadata.get("sha256")
