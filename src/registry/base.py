"""Abstract registry client interface."""

from abc import ABC, abstractmethod
from typing import Iterator, List, Optional

from recipe.models import Recipe
from versioning.models import Version


class RegistryClient(ABC):
    """A source of package versions, recipes and archives.

    All methods take base package names; subpackages are served through
    their parent's recipe and archive.
    """

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable name used in log messages."""

    @abstractmethod
    def list_versions(self, name: str) -> List[Version]:
        """Return all known versions of ``name`` in ascending order.

        An unknown package yields an empty list.
        """

    @abstractmethod
    def fetch_recipe(self, name: str, version: Version) -> Optional[Recipe]:
        """Return the recipe of ``name`` at ``version`` or ``None`` if unknown."""

    @abstractmethod
    def fetch_archive(self, name: str, version: Version) -> Iterator[bytes]:
        """Stream the zip archive of ``name`` at ``version``.

        Raises:
            NetworkFetchError: when the archive cannot be retrieved.
        """
