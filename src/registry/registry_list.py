"""Prioritized list of registries queried in order."""

import logging
from typing import Callable, Iterator, List, Optional, Sequence, TypeVar

from common.errors import DubError, NetworkFetchError
from common.logging_utils import extra_context
from recipe.models import Recipe
from versioning.models import Version

from .base import RegistryClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RegistryList(RegistryClient):
    """Queries registries in priority order.

    The first registry that gives an answer wins. A registry that fails is
    logged at WARNING and skipped; the error is only raised when no registry
    could answer and at least one of them failed.
    """

    def __init__(self, registries: Sequence[RegistryClient]) -> None:
        self.registries: List[RegistryClient] = list(registries)

    @classmethod
    def offline(cls) -> "RegistryList":
        """List without registries; only path and cached packages resolve."""
        return cls([])

    @property
    def description(self) -> str:
        if not self.registries:
            return "no registries"
        return ", ".join(r.description for r in self.registries)

    def _first(
        self,
        doing_what: str,
        call: Callable[[RegistryClient], T],
        accept: Callable[[T], bool],
        default: T,
    ) -> T:
        last_error: Optional[DubError] = None
        for registry in self.registries:
            try:
                result = call(registry)
            except DubError as exc:
                logger.warning(
                    "Error %s using %s: %s",
                    doing_what,
                    registry.description,
                    exc.message,
                    extra=extra_context(
                        event="registry_error",
                        component="registry_list",
                        registry=registry.description,
                        code=exc.code,
                    ),
                )
                last_error = exc
                continue
            if accept(result):
                return result
        if last_error is not None:
            raise last_error
        return default

    def list_versions(self, name: str) -> List[Version]:
        return self._first(f"listing versions of {name}", lambda r: r.list_versions(name), bool, [])

    def fetch_recipe(self, name: str, version: Version) -> Optional[Recipe]:
        return self._first(
            f"fetching recipe of {name} {version}",
            lambda r: r.fetch_recipe(name, version),
            lambda recipe: recipe is not None,
            None,
        )

    def fetch_archive(self, name: str, version: Version) -> Iterator[bytes]:
        last_error: Optional[NetworkFetchError] = None
        for registry in self.registries:
            try:
                stream = registry.fetch_archive(name, version)
                first = next(stream, None)
            except NetworkFetchError as exc:
                logger.warning(
                    "Error downloading %s %s using %s: %s",
                    name,
                    version,
                    registry.description,
                    exc.message,
                    extra=extra_context(event="registry_error", component="registry_list", code=exc.code),
                )
                last_error = exc
                continue
            return _prepend(first, stream)
        if last_error is not None:
            raise last_error
        raise NetworkFetchError(f"{name}@{version}", f"no registry provides this package ({self.description})")


def _prepend(first: Optional[bytes], rest: Iterator[bytes]) -> Iterator[bytes]:
    if first is not None:
        yield first
    yield from rest
