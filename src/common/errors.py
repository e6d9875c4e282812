"""Error taxonomy for resolution, lockfile and cache failures.

Every error carries a stable ``code``, an optional ``hint`` for the user and a
``context`` mapping with the values that identify the failure.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence


class DubError(Exception):
    """Base class for all errors raised by the package manager core."""

    code: str = "E_UNKNOWN"

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.context: Dict[str, Any] = dict(context or {})

    def __str__(self) -> str:
        lines = [self.message]
        if self.hint:
            lines.append(f"Hint: {self.hint}")
        for key, value in self.context.items():
            lines.append(f"  {key}: {value}")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form used by callers that report errors as data."""
        return {
            "code": self.code,
            "message": self.message,
            "hint": self.hint,
            "context": {k: str(v) for k, v in self.context.items()},
        }


class VersionFormatError(ValueError):
    """A version or version-range string could not be parsed."""


@dataclass(frozen=True)
class ConstraintSource:
    """One dependency edge that contributed to a constraint."""

    package: str
    version: str
    constraint: str

    def __str__(self) -> str:
        return f"{self.package}@{self.version} requires {self.constraint}"


class RecipeError(DubError):
    """Package recipe content is invalid."""

    code = "E_RECIPE"


class UnresolvableConstraintError(DubError):
    """No version satisfies every constraint placed on a package."""

    code = "E_UNRESOLVABLE"

    def __init__(
        self,
        package: str,
        sources: Sequence[ConstraintSource],
        reason: Optional[str] = None,
    ) -> None:
        self.package = package
        self.sources: List[ConstraintSource] = sorted(
            sources, key=lambda s: (s.package, s.version, s.constraint)
        )
        detail = reason or "no version satisfies all constraints"
        message = f"Cannot resolve {package}: {detail}"
        if self.sources:
            message += "\n" + "\n".join(f"  - {src}" for src in self.sources)
        super().__init__(
            message,
            hint="Relax one of the listed constraints or upgrade the depending packages.",
            context={"package": package},
        )


class CyclicDependencyError(DubError):
    """The selected dependency graph contains a cycle."""

    code = "E_CYCLE"

    def __init__(self, cycle: Sequence[str]) -> None:
        self.cycle = list(cycle)
        super().__init__(
            "Dependency cycle detected: " + " -> ".join(self.cycle),
            context={"cycle_length": max(len(self.cycle) - 1, 0)},
        )


class MalformedLockfileError(DubError):
    """The selections file exists but cannot be used."""

    code = "E_LOCKFILE"

    def __init__(self, path: Any, reason: str) -> None:
        self.path = path
        super().__init__(
            f"Malformed selections file {path}: {reason}",
            hint="Fix the file or delete it and run an upgrade.",
            context={"path": path},
        )


class NetworkFetchError(DubError):
    """A registry request or archive download failed."""

    code = "E_NETWORK"

    def __init__(self, url: str, reason: str, *, retryable: bool = False) -> None:
        self.url = url
        self.retryable = retryable
        super().__init__(
            f"Failed to fetch {url}: {reason}",
            hint="Retry later or configure another registry." if retryable else None,
            context={"url": url, "retryable": retryable},
        )


class CacheLockTimeoutError(DubError):
    """The per-entry cache lock could not be acquired in time."""

    code = "E_CACHE_LOCK"

    def __init__(self, lock_path: Any, timeout: float, holder: Optional[int] = None) -> None:
        self.lock_path = lock_path
        self.timeout = timeout
        self.holder = holder
        held_by = f" (held by pid {holder})" if holder is not None else ""
        super().__init__(
            f"Timed out after {timeout:g}s waiting for cache lock {lock_path}{held_by}",
            hint="Another process is fetching the same package; wait for it or stop it.",
            context={"lock_path": lock_path, "holder": holder},
        )


class MissingPathDependencyError(DubError):
    """A path dependency points to a directory without a package recipe."""

    code = "E_MISSING_PATH"

    def __init__(self, package: str, path: Any) -> None:
        self.package = package
        self.path = path
        super().__init__(
            f"Path dependency {package} not found at {path}",
            context={"package": package, "path": path},
        )


class SettingsError(DubError):
    """A settings file or environment override is invalid."""

    code = "E_SETTINGS"
