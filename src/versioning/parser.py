"""Parsing of version-range specifications such as ``~>1.2``, ``>=1.0 <2.0`` or ``*``."""

from typing import Tuple

from common.errors import VersionFormatError

from .models import (
    ANY,
    BRANCH_PREFIX,
    MAX_RELEASE,
    MIN_RELEASE,
    Version,
    VersionRange,
    bump_incompatible_version,
    bump_version,
    expand_version,
    is_git_hash,
)

_COMPARATORS = (">=", ">", "<=", "<", "==")


def _skip_comparator(text: str) -> Tuple[str, str]:
    """Split a leading comparison operator off ``text``.

    Returns:
        Tuple of (operator, remainder); the operator defaults to ``>=``.
    """
    idx = 0
    while idx < len(text) and not text[idx].isdigit() and text[idx] != BRANCH_PREFIX:
        idx += 1
    if idx >= len(text):
        raise VersionFormatError(f"Expected version number in version spec: {text!r}")
    op = text[:idx].strip() or ">="
    if op not in _COMPARATORS:
        raise VersionFormatError(f"Unknown comparison operator {op!r} in {text!r}")
    return op, text[idx:].strip()


def _has_prerelease(text: str) -> bool:
    core = text.split("+", 1)[0]
    return "-" in core


def _bound(text: str) -> Version:
    """Version of a comparison bound; partial releases such as ``1.0`` are expanded."""
    if text.startswith(BRANCH_PREFIX) or is_git_hash(text):
        return Version(text)
    return Version(expand_version(text))


def parse_version_spec(raw: str) -> VersionRange:
    """Parse a version-range string into a ``VersionRange``.

    Accepted forms: ``*``, ``1.0.0``, ``==1.0.0``, ``>1.0.0``, ``>=1.0.0``,
    ``<2.0.0``, ``<=2.0.0``, ``>=1.0.0 <2.0.0``, ``~>1.2.3``, ``~>1.2``,
    ``^1.2.3``, ``~branch`` and commit hashes.

    Raises:
        VersionFormatError: when the string is not a valid specification.
    """
    if not isinstance(raw, str):
        raise VersionFormatError(f"Version spec must be a string, not {type(raw).__name__}")
    spec = raw.strip()
    if not spec:
        raise VersionFormatError("Version spec must not be empty")
    if spec == "*":
        return ANY

    if spec.startswith("~>"):
        body = spec[2:].strip()
        low = Version(expand_version(body))
        high = Version(bump_version(body) + "-0")
        return VersionRange(low, high, True, False, _has_prerelease(body))

    if spec.startswith("^"):
        body = expand_version(spec[1:].strip())
        low = Version(body)
        high = Version(bump_incompatible_version(body) + "-0")
        return VersionRange(low, high, True, False, _has_prerelease(body))

    if spec.startswith(BRANCH_PREFIX) or is_git_hash(spec):
        return VersionRange.exact(Version(spec))

    if spec[0] not in "><=":
        return VersionRange.exact(Version(spec))

    first, rest = _skip_comparator(spec)
    if " " not in rest:
        version = _bound(rest)
        explicit = version.is_release and version.is_prerelease
        if first in ("<", "<="):
            return VersionRange(MIN_RELEASE, version, True, first == "<=", explicit)
        if first in (">", ">="):
            return VersionRange(version, MAX_RELEASE, first == ">=", True, explicit)
        return VersionRange.exact(version)

    if first not in (">", ">="):
        raise VersionFormatError(
            f"First comparison operator expected to be either > or >=, not {first!r}"
        )
    low_text, upper = rest.split(" ", 1)
    second, high_text = _skip_comparator(upper.strip())
    if second not in ("<", "<="):
        raise VersionFormatError(
            f"Second comparison operator expected to be either < or <=, not {second!r}"
        )
    low, high = _bound(low_text), _bound(high_text)
    if low.is_branch or high.is_branch:
        raise VersionFormatError(f"Cannot compare branches: {spec!r}")
    if high < low:
        raise VersionFormatError(f"First version must not be greater than the second one: {spec!r}")
    if high == MAX_RELEASE and second == "<=" and low == MIN_RELEASE and first == ">=":
        return ANY
    explicit = low.is_prerelease or high.is_prerelease
    return VersionRange(low, high, first == ">=", second == "<=", explicit)
