"""Version and version-range models.

A ``Version`` is a SemVer 2.0 release, a branch (``~name``) or an SCM commit
hash. A ``VersionRange`` is an interval between two versions with inclusive or
exclusive bounds; branch and hash ranges are always exact.
"""

import re
from dataclasses import dataclass, field
from functools import total_ordering
from typing import Iterable, Optional, Tuple

import semantic_version

from common.errors import VersionFormatError

_HASH_RE = re.compile(r"^[0-9a-fA-F]{7,40}$")
BRANCH_PREFIX = "~"


def is_git_hash(text: str) -> bool:
    """True for 7 to 40 hexadecimal characters."""
    return bool(_HASH_RE.match(text))


def _prerelease_key(parts: Tuple[str, ...]) -> tuple:
    if not parts:
        return (1,)
    return (0,) + tuple((0, int(p), "") if p.isdigit() else (1, 0, p) for p in parts)


@total_ordering
class Version:
    """A release, branch or commit hash.

    Ordering: releases follow SemVer precedence (build metadata ignored),
    branches sort below every release with ``~master`` above the other
    branches, and commit hashes sort above everything else but are only
    meaningful for equality.
    """

    __slots__ = ("_raw", "_semver", "_key")

    def __init__(self, raw: str) -> None:
        if not isinstance(raw, str):
            raise VersionFormatError(f"Version must be a string, not {type(raw).__name__}")
        raw = raw.strip()
        self._raw = raw
        self._semver: Optional[semantic_version.Version] = None
        if raw.startswith(BRANCH_PREFIX):
            if len(raw) < 2:
                raise VersionFormatError("Branch name must not be empty")
            self._key = (0, 1 if raw == "~master" else 0, raw)
        elif is_git_hash(raw):
            self._key = (2, 0, raw.lower())
        else:
            try:
                sv = semantic_version.Version(raw)
            except ValueError as exc:
                raise VersionFormatError(f"Invalid SemVer format: {raw!r}") from exc
            self._semver = sv
            self._key = (1, (sv.major, sv.minor, sv.patch), _prerelease_key(tuple(sv.prerelease)))

    @property
    def is_branch(self) -> bool:
        return self._key[0] == 0

    @property
    def is_master(self) -> bool:
        return self._raw == "~master"

    @property
    def is_scm(self) -> bool:
        return self._key[0] == 2

    @property
    def is_release(self) -> bool:
        return self._semver is not None

    @property
    def is_prerelease(self) -> bool:
        """Branches and commit hashes count as pre-releases."""
        if self._semver is None:
            return True
        return bool(self._semver.prerelease)

    @property
    def semver(self) -> Optional[semantic_version.Version]:
        return self._semver

    def __str__(self) -> str:
        return self._raw

    def __repr__(self) -> str:
        return f"Version({self._raw!r})"

    def __hash__(self) -> int:
        return hash(self._key)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._key == other._key

    def __lt__(self, other: "Version") -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._key < other._key


MIN_RELEASE = Version("0.0.0")
MAX_RELEASE = Version("99999.0.0")
MASTER = Version("~master")


def expand_version(text: str) -> str:
    """Fill ``a[.b[.c]]`` up to three components, keeping any suffix."""
    idx = min((i for i in (text.find("-"), text.find("+")) if i > 0), default=-1)
    core, suffix = (text[:idx], text[idx:]) if idx > 0 else (text, "")
    parts = core.split(".")
    if not 0 < len(parts) <= 3:
        raise VersionFormatError(f"Version corrupt: {text!r}")
    parts += ["0"] * (3 - len(parts))
    return ".".join(parts) + suffix


def _numeric_parts(text: str) -> list:
    idx = min((i for i in (text.find("-"), text.find("+")) if i > 0), default=-1)
    core = text[:idx] if idx > 0 else text
    parts = core.split(".")
    if not 0 < len(parts) <= 3:
        raise VersionFormatError(f"Version corrupt: {text!r}")
    try:
        return [int(p) for p in parts]
    except ValueError as exc:
        raise VersionFormatError(f"Version corrupt: {text!r}") from exc


def bump_version(text: str) -> str:
    """Increment the next-to-last component: ``1.2.3`` -> ``1.3.0``, ``1.2`` -> ``2.0.0``."""
    parts = _numeric_parts(text)
    to_inc = 1 if len(parts) == 3 else 0
    parts = parts[:to_inc + 1]
    parts[to_inc] += 1
    parts += [0] * (3 - len(parts))
    return ".".join(str(p) for p in parts)


def bump_incompatible_version(text: str) -> str:
    """Next version that may break compatibility: ``1.2.3`` -> ``2.0.0``, ``0.1.2`` -> ``0.1.3``."""
    parts = _numeric_parts(expand_version(text))
    if parts[0] == 0:
        parts[2] += 1
    else:
        parts = [parts[0] + 1, 0, 0]
    return ".".join(str(p) for p in parts)


@dataclass(frozen=True)
class VersionRange:
    """Interval of versions ``low..high``.

    ``explicit_prerelease`` records whether a bound written by the user carries
    a pre-release tag; synthetic ``-0`` upper bounds of ``~>``/``^`` do not.
    """
    low: Version
    high: Version
    inc_low: bool = True
    inc_high: bool = True
    explicit_prerelease: bool = field(default=False, compare=False)

    @classmethod
    def exact(cls, version: Version) -> "VersionRange":
        return cls(version, version, True, True, version.is_release and version.is_prerelease)

    @property
    def is_exact(self) -> bool:
        return self.low == self.high and self.inc_low and self.inc_high

    @property
    def is_branch(self) -> bool:
        return self.low.is_branch

    @property
    def is_scm(self) -> bool:
        return self.low.is_scm

    def matches_any(self) -> bool:
        """True for ``*`` / ``>=0.0.0``, which also accepts branches."""
        return (
            self.inc_low and self.inc_high
            and str(self.low) == "0.0.0"
            and self.high == MAX_RELEASE
        )

    def is_valid(self) -> bool:
        """A range is valid when at least one version can match it."""
        if self.low.is_branch or self.high.is_branch or self.low.is_scm or self.high.is_scm:
            return self.low == self.high and self.inc_low and self.inc_high
        if self.inc_low and self.inc_high:
            return self.low <= self.high
        return self.low < self.high

    def matches(self, version: Version) -> bool:
        if self.matches_any():
            return True
        if self.low.is_branch or self.low.is_scm or version.is_branch or version.is_scm:
            return self.is_exact and self.low == version
        if not (self.low <= version if self.inc_low else self.low < version):
            return False
        if not (version <= self.high if self.inc_high else version < self.high):
            return False
        return True

    def merge(self, other: "VersionRange") -> "VersionRange":
        """Intersection of both ranges; ``INVALID`` when they do not overlap."""
        if self.matches_any():
            return other
        if other.matches_any():
            return self
        if self.is_branch or other.is_branch or self.is_scm or other.is_scm:
            return self if self == other else INVALID

        if self.low > other.low:
            low, inc_low = self.low, self.inc_low
        elif self.low < other.low:
            low, inc_low = other.low, other.inc_low
        else:
            low, inc_low = self.low, self.inc_low and other.inc_low

        if self.high < other.high:
            high, inc_high = self.high, self.inc_high
        elif self.high > other.high:
            high, inc_high = other.high, other.inc_high
        else:
            high, inc_high = self.high, self.inc_high and other.inc_high

        merged = VersionRange(
            low, high, inc_low, inc_high,
            self.explicit_prerelease or other.explicit_prerelease,
        )
        return merged if merged.is_valid() else INVALID

    def __str__(self) -> str:
        if self == INVALID:
            return "invalid"
        if self.is_exact:
            return str(self.low)
        if self.inc_low and not self.inc_high and self.low.is_release and not self.low.is_prerelease:
            sv = self.low.semver
            parts = [str(sv.major), str(sv.minor), str(sv.patch)]
            for i in range(1, 4):
                vp = ".".join(parts[:i])
                if Version(expand_version(vp)) != self.low:
                    continue
                if Version(bump_version(vp) + "-0") == self.high:
                    return "~>" + vp
                if Version(bump_incompatible_version(vp) + "-0") == self.high:
                    return "^" + vp
        out = []
        if self.low != MIN_RELEASE or not self.inc_low:
            out.append((">=" if self.inc_low else ">") + str(self.low))
        if self.high != MAX_RELEASE or not self.inc_high:
            out.append(("<=" if self.inc_high else "<") + str(self.high))
        return " ".join(out) or ">=0.0.0"


ANY = VersionRange(MIN_RELEASE, MAX_RELEASE, True, True)
INVALID = VersionRange(MAX_RELEASE, MIN_RELEASE, False, False)


def highest_matching(
    versions: Iterable[Version],
    constraint: VersionRange,
    allow_prerelease: bool = False,
) -> Optional[Version]:
    """Pick the highest version in ``versions`` matched by ``constraint``.

    Stable releases win. Pre-releases are considered alongside them when
    ``allow_prerelease`` is set, and otherwise only when no stable release
    matches. Branches are the last resort, ``~master`` first.
    """
    matching = [v for v in versions if constraint.matches(v)]
    stable = [v for v in matching if v.is_release and not v.is_prerelease]
    pre = [v for v in matching if v.is_release and v.is_prerelease]
    branches = [v for v in matching if v.is_branch]
    first_tier = stable + pre if allow_prerelease else stable
    for tier in (first_tier, pre, branches):
        if tier:
            return max(tier)
    return None
