"""Tests for Version, VersionRange and version-spec parsing."""

import pytest

from common.errors import VersionFormatError
from versioning.models import (
    ANY,
    INVALID,
    MAX_RELEASE,
    Version,
    VersionRange,
    bump_incompatible_version,
    bump_version,
    expand_version,
    highest_matching,
)
from versioning.parser import parse_version_spec


def v(text):
    return Version(text)


class TestVersion:
    """Test version parsing and ordering."""

    def test_semver_ordering(self):
        """Releases follow SemVer precedence."""
        ordered = [v("0.9.0"), v("1.0.0-alpha"), v("1.0.0-alpha.1"), v("1.0.0-beta"), v("1.0.0"), v("1.2.0"), v("10.0.0")]
        assert sorted(reversed(ordered)) == ordered

    def test_build_metadata_ignored(self):
        """Build metadata does not affect precedence or equality."""
        assert v("1.0.0+build.1") == v("1.0.0+build.2")
        assert not v("1.0.0+a") < v("1.0.0")

    def test_branches_sort_below_releases(self):
        """Branches are below every release, master above other branches."""
        assert v("~develop") < v("~master") < v("0.0.1")
        assert v("~alpha") < v("~beta")

    def test_kinds(self):
        """Branch, master, hash and pre-release flags."""
        assert v("~master").is_master and v("~master").is_branch
        assert v("~feature").is_prerelease
        assert v("73535568b79a0b124bc1653002637a830ce0fcb8").is_scm
        assert v("1.0.0-rc.1").is_prerelease
        assert not v("1.0.0").is_prerelease

    @pytest.mark.parametrize("text", ["", "~", "1.0", "abc", "1.0.0.0"])
    def test_invalid(self, text):
        """Invalid version strings are rejected."""
        with pytest.raises(VersionFormatError):
            Version(text)


class TestHelpers:
    """Test version expansion and bumping."""

    def test_expand(self):
        """Test partial versions are expanded."""
        assert expand_version("1") == "1.0.0"
        assert expand_version("1.2") == "1.2.0"
        assert expand_version("1-pre") == "1.0.0-pre"

    def test_bump(self):
        """Test bumping to the next release."""
        assert bump_version("1.2.3") == "1.3.0"
        assert bump_version("1.2") == "2.0.0"
        assert bump_version("0") == "1.0.0"
        assert bump_version("1.2.3-beta+meta") == "1.3.0"

    def test_bump_incompatible(self):
        """Test bumping to the next incompatible release."""
        assert bump_incompatible_version("1.2.3") == "2.0.0"
        assert bump_incompatible_version("0.1.2") == "0.1.3"


class TestParseVersionSpec:
    """Test version-range parsing."""

    def test_any(self):
        spec = parse_version_spec("*")
        assert spec.matches_any()
        assert spec.matches(v("~master"))
        assert str(spec) == ">=0.0.0"

    def test_exact(self):
        """Test exact version specs."""
        assert parse_version_spec("1.0.0").is_exact
        assert parse_version_spec("==1.0.0") == parse_version_spec("1.0.0")
        assert str(parse_version_spec("1.0.0")) == "1.0.0"

    def test_bounds(self):
        """Test double bounds."""
        spec = parse_version_spec(">=1.0.0 <2.0.0")
        assert spec.matches(v("1.0.0"))
        assert spec.matches(v("1.9.9"))
        assert not spec.matches(v("2.0.0"))
        assert not spec.matches(v("0.9.0"))
        assert str(spec) == ">=1.0.0 <2.0.0"

    def test_single_bounds(self):
        """Test single bounds."""
        assert parse_version_spec(">1.0.0").matches(v("1.0.1"))
        assert not parse_version_spec(">1.0.0").matches(v("1.0.0"))
        assert parse_version_spec("<=2.0.0").matches(v("2.0.0"))
        assert not parse_version_spec("<2.0.0").matches(v("2.0.0"))

    def test_tilde_greater(self):
        """Test ~> ranges."""
        spec = parse_version_spec("~>1.2.3")
        assert spec.matches(v("1.2.9"))
        assert not spec.matches(v("1.3.0"))
        assert not spec.matches(v("1.3.0-alpha"))
        assert str(spec) == "~>1.2.3"
        minor = parse_version_spec("~>1.2")
        assert minor.matches(v("1.9.0"))
        assert not minor.matches(v("2.0.0"))
        assert str(minor) == "~>1.2"

    def test_caret(self):
        """Test ^ ranges."""
        spec = parse_version_spec("^1.2.3")
        assert spec.matches(v("1.9.0"))
        assert not spec.matches(v("2.0.0"))
        zero = parse_version_spec("^0.1.2")
        assert zero.matches(v("0.1.2"))
        assert not zero.matches(v("0.1.3"))

    def test_branch(self):
        """Test branch specs."""
        spec = parse_version_spec("~master")
        assert spec.matches(v("~master"))
        assert not spec.matches(v("1.0.0"))
        assert not parse_version_spec(">=1.0.0").matches(v("~master"))

    @pytest.mark.parametrize("text", ["", "<1.0.0 >2.0.0", ">=2.0.0 <1.0.0", "!1.0.0", ">=~a <~b"])
    def test_invalid_specs(self, text):
        """Test malformed specs are rejected."""
        with pytest.raises(VersionFormatError):
            parse_version_spec(text)

    def test_partial_bounds_expanded(self):
        """Test comparison bounds written with fewer than three components."""
        spec = parse_version_spec(">=1.0 <2.0")
        assert spec == parse_version_spec(">=1.0.0 <2.0.0")
        assert spec.matches(v("1.5.0"))
        assert not spec.matches(v("2.0.0"))
        assert parse_version_spec(">1").matches(v("1.0.1"))
        assert parse_version_spec("<=2.1").matches(v("2.1.0"))

    def test_explicit_prerelease(self):
        """Test ranges naming a pre-release."""
        assert parse_version_spec(">=1.0.0-beta").explicit_prerelease
        assert not parse_version_spec("~>1.2").explicit_prerelease


class TestMerge:
    """Test range intersection."""

    def test_overlap(self):
        """Test merging overlapping ranges."""
        merged = parse_version_spec(">=1.1.0").merge(parse_version_spec(">=1.3.0"))
        assert str(merged) == ">=1.3.0"
        merged = parse_version_spec(">=1.0.0 <2.0.0").merge(parse_version_spec("~>1.5"))
        assert merged.matches(v("1.6.0"))
        assert not merged.matches(v("1.4.0"))

    def test_disjoint(self):
        """Test merging disjoint ranges yields nothing."""
        merged = parse_version_spec("<1.0.0").merge(parse_version_spec(">=2.0.0"))
        assert merged == INVALID
        assert not merged.is_valid()

    def test_any_is_neutral(self):
        """Test merging with * keeps the other range."""
        other = parse_version_spec("~>1.0")
        assert ANY.merge(other) == other
        assert other.merge(ANY) == other

    def test_branch_vs_release(self):
        """Test a branch never merges with a release range."""
        assert parse_version_spec("~master").merge(parse_version_spec(">=1.0.0")) == INVALID
        assert parse_version_spec("~master").merge(parse_version_spec("~master")).is_valid()

    def test_exclusive_bounds_meet(self):
        """Test exclusive bounds that only touch do not overlap."""
        merged = parse_version_spec("<1.0.0").merge(parse_version_spec(">=1.0.0"))
        assert not merged.is_valid()
        assert VersionRange(v("1.0.0"), MAX_RELEASE, False, True).merge(
            parse_version_spec(">=1.0.0")
        ) == VersionRange(v("1.0.0"), MAX_RELEASE, False, True)


class TestHighestMatching:
    """Test candidate selection."""

    def test_highest_stable(self):
        """Test the highest stable release wins."""
        versions = [v("1.0.0"), v("1.5.0"), v("2.0.0"), v("1.6.0-rc.1")]
        assert highest_matching(versions, parse_version_spec(">=1.0.0 <2.0.0")) == v("1.5.0")

    def test_prerelease_when_referenced(self):
        """Test a referenced pre-release is eligible."""
        versions = [v("1.0.0"), v("1.1.0-rc.1")]
        assert highest_matching(versions, parse_version_spec(">=1.1.0-rc.1"), allow_prerelease=True) == v("1.1.0-rc.1")

    def test_prerelease_fallback(self):
        """Test pre-releases are used when no release matches."""
        assert highest_matching([v("1.0.0-beta")], ANY) == v("1.0.0-beta")

    def test_branch_last_resort(self):
        """Test branches are chosen last."""
        assert highest_matching([v("~master"), v("~dev")], ANY) == v("~master")
        assert highest_matching([v("~master"), v("0.1.0")], ANY) == v("0.1.0")

    def test_none(self):
        assert highest_matching([v("1.0.0")], parse_version_spec(">=2.0.0")) is None
