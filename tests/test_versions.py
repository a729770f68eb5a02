"""Unit tests for versions module."""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from repobuilder.versions import parse_version


class TestLegacyVersions:
    def test_stable_release(self):
        v = parse_version("4.4.0")
        assert v.series == "4.4"
        assert v.is_release
        assert not v.is_development_build
        assert v.is_stable_series
        assert not v.is_development_series
        assert v.stable_release_series == "4.4"
        assert not v.is_lts

    def test_release_candidate(self):
        v = parse_version("4.2.5-rc1")
        assert v.is_release_candidate
        assert v.rc_number == 1
        assert v.is_release

    def test_development_series(self):
        v = parse_version("4.3.1")
        assert v.is_development_series
        assert v.is_development_release
        assert v.stable_release_series == "4.4"

    def test_development_series_before_major_bump(self):
        assert parse_version("3.9.1").stable_release_series == "4.0"

    def test_trailing_dash_is_dev_build(self):
        v = parse_version("4.4.0-")
        assert v.is_development_build
        assert not v.is_release

    def test_tilde_is_dev_build(self):
        v = parse_version("4.4.0~abc123")
        assert v.is_development_build

    def test_other_tag_is_dev_build(self):
        assert parse_version("4.2.1-21-g1234abc").is_development_build


class TestNewScheme:
    def test_lts(self):
        v = parse_version("5.0.0")
        assert v.is_lts
        assert not v.is_continuous
        assert v.lts == "5.0"
        assert v.stable_release_series == ""

    def test_continuous(self):
        v = parse_version("5.1.0")
        assert v.is_continuous
        assert not v.is_lts
        assert v.lts == "5.0"

    def test_alpha_is_development_release(self):
        v = parse_version("4.9.0-alpha1")
        assert v.is_development_release
        assert v.dev_release_number == 1
        assert not v.is_development_build

    def test_dev_builds_rejected(self):
        with pytest.raises(ValueError, match="development builds are not allowed"):
            parse_version("5.0.0-beta")


class TestInvalidVersions:
    @pytest.mark.parametrize("value", ["4.4.0.0", "4.4", "v4.4.0", "", "latest"])
    def test_rejected(self, value):
        with pytest.raises(ValueError):
            parse_version(value)

    def test_non_string(self):
        with pytest.raises(ValueError):
            parse_version(440)


class TestOrdering:
    def test_release_after_candidate(self):
        assert parse_version("4.2.5-rc1") < parse_version("4.2.5")

    def test_numeric_order(self):
        versions = ["4.4.10", "4.4.2", "3.6.23", "4.0.0"]
        ordered = sorted(parse_version(v) for v in versions)
        assert [str(v) for v in ordered] == ["3.6.23", "4.0.0", "4.4.2", "4.4.10"]

    def test_equality_and_hash(self):
        assert parse_version("4.4.0") == parse_version("4.4.0")
        assert len({parse_version("4.4.0"), parse_version("4.4.0")}) == 1

    def test_build_metadata_orders_consistently(self):
        a, b = parse_version("4.4.0+a"), parse_version("4.4.0+b")
        assert a != b
        assert a < b
        assert not b < a
        assert not a > b
        assert parse_version("4.4.0-rc1+z") < a


@given(
    versions=st.lists(
        st.tuples(
            st.integers(min_value=0, max_value=5),
            st.sampled_from(["", "-rc1", "-rc2"]),
            st.sampled_from(["", "+a", "+b"]),
        ),
        min_size=2,
        max_size=6,
    )
)
def test_ordering_is_total_property(versions):
    """Property test: exactly one of a < b, a == b, a > b holds for any two versions."""
    parsed = [parse_version(f"4.4.{patch}{pre}{build}") for patch, pre, build in versions]
    for a in parsed:
        for b in parsed:
            assert [a < b, a == b, a > b].count(True) == 1


@given(
    major=st.integers(min_value=2, max_value=4),
    minor=st.integers(min_value=0, max_value=4),
    patch=st.integers(min_value=0, max_value=30),
)
def test_legacy_series_property(major, minor, patch):
    """Property test: legacy releases parse and are either stable or development series."""
    v = parse_version(f"{major}.{minor}.{patch}")
    assert v.series == f"{major}.{minor}"
    assert v.is_release
    assert v.is_stable_series != v.is_development_series
    assert v.stable_release_series.startswith(f"{major}.")
