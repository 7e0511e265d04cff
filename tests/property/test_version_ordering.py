"""Property-based tests for version ordering."""

import pytest
from hypothesis import given, strategies as st

from pocker.utils.version import compare_versions, latest_of, sort_versions

segment = st.one_of(
    st.integers(min_value=0, max_value=10_000).map(str),
    st.text(alphabet="abcdefghijklmnopqrstuvwxyzABC", min_size=1, max_size=6),
)

version_like = st.one_of(
    st.none(),
    st.just(""),
    st.just("latest"),
    st.just("LATEST"),
    st.text(alphabet="0123456789abcdef", min_size=12, max_size=64),
    st.builds(
        lambda prefix, parts, separator, suffix: prefix + separator.join(parts) + suffix,
        st.sampled_from(["", "v", "V"]),
        st.lists(segment, min_size=1, max_size=5),
        st.sampled_from([".", "_"]),
        st.sampled_from(["", "-rc1", "+build.7", "-alpine"]),
    ),
    st.text(max_size=20),
)


@pytest.mark.property
@given(version_like, version_like)
def test_compare_is_antisymmetric(left, right):
    """Property: compare(a, b) == -compare(b, a)."""
    assert compare_versions(left, right) == -compare_versions(right, left)


@pytest.mark.property
@given(version_like)
def test_compare_is_reflexive(value):
    """Property: compare(a, a) == 0."""
    assert compare_versions(value, value) == 0


@pytest.mark.property
@given(version_like, version_like)
def test_compare_returns_sign(left, right):
    """Property: results are always -1, 0 or 1."""
    assert compare_versions(left, right) in (-1, 0, 1)


numeric_version = st.lists(
    st.integers(min_value=0, max_value=500), min_size=1, max_size=4
).map(lambda parts: ".".join(str(part) for part in parts))


@pytest.mark.property
@given(st.lists(numeric_version, min_size=1, max_size=8), st.booleans())
def test_latest_is_not_below_any_member(versions, with_latest):
    """Property: nothing in a numeric set compares above its latest version."""
    if with_latest:
        versions = versions + ["latest"]
    latest = latest_of(versions)
    assert latest in versions
    assert all(compare_versions(version, latest) <= 0 for version in sort_versions(versions))
    if with_latest:
        assert latest == "latest"
