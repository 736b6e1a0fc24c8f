"""Property-based tests for configuration helpers."""

from hypothesis import given
from hypothesis import strategies as st

from lab_manager.config import resolve_bootstrap_version


@given(
    cli_version=st.text(max_size=10),
    is_default=st.booleans(),
    explicit=st.text(max_size=10),
)
def test_explicit_bootstrap_version_wins(cli_version, is_default, explicit):
    """Property: an explicitly set bootstrap version always takes precedence."""
    assert resolve_bootstrap_version(cli_version, is_default, explicit, True) == (explicit or None)


@given(cli_version=st.text(max_size=10), explicit=st.none() | st.text(max_size=10))
def test_custom_bootstrap_tracks_head(cli_version, explicit):
    """Property: custom bootstrap URLs use HEAD unless a version is given."""
    assert resolve_bootstrap_version(cli_version, False, explicit, False) is None
