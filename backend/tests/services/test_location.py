"""
Unit tests for location normalization.
"""

import pytest

from app.services.location import (
    normalize_state,
    normalize_state_name,
    normalize_zip,
    state_for_zip_prefix,
)


class TestNormalizeZip:
    """Tests for normalize_zip."""

    @pytest.mark.parametrize("raw,expected", [
        ("10001", "10001"),
        (" 10001 ", "10001"),
        ("10001-1234", "10001"),
        ("100011234", "10001"),
        ("02134", "02134"),
    ])
    def test_valid_zips(self, raw, expected):
        assert normalize_zip(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "   ", "1234", "ABCDE", "12-34"])
    def test_invalid_zips_return_none(self, raw):
        assert normalize_zip(raw) is None

    def test_non_string_returns_none(self):
        assert normalize_zip(10001) is None


class TestNormalizeState:
    """Tests for normalize_state."""

    @pytest.mark.parametrize("raw,expected", [
        ("NY", "NY"),
        ("ny", "NY"),
        (" ca ", "CA"),
        ("DC", "DC"),
        ("PR", "PR"),
    ])
    def test_valid_states(self, raw, expected):
        assert normalize_state(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "XX", "New York", "N", "NYC"])
    def test_invalid_states_return_none(self, raw):
        assert normalize_state(raw) is None

    def test_full_names_are_accepted_by_name_normalizer(self):
        assert normalize_state_name("New York") == "NY"
        assert normalize_state_name("  district   of columbia ") == "DC"
        assert normalize_state_name("ny") == "NY"
        assert normalize_state_name("Atlantis") is None


class TestStateForZipPrefix:
    """Tests for deriving a state from the ZIP3 prefix."""

    @pytest.mark.parametrize("zip5,expected", [
        ("10001", "NY"),
        ("14201", "NY"),
        ("90210", "CA"),
        ("75201", "TX"),
        ("00501", "NY"),
    ])
    def test_known_prefixes(self, zip5, expected):
        assert state_for_zip_prefix(zip5) == expected

    def test_unassigned_prefix_returns_none(self):
        assert state_for_zip_prefix("00001") is None

    def test_missing_zip_returns_none(self):
        assert state_for_zip_prefix(None) is None
        assert state_for_zip_prefix("1") is None
