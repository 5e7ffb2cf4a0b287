"""Unit tests for the citizenship reference data."""

from datetime import date

import pytest

from fhir_bridge.domain.ports import ParseError
from fhir_bridge.domain.records import Citizenship
from fhir_bridge.infrastructure.reference_data import (
    CitizenshipRegistry,
    get_reference_data,
    initialize_reference_data,
    reset_reference_data,
)
from fhir_bridge.infrastructure.settings import DEFAULT_CITIZENSHIP_TABLE


@pytest.fixture(autouse=True)
def clean_registry():
    """Each test starts without a loaded registry."""
    reset_reference_data()
    yield
    reset_reference_data()


class TestCitizenshipRegistry:
    """Test suite for CitizenshipRegistry."""

    def test_bundled_table_loads(self):
        """Test the packaged table parses and contains known codes."""
        registry = CitizenshipRegistry.from_csv(DEFAULT_CITIZENSHIP_TABLE)

        assert "705" in registry
        assert registry.name_for("705") == "Slovenia"
        assert registry.get("040").explanation == "Austria"

    def test_unknown_code(self):
        """Test unknown codes resolve to None."""
        registry = CitizenshipRegistry([Citizenship(code="705", explanation="Slovenia")])

        assert registry.name_for("000") is None
        assert registry.get("000") is None
        assert "000" not in registry

    def test_mapping_is_read_only(self):
        """Test the exposed mapping cannot be modified."""
        registry = CitizenshipRegistry([Citizenship(code="705", explanation="Slovenia")])

        with pytest.raises(TypeError):
            registry.citizenships["999"] = Citizenship(code="999", explanation="Unknown")

    def test_duplicate_codes_rejected(self):
        """Test a table with a repeated code is invalid."""
        with pytest.raises(ValueError):
            CitizenshipRegistry([
                Citizenship(code="705", explanation="Slovenia"),
                Citizenship(code="705", explanation="Slovenija"),
            ])

    def test_valid_on(self):
        """Test validity windows select the citizenships of a given day."""
        registry = CitizenshipRegistry.from_csv(DEFAULT_CITIZENSHIP_TABLE)

        codes_1990 = {c.code for c in registry.valid_on(date(1990, 1, 1))}
        codes_2005 = {c.code for c in registry.valid_on(date(2005, 1, 1))}

        assert "890" in codes_1990 and "705" not in codes_1990
        assert "891" in codes_2005 and "890" not in codes_2005 and "688" not in codes_2005

    def test_iteration_and_length(self):
        """Test the registry iterates over codes."""
        registry = CitizenshipRegistry([
            Citizenship(code="705", explanation="Slovenia"),
            Citizenship(code="191", explanation="Croatia"),
        ])

        assert len(registry) == 2
        assert list(registry) == ["705", "191"]

    def test_malformed_file(self, tmp_path):
        """Test a malformed table is a ParseError."""
        path = tmp_path / "bad.csv"
        path.write_text("Code,Explanation\n705,Slovenia,extra\n")

        with pytest.raises(ParseError):
            CitizenshipRegistry.from_csv(path)


class TestProcessWideRegistry:
    """Test suite for start-up initialization."""

    def test_get_before_initialize_fails(self):
        """Test reading reference data before start-up is an error."""
        with pytest.raises(RuntimeError):
            get_reference_data()

    def test_initialize_from_path(self, tmp_path):
        """Test the registry is loaded once and then shared."""
        path = tmp_path / "citizenships.csv"
        path.write_text("Code,Explanation,From,Through\n705,Slovenia,25.06.1991,\n")

        loaded = initialize_reference_data(path)

        assert get_reference_data() is loaded
        assert loaded.get("705").valid_from == date(1991, 6, 25)

    def test_initialize_from_settings(self):
        """Test the default path comes from settings."""
        registry = initialize_reference_data()
        assert len(registry) > 0

    def test_missing_file(self, tmp_path):
        """Test a missing table fails start-up."""
        with pytest.raises(FileNotFoundError):
            initialize_reference_data(tmp_path / "missing.csv")
