"""Unit tests for the RowValidator."""

from datetime import date
from decimal import Decimal

import pytest
from pydantic import BaseModel

from fhir_bridge.domain.ports import ValidationError, Violation
from fhir_bridge.domain.records import ObservationDto, PatientCsv, PatientDto
from fhir_bridge.domain.validation import RowValidator, is_blank, required

TODAY = date(2024, 6, 1)


def _row(identifier, first="Ana", last="Novak", **extra):
    return PatientCsv(identifier=identifier, first_name=first, last_name=last, **extra)


class TestIsBlank:
    """Test suite for the blank/placeholder check."""

    @pytest.mark.parametrize("value", [None, "", "   ", "string", " String ", "STRING"])
    def test_blank_values(self, value):
        """Test missing, whitespace and placeholder values count as blank."""
        assert is_blank(value)

    @pytest.mark.parametrize("value", ["Ana", "strings", 0, date(2020, 1, 1)])
    def test_non_blank_values(self, value):
        """Test real values are not blank."""
        assert not is_blank(value)


class TestRowValidator:
    """Test suite for per-row and batch validation."""

    def test_valid_batch(self, patient_rows):
        """Test a clean batch yields a valid verdict."""
        verdict = RowValidator.default().validate(patient_rows, today=TODAY)

        assert verdict.is_valid
        assert verdict.violations == ()

    def test_empty_batch_is_valid(self):
        """Test an empty batch is valid."""
        assert RowValidator.default().validate([]).is_valid

    def test_single_missing_last_name(self):
        """Test a missing last name in row 2 of 3 gives exactly one violation."""
        rows = [_row("P1"), _row("P2", last=""), _row("P3")]

        verdict = RowValidator.default().validate(rows, today=TODAY)

        assert not verdict.is_valid
        assert len(verdict.violations) == 1
        violation = verdict.violations[0]
        assert violation.row_index == 1
        assert violation.field == "LastName"

    def test_every_row_is_checked(self):
        """Test ten rows each missing a field give ten violations."""
        rows = [_row(f"P{i}", first=None) for i in range(10)]

        verdict = RowValidator.default().validate(rows, today=TODAY)

        assert len(verdict.violations) == 10
        assert [v.row_index for v in verdict.violations] == list(range(10))
        assert {v.field for v in verdict.violations} == {"FirstName"}

    def test_placeholder_token_is_rejected(self):
        """Test the literal template value 'string' counts as empty."""
        verdict = RowValidator.default().validate([_row("P1", first="string")], today=TODAY)

        assert [(v.field, v.row_index) for v in verdict.violations] == [("FirstName", 0)]

    def test_multiple_violations_in_one_row(self):
        """Test all violations of a row are reported, in rule order."""
        verdict = RowValidator.default().validate([_row("", first="", last="string")], today=TODAY)

        assert [v.field for v in verdict.violations] == ["Identifier", "FirstName", "LastName"]

    def test_future_birth_date(self):
        """Test a birth date after today is a violation."""
        rows = [_row("P1", birth_date=date(2024, 6, 2)), _row("P2", birth_date=TODAY)]

        verdict = RowValidator.default().validate(rows, today=TODAY)

        assert [(v.row_index, v.field) for v in verdict.violations] == [(0, "BirthDate")]

    def test_invalid_email(self):
        """Test a malformed e-mail is a violation; absent e-mail is fine."""
        rows = [_row("P1", email="ana-at-example"), _row("P2", email=None)]

        verdict = RowValidator.default().validate(rows, today=TODAY)

        assert [(v.row_index, v.field) for v in verdict.violations] == [(0, "Email")]

    def test_duplicate_identifier_in_batch(self):
        """Test a repeated identifier is flagged on the repeat only."""
        rows = [_row("P1"), _row("P2"), _row("P1"), _row("P1")]

        verdict = RowValidator.default().validate(rows, today=TODAY)

        assert [(v.row_index, v.field) for v in verdict.violations] == [(2, "Identifier"), (3, "Identifier")]
        assert "row 0" in verdict.violations[0].message

    def test_input_is_not_mutated(self, patient_rows):
        """Test validation leaves the batch unchanged."""
        before = [row.model_dump() for row in patient_rows]
        RowValidator.default().validate(patient_rows, today=TODAY)
        assert [row.model_dump() for row in patient_rows] == before

    def test_patient_dto_inherits_patient_rules(self):
        """Test subclasses of PatientCsv use the patient rule set."""
        dto = PatientDto(identifier="P1", first_name="Ana", last_name="", resource_id="r1")

        verdict = RowValidator.default().validate([dto], today=TODAY)

        assert [v.field for v in verdict.violations] == ["LastName"]

    def test_observation_rules(self):
        """Test observations need a coding system."""
        dto = ObservationDto(code="718-7", value=Decimal("1"), effective="2024-01-01T00:00:00+01:00")

        verdict = RowValidator.default().validate([dto], today=TODAY)

        assert [v.field for v in verdict.violations] == ["system"]

    def test_unregistered_record_type(self):
        """Test records without a rule set are a programming error."""
        with pytest.raises(TypeError):
            RowValidator.default().validate([object()])

    def test_custom_rule_set(self):
        """Test any record type can register its own rules."""
        class Medication(BaseModel):
            code: str = ""

        validator = RowValidator()
        validator.register_rule_set(Medication, [required("code")])

        verdict = validator.validate([Medication(code="A1"), Medication()])

        assert verdict.violations == (Violation(1, "code", "'code' must not be empty."),)


class TestValidationVerdict:
    """Test suite for verdict reporting."""

    def test_raise_for_violations(self):
        """Test an invalid verdict raises ValidationError with all violations."""
        verdict = RowValidator.default().validate([_row("P1", last=""), _row("P2", first="")], today=TODAY)

        with pytest.raises(ValidationError) as exc_info:
            verdict.raise_for_violations()

        assert len(exc_info.value.violations) == 2
        assert exc_info.value.details()["violations"][0] == {
            "rowIndex": 0, "field": "LastName", "message": "'LastName' must not be empty.",
        }

    def test_valid_verdict_does_not_raise(self, patient_rows):
        """Test a valid verdict raises nothing."""
        RowValidator.default().validate(patient_rows, today=TODAY).raise_for_violations()

    def test_to_dict(self):
        """Test the boundary shape of a verdict."""
        verdict = RowValidator.default().validate([_row("P1", first="")], today=TODAY)

        assert verdict.to_dict() == {
            "isValid": False,
            "errors": [{"rowIndex": 0, "field": "FirstName", "message": "'FirstName' must not be empty."}],
        }
