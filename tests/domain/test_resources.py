"""Unit tests for the resource graph models and their FHIR JSON mapping."""

from decimal import Decimal

import pytest
import simplejson

from fhir_bridge.domain.ports import ConversionError
from fhir_bridge.domain.resources import (
    DateTimeEffective,
    Observation,
    Patient,
    PeriodEffective,
    QuantityValue,
    StringValue,
)


class TestObservationChoiceElements:
    """Test suite for value[x] / effective[x] tagged unions."""

    def test_value_quantity_becomes_quantity_variant(self, observation_json):
        """Test valueQuantity is parsed into the quantity variant."""
        observation = Observation.from_fhir(observation_json)

        assert isinstance(observation.value, QuantityValue)
        assert observation.value.quantity.value == Decimal("13.5")
        assert isinstance(observation.effective, DateTimeEffective)
        assert observation.effective.value == "2024-03-01T10:15:00Z"

    def test_value_string_becomes_string_variant(self, observation_json):
        """Test valueString is parsed into the string variant."""
        del observation_json["valueQuantity"]
        observation_json["valueString"] = "positive"

        observation = Observation.from_fhir(observation_json)

        assert isinstance(observation.value, StringValue)
        assert observation.value.value == "positive"

    def test_effective_period_becomes_period_variant(self, observation_json):
        """Test effectivePeriod is parsed into the period variant."""
        del observation_json["effectiveDateTime"]
        observation_json["effectivePeriod"] = {"start": "2024-03-01", "end": "2024-03-02"}

        observation = Observation.from_fhir(observation_json)

        assert isinstance(observation.effective, PeriodEffective)
        assert observation.effective.period.start == "2024-03-01"

    def test_two_value_elements_are_rejected(self, observation_json):
        """Test a resource carrying two value[x] elements is malformed."""
        observation_json["valueString"] = "positive"

        with pytest.raises(ConversionError) as exc_info:
            Observation.from_fhir(observation_json)
        assert exc_info.value.resource_id == "obs-42"

    def test_missing_value_is_none(self, observation_json):
        """Test an observation without value[x] parses with value None."""
        del observation_json["valueQuantity"]
        assert Observation.from_fhir(observation_json).value is None

    def test_to_fhir_writes_choice_keys(self, observation_json):
        """Test serialization restores the FHIR choice element keys."""
        body = Observation.from_fhir(observation_json).to_fhir()

        assert body["resourceType"] == "Observation"
        assert body["valueQuantity"]["value"] == 13.5
        assert body["effectiveDateTime"] == "2024-03-01T10:15:00Z"
        assert "value" not in body
        assert "effective" not in body

    def test_json_round_trip_keeps_decimal_value(self, observation_json):
        """Test the quantity value survives a JSON round trip exactly."""
        body = Observation.from_fhir(observation_json).to_fhir()
        encoded = simplejson.dumps(body, use_decimal=True)
        reparsed = Observation.from_fhir(simplejson.loads(encoded, use_decimal=True))

        assert reparsed.value.quantity.value == Decimal("13.5")

    def test_long_decimal_is_not_rounded(self, observation_json):
        """Test a value with more digits than a float holds is kept exactly."""
        observation_json["valueQuantity"]["value"] = Decimal("0.12345678901234567890")

        body = Observation.from_fhir(observation_json).to_fhir()
        encoded = simplejson.dumps(body, use_decimal=True)

        assert body["valueQuantity"]["value"] == Decimal("0.12345678901234567890")
        assert '"value": 0.12345678901234567890' in encoded

    def test_integral_quantity_serializes_as_int(self, observation_json):
        """Test whole-number quantities are written without a fraction."""
        observation_json["valueQuantity"]["value"] = Decimal("14")
        body = Observation.from_fhir(observation_json).to_fhir()
        assert body["valueQuantity"]["value"] == 14
        assert isinstance(body["valueQuantity"]["value"], int)


class TestResourceParsing:
    """Test suite for resource type checks and common helpers."""

    def test_wrong_resource_type_is_rejected(self, observation_json):
        """Test parsing an Observation as a Patient fails."""
        with pytest.raises(ConversionError) as exc_info:
            Patient.from_fhir(observation_json)
        assert exc_info.value.field == "resourceType"

    def test_patient_aliases_and_unknown_keys(self):
        """Test camelCase aliases are read and unknown elements ignored."""
        patient = Patient.from_fhir({
            "resourceType": "Patient",
            "id": "p1",
            "birthDate": "1980-05-17",
            "maritalStatus": {"coding": [{"code": "M"}]},
            "address": [{"city": "Ljubljana"}],
        })

        assert patient.birth_date == "1980-05-17"
        assert patient.marital_status.first_coding().code == "M"

    def test_business_identifier_by_system(self):
        """Test identifier lookup can be restricted to a system."""
        patient = Patient.from_fhir({
            "resourceType": "Patient",
            "identifier": [
                {"system": "urn:other", "value": "X-1"},
                {"system": "urn:mrn", "value": "PAT0001"},
            ],
        })

        assert patient.business_identifier() == "X-1"
        assert patient.business_identifier("urn:mrn") == "PAT0001"
        assert patient.business_identifier("urn:missing") is None

    def test_to_fhir_prunes_empty_elements(self):
        """Test empty lists and objects are not serialized."""
        body = Patient(id="p1", gender="female").to_fhir()

        assert body == {"resourceType": "Patient", "id": "p1", "gender": "female"}

    def test_nested_extension_lookup(self):
        """Test nested extensions can be found by url."""
        patient = Patient.from_fhir({
            "resourceType": "Patient",
            "extension": [{
                "url": "http://hl7.org/fhir/StructureDefinition/patient-citizenship",
                "extension": [{"url": "code", "valueCodeableConcept": {"coding": [{"code": "705"}]}}],
            }],
        })

        outer = patient.find_extension("http://hl7.org/fhir/StructureDefinition/patient-citizenship")
        assert outer.find("code").value_codeable_concept.first_coding().code == "705"
        assert patient.find_extension("urn:none") is None
