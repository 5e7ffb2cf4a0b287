"""Tests for the medication facade service."""

import pytest

from fhir_bridge.domain.converters import convert_to_flat, convert_to_resource
from fhir_bridge.domain.resources import MedicationStatement
from fhir_bridge.domain.services import MedicationService

RXNORM = "http://www.nlm.nih.gov/research/umls/rxnorm"


def _statement(patient_id, code, display, **extra):
    return MedicationStatement.from_fhir({
        "resourceType": "MedicationStatement",
        "status": "active",
        "medicationCodeableConcept": {"coding": [{"system": RXNORM, "code": code, "display": display}]},
        "subject": {"reference": f"Patient/{patient_id}"},
        **extra,
    })


class TestMedicationService:
    """Test suite for MedicationService."""

    @pytest.mark.asyncio
    async def test_medications_for_patient(self, memory_store, patient_rows):
        """Test only the patient's own statements are listed, flattened."""
        patient = await memory_store.create(convert_to_resource(patient_rows[0]))
        other = await memory_store.create(convert_to_resource(patient_rows[1]))
        await memory_store.create(_statement(
            patient.id, "197361", "Amlodipine 5 MG Oral Tablet",
            effectiveDateTime="2024-01-15", dosage=[{"text": "1 tablet daily"}],
        ))
        await memory_store.create(_statement(other.id, "860975", "Metformin 500 MG Oral Tablet"))

        medications = await MedicationService(memory_store).medications_for_patient(patient.id)

        assert len(medications) == 1
        assert medications[0].system == RXNORM
        assert medications[0].code == "197361"
        assert medications[0].name == "Amlodipine 5 MG Oral Tablet"
        assert medications[0].status == "active"
        assert medications[0].effective == "2024-01-15"
        assert medications[0].dosage == "1 tablet daily"

    @pytest.mark.asyncio
    async def test_patient_without_medications(self, memory_store, patient_rows):
        """Test an existing patient with no statements gets an empty list."""
        patient = await memory_store.create(convert_to_resource(patient_rows[0]))
        assert await MedicationService(memory_store).medications_for_patient(patient.id) == []

    @pytest.mark.asyncio
    async def test_unknown_patient(self, memory_store):
        """Test an unknown patient is None and no search is issued."""
        assert await MedicationService(memory_store).medications_for_patient("missing") is None
        assert [op[0] for op in memory_store.operations] == ["read"]


class TestMedicationStatementFlattening:
    """Test suite for MedicationStatement -> MedicationDto."""

    def test_referenced_medication_has_no_code(self):
        """Test a statement pointing to a Medication resource flattens without a code."""
        statement = MedicationStatement.from_fhir({
            "resourceType": "MedicationStatement",
            "id": "ms-1",
            "status": "completed",
            "medicationReference": {"reference": "Medication/m1"},
        })

        dto = convert_to_flat(statement)

        assert dto.id == "ms-1"
        assert dto.status == "completed"
        assert (dto.code, dto.name, dto.dosage) == (None, None, None)

    def test_text_wins_over_display(self):
        """Test the concept text names the medication when present."""
        statement = _statement("p1", "197361", "Amlodipine 5 MG Oral Tablet")
        statement.medication.text = "Amlodipine"

        assert convert_to_flat(statement).name == "Amlodipine"
