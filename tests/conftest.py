"""Shared fixtures for fhir-bridge tests."""

from datetime import date, datetime
from decimal import Decimal

import pytest

from fhir_bridge.adapters.stores import InMemoryResourceStore
from fhir_bridge.domain.converters import OBSERVATION_OFFSET
from fhir_bridge.domain.records import ObservationDto, PatientCsv


@pytest.fixture
def patient_rows():
    """Three valid patient rows."""
    return [
        PatientCsv(
            identifier="PAT0001", first_name="Ana", last_name="Novak",
            birth_date=date(1980, 5, 17), gender="female", citizenship="705",
            marital_status="M", phone="+38640111222", email="ana.novak@example.com",
        ),
        PatientCsv(
            identifier="PAT0002", first_name="Marko", last_name="Kos",
            birth_date=date(1975, 1, 2), gender="male", citizenship="191",
        ),
        PatientCsv(
            identifier="PAT0003", first_name="Eva", last_name="Zupan",
            birth_date=date(2001, 11, 30), gender="female",
        ),
    ]


@pytest.fixture
def hemoglobin_dto():
    """A hemoglobin measurement as a flat DTO."""
    return ObservationDto(
        id="obs-1",
        system="http://loinc.org",
        code="718-7",
        name="Hemoglobin [Mass/volume] in Blood",
        unit="g/dL",
        value=Decimal("13.5"),
        effective=datetime(2024, 3, 1, 10, 15, tzinfo=OBSERVATION_OFFSET),
        subject="Patient/abc",
    )


@pytest.fixture
def observation_json():
    """FHIR JSON of a hemoglobin observation with two codings."""
    return {
        "resourceType": "Observation",
        "id": "obs-42",
        "status": "final",
        "code": {
            "coding": [
                {"system": "http://loinc.org", "code": "718-7", "display": "Hemoglobin"},
                {"system": "http://snomed.info/sct", "code": "271026005"},
            ],
            "text": "Hemoglobin",
        },
        "subject": {"reference": "Patient/abc"},
        "effectiveDateTime": "2024-03-01T10:15:00Z",
        "valueQuantity": {
            "value": Decimal("13.5"),
            "unit": "g/dL",
            "system": "http://unitsofmeasure.org",
            "code": "g/dL",
        },
    }


@pytest.fixture
def memory_store():
    """Empty in-memory store."""
    return InMemoryResourceStore()
