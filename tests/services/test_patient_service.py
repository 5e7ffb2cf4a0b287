"""Tests for the patient facade service."""

import pytest

from fhir_bridge.domain.ports import ValidationError
from fhir_bridge.domain.records import PatientDto
from fhir_bridge.domain.resources import Patient
from fhir_bridge.domain.services import PatientService

CITIZENSHIPS = {"705": "Slovenia", "191": "Croatia"}


@pytest.fixture
def service(memory_store):
    """PatientService over an empty in-memory store."""
    return PatientService(memory_store, citizenship_lookup=CITIZENSHIPS.get)


def _dto(**overrides):
    values = {
        "identifier": "PAT0001", "first_name": "Ana", "last_name": "Novak",
        "birth_date": "1980-05-17", "gender": "female", "citizenship": "705",
        "marital_status": "S", "email": "ana.novak@example.com",
    }
    values.update(overrides)
    return PatientDto(**values)


class TestPatientService:
    """Test suite for PatientService."""

    @pytest.mark.asyncio
    async def test_create_patient(self, service, memory_store):
        """Test create stores the patient and returns the detail view."""
        detail = await service.create_patient(_dto())

        assert detail.resource_id
        assert detail.identifier == "PAT0001"
        assert detail.citizenship_name == "Slovenia"
        assert memory_store.count(Patient) == 1

    @pytest.mark.asyncio
    async def test_create_ignores_client_resource_id(self, service):
        """Test the store assigns the id of a new patient."""
        detail = await service.create_patient(_dto(resource_id="chosen-by-client"))
        assert detail.resource_id != "chosen-by-client"

    @pytest.mark.asyncio
    async def test_create_rejects_invalid_payload(self, service, memory_store):
        """Test placeholder names fail validation and nothing is written."""
        with pytest.raises(ValidationError) as exc_info:
            await service.create_patient(_dto(first_name="string"))

        assert [v.field for v in exc_info.value.violations] == ["FirstName"]
        assert memory_store.writes() == []

    @pytest.mark.asyncio
    async def test_update_patient(self, service):
        """Test update replaces the stored patient."""
        created = await service.create_patient(_dto())

        updated = await service.update_patient(_dto(resource_id=created.resource_id, last_name="Kos"))

        assert updated.resource_id == created.resource_id
        assert updated.last_name == "Kos"

    @pytest.mark.asyncio
    async def test_update_requires_resource_id(self, service):
        """Test an update payload without resource id is invalid."""
        with pytest.raises(ValidationError) as exc_info:
            await service.update_patient(_dto())
        assert exc_info.value.violations[0].field == "ResourceId"

    @pytest.mark.asyncio
    async def test_update_of_unknown_patient(self, service, memory_store):
        """Test updating a missing patient returns None and writes nothing."""
        assert await service.update_patient(_dto(resource_id="missing")) is None
        assert memory_store.writes() == []

    @pytest.mark.asyncio
    async def test_update_marital_status(self, service):
        """Test only the marital status changes."""
        created = await service.create_patient(_dto())

        updated = await service.update_marital_status(created.resource_id, "M")

        assert updated.marital_status == "M"
        assert updated.last_name == "Novak"
        assert await service.update_marital_status("missing", "M") is None

    @pytest.mark.asyncio
    async def test_lookups(self, service):
        """Test lookup by business identifier and by resource id."""
        created = await service.create_patient(_dto())

        by_identifier = await service.get_by_identifier("PAT0001")
        by_id = await service.get_by_resource_id(created.resource_id)

        assert by_identifier == by_id == created
        assert await service.get_by_identifier("PAT9999") is None
        assert await service.get_by_resource_id("missing") is None

    @pytest.mark.asyncio
    async def test_list_patients_uses_page_size(self, memory_store):
        """Test listing returns one page."""
        service = PatientService(memory_store, page_size=2)
        for number in range(3):
            await service.create_patient(_dto(identifier=f"PAT000{number}"))

        assert len(await service.list_patients()) == 2
        assert len(await service.list_patients(page_size=5)) == 3

    @pytest.mark.asyncio
    async def test_delete_by_identifier(self, service, memory_store):
        """Test delete removes the patient found by identifier."""
        await service.create_patient(_dto())

        assert await service.delete_by_identifier("PAT0001") is True
        assert await service.delete_by_identifier("PAT0001") is False
        assert memory_store.count(Patient) == 0

    @pytest.mark.asyncio
    async def test_existing_patients(self, service, patient_rows):
        """Test records are split into stored and new ones."""
        created = await service.create_patient(_dto(identifier="PAT0002"))

        result = await service.existing_patients(patient_rows)

        assert [r.identifier for r in result.new] == ["PAT0001", "PAT0003"]
        assert [(m.record.identifier, m.resource_id) for m in result.existing] == [
            ("PAT0002", created.resource_id),
        ]
