"""Tests for the organization facade service."""

import pytest

from fhir_bridge.domain.converters import ORGANIZATION_IDENTIFIER_SYSTEM
from fhir_bridge.domain.ports import ValidationError
from fhir_bridge.domain.resources import Organization
from fhir_bridge.domain.services import OrganizationService


class TestOrganizationService:
    """Test suite for OrganizationService."""

    @pytest.mark.asyncio
    async def test_add_organization(self, memory_store):
        """Test an active organization is created with its identifier and phone."""
        service = OrganizationService(memory_store)

        created = await service.add_organization(" ORG1 ", "General Hospital", phone="+3861000000")

        assert created.id
        assert created.active is True
        assert created.name == "General Hospital"
        assert created.identifier[0].system == ORGANIZATION_IDENTIFIER_SYSTEM
        assert created.identifier[0].value == "ORG1"
        assert created.telecom[0].value == "+3861000000"

    @pytest.mark.asyncio
    async def test_phone_is_optional(self, memory_store):
        """Test an organization without phone has no telecom."""
        created = await OrganizationService(memory_store).add_organization("ORG1", "Clinic")
        assert created.telecom == []

    @pytest.mark.asyncio
    async def test_blank_fields_are_rejected(self, memory_store):
        """Test identifier and name are both required."""
        with pytest.raises(ValidationError) as exc_info:
            await OrganizationService(memory_store).add_organization("", "string")

        assert [v.field for v in exc_info.value.violations] == ["Identifier", "Name"]
        assert memory_store.count(Organization) == 0

    @pytest.mark.asyncio
    async def test_get_by_identifier(self, memory_store):
        """Test lookup by business identifier."""
        service = OrganizationService(memory_store)
        created = await service.add_organization("ORG1", "Clinic")

        found = await service.get_by_identifier("ORG1")

        assert found.id == created.id
        assert await service.get_by_identifier("ORG2") is None
