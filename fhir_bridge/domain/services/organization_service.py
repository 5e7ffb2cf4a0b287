"""Organization facade service."""

import logging
from typing import Optional

from fhir_bridge.domain.converters import ORGANIZATION_IDENTIFIER_SYSTEM
from fhir_bridge.domain.ports import ResourceStorePort, ValidationError, Violation
from fhir_bridge.domain.resources import ContactPoint, Identifier, Organization
from fhir_bridge.domain.validation import is_blank

logger = logging.getLogger(__name__)


class OrganizationService:
    """Add and look up organizations by business identifier."""

    def __init__(
        self,
        store: ResourceStorePort,
        identifier_system: str = ORGANIZATION_IDENTIFIER_SYSTEM,
    ):
        self.store = store
        self.identifier_system = identifier_system

    async def add_organization(self, identifier: str, name: str, phone: Optional[str] = None) -> Organization:
        """Create an active organization.

        Raises:
            ValidationError: If identifier or name is empty
        """
        violations = [
            Violation(0, field, f"'{field}' must not be empty.")
            for field, value in (("Identifier", identifier), ("Name", name))
            if is_blank(value)
        ]
        if violations:
            raise ValidationError("Invalid organization", violations=violations)

        organization = Organization(
            identifier=[Identifier(system=self.identifier_system, value=identifier.strip())],
            active=True,
            name=name.strip(),
            telecom=[ContactPoint(system="phone", value=phone.strip(), use="work")] if not is_blank(phone) else [],
        )
        created = await self.store.create(organization)
        logger.info(f"Created Organization/{created.id}")
        return created

    async def get_by_identifier(self, identifier: str) -> Optional[Organization]:
        return await self.store.search_by_identifier(Organization, identifier)
