"""Patient facade service.

Single-record patient operations used by the API layer: create, full
replace, marital status change, lookups, listing and deletion.

Security Impact:
    - Inbound payloads pass the same RowValidator rules as CSV uploads
    - Only resource ids and business identifiers are logged
"""

import logging
from typing import Optional, Sequence

from fhir_bridge.domain.converters import (
    MARITAL_STATUS_SYSTEM,
    PATIENT_IDENTIFIER_SYSTEM,
    CitizenshipLookup,
    patient_record_to_resource,
    patient_to_detail_dto,
)
from fhir_bridge.domain.ports import ResourceStorePort, ValidationError, Violation
from fhir_bridge.domain.reconciliation import ReconciliationResult, reconcile
from fhir_bridge.domain.records import PatientCsv, PatientDetailDto, PatientDto
from fhir_bridge.domain.resources import CodeableConcept, Coding, Patient
from fhir_bridge.domain.validation import RowValidator, is_blank

logger = logging.getLogger(__name__)


class PatientService:
    """Patient operations against a resource store.

    Not-found outcomes are returned as ``None`` (or False for deletes).
    """

    def __init__(
        self,
        store: ResourceStorePort,
        identifier_system: str = PATIENT_IDENTIFIER_SYSTEM,
        citizenship_lookup: Optional[CitizenshipLookup] = None,
        validator: Optional[RowValidator] = None,
        page_size: int = 10,
    ):
        self.store = store
        self.identifier_system = identifier_system
        self.citizenship_lookup = citizenship_lookup
        self.validator = validator or RowValidator.default()
        self.page_size = page_size

    def _to_detail(self, patient: Patient) -> PatientDetailDto:
        return patient_to_detail_dto(patient, self.citizenship_lookup, self.identifier_system)

    async def create_patient(self, dto: PatientDto) -> PatientDetailDto:
        """Create a new patient.

        Raises:
            ValidationError: If the payload breaks a patient rule
            StoreError: If the store rejects the create
        """
        self.validator.validate([dto]).raise_for_violations()
        resource = patient_record_to_resource(dto, self.identifier_system).model_copy(update={"id": None})
        created = await self.store.create(resource)
        logger.info(f"Created Patient/{created.id}")
        return self._to_detail(created)

    async def update_patient(self, dto: PatientDto) -> Optional[PatientDetailDto]:
        """Replace an existing patient with the payload.

        Raises:
            ValidationError: If the payload breaks a rule or has no resource id
        """
        self.validator.validate([dto]).raise_for_violations()
        if is_blank(dto.resource_id):
            raise ValidationError(
                "Update requires a resource id",
                violations=[Violation(0, "ResourceId", "'ResourceId' must not be empty.")],
            )
        if await self.store.read(Patient, dto.resource_id) is None:
            return None

        resource = patient_record_to_resource(dto, self.identifier_system)
        updated = await self.store.update(dto.resource_id, resource)
        logger.info(f"Updated Patient/{dto.resource_id}")
        return self._to_detail(updated)

    async def update_marital_status(self, resource_id: str, marital_status: str) -> Optional[PatientDetailDto]:
        patient = await self.store.read(Patient, resource_id)
        if patient is None:
            return None
        concept = CodeableConcept(coding=[Coding(system=MARITAL_STATUS_SYSTEM, code=marital_status)])
        updated = await self.store.update(resource_id, patient.model_copy(update={"marital_status": concept}))
        return self._to_detail(updated)

    async def get_by_identifier(self, identifier: str) -> Optional[PatientDetailDto]:
        patient = await self.store.search_by_identifier(Patient, identifier)
        return self._to_detail(patient) if patient is not None else None

    async def get_by_resource_id(self, resource_id: str) -> Optional[PatientDetailDto]:
        patient = await self.store.read(Patient, resource_id)
        return self._to_detail(patient) if patient is not None else None

    async def list_patients(self, page_size: Optional[int] = None) -> list[PatientDetailDto]:
        patients = await self.store.list_resources(Patient, page_size or self.page_size)
        return [self._to_detail(p) for p in patients]

    async def delete_by_identifier(self, identifier: str) -> bool:
        patient = await self.store.search_by_identifier(Patient, identifier)
        if patient is None or patient.id is None:
            return False
        deleted = await self.store.delete(Patient, patient.id)
        if deleted:
            logger.info(f"Deleted Patient/{patient.id}")
        return deleted

    async def existing_patients(self, records: Sequence[PatientCsv]) -> ReconciliationResult[PatientCsv]:
        """Split records into those already stored and those that are new."""
        async def lookup(identifier: str) -> Optional[str]:
            patient = await self.store.search_by_identifier(Patient, identifier)
            return patient.id if patient is not None else None

        return await reconcile(records, lookup)
