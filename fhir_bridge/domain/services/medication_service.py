"""Medication facade service."""

import logging
from typing import Optional

from fhir_bridge.domain.converters import medication_statement_to_dto
from fhir_bridge.domain.ports import ResourceStorePort
from fhir_bridge.domain.records import MedicationDto
from fhir_bridge.domain.resources import MedicationStatement, Patient

logger = logging.getLogger(__name__)


class MedicationService:
    """Per-patient medication lists."""

    def __init__(self, store: ResourceStorePort):
        self.store = store

    async def medications_for_patient(self, patient_id: str) -> Optional[list[MedicationDto]]:
        """Medication statements whose subject is the patient.

        Returns:
            The flattened statements in store order, or None when the
            patient does not exist
        """
        if await self.store.read(Patient, patient_id) is None:
            logger.info(f"Medications requested for unknown Patient/{patient_id}")
            return None
        statements = await self.store.search(MedicationStatement, {"subject": f"Patient/{patient_id}"})
        return [medication_statement_to_dto(statement) for statement in statements]
