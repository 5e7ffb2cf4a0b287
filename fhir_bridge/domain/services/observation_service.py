"""Observation facade service.

Lists and records the blood count measurements the API exposes per patient:
hemoglobin, red blood cell count and white blood cell count.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from fhir_bridge.domain.converters import (
    OBSERVATION_IDENTIFIER_SYSTEM,
    OBSERVATION_OFFSET,
    dto_to_observation,
    observation_to_dto,
)
from fhir_bridge.domain.ports import ConversionError, ResourceStorePort
from fhir_bridge.domain.records import ObservationDto
from fhir_bridge.domain.resources import Observation, Patient

logger = logging.getLogger(__name__)

LOINC_SYSTEM = "http://loinc.org"


@dataclass(frozen=True)
class LabTest:
    """A LOINC-coded quantity measurement."""
    code: str
    display: str
    unit: str

    @property
    def search_token(self) -> str:
        return f"{LOINC_SYSTEM}|{self.code}"


HEMOGLOBIN = LabTest("718-7", "Hemoglobin [Mass/volume] in Blood", "g/dL")
RED_BLOOD_CELLS = LabTest("789-8", "Erythrocytes [#/volume] in Blood by Automated count", "10*6/uL")
WHITE_BLOOD_CELLS = LabTest("6690-2", "Leukocytes [#/volume] in Blood by Automated count", "10*3/uL")


def _now() -> datetime:
    return datetime.now(OBSERVATION_OFFSET)


class ObservationService:
    """Per-patient laboratory observations.

    Parameters:
        store: Resource store
        identifier_system: System for identifiers of new observations
        clock: Returns the time stamped onto new measurements
    """

    def __init__(
        self,
        store: ResourceStorePort,
        identifier_system: str = OBSERVATION_IDENTIFIER_SYSTEM,
        clock: Callable[[], datetime] = _now,
    ):
        self.store = store
        self.identifier_system = identifier_system
        self.clock = clock

    async def observations_for_patient(
        self, patient_id: str, lab_test: Optional[LabTest] = None
    ) -> list[ObservationDto]:
        """Quantity observations of a patient, optionally for one lab test.

        Observations that are not coded quantities are left out of the
        unfiltered list; for a lab test they are a ConversionError.
        """
        params = {"subject": f"Patient/{patient_id}"}
        if lab_test is not None:
            params["code"] = lab_test.search_token

        dtos = []
        for observation in await self.store.search(Observation, params):
            try:
                dtos.append(observation_to_dto(observation))
            except ConversionError as e:
                if lab_test is not None:
                    raise
                logger.debug(f"Skipping Observation/{observation.id}: {e}")
        return dtos

    async def hemoglobin(self, patient_id: str) -> list[ObservationDto]:
        return await self.observations_for_patient(patient_id, HEMOGLOBIN)

    async def red_blood_cells(self, patient_id: str) -> list[ObservationDto]:
        return await self.observations_for_patient(patient_id, RED_BLOOD_CELLS)

    async def white_blood_cells(self, patient_id: str) -> list[ObservationDto]:
        return await self.observations_for_patient(patient_id, WHITE_BLOOD_CELLS)

    async def add_measurement(
        self,
        patient_id: str,
        lab_test: LabTest,
        value: Decimal,
        effective: Optional[datetime] = None,
    ) -> Optional[ObservationDto]:
        """Record a final laboratory observation for an existing patient.

        Returns:
            The stored observation, or None when the patient does not exist
        """
        if await self.store.read(Patient, patient_id) is None:
            return None

        dto = ObservationDto(
            id=uuid.uuid4().hex,
            system=LOINC_SYSTEM,
            code=lab_test.code,
            name=lab_test.display,
            unit=lab_test.unit,
            value=Decimal(str(value)),
            effective=effective or self.clock(),
            subject=f"Patient/{patient_id}",
        )
        observation = dto_to_observation(dto, self.identifier_system).model_copy(update={"id": None})
        created = await self.store.create(observation)
        logger.info(f"Recorded {lab_test.code} Observation/{created.id} for Patient/{patient_id}")
        return observation_to_dto(created)

    async def add_hemoglobin(self, patient_id: str, value: Decimal) -> Optional[ObservationDto]:
        return await self.add_measurement(patient_id, HEMOGLOBIN, value)

    async def add_red_blood_cells(self, patient_id: str, value: Decimal) -> Optional[ObservationDto]:
        return await self.add_measurement(patient_id, RED_BLOOD_CELLS, value)

    async def add_white_blood_cells(self, patient_id: str, value: Decimal) -> Optional[ObservationDto]:
        return await self.add_measurement(patient_id, WHITE_BLOOD_CELLS, value)
