"""Domain Services.

This package contains the sync orchestrator and the patient, observation,
organization and medication facades. Each receives its resource store explicitly.
"""

from fhir_bridge.domain.services.medication_service import MedicationService
from fhir_bridge.domain.services.observation_service import ObservationService
from fhir_bridge.domain.services.organization_service import OrganizationService
from fhir_bridge.domain.services.patient_service import PatientService
from fhir_bridge.domain.services.sync_orchestrator import (
    ConversionPolicy,
    SyncError,
    SyncOrchestrator,
    SyncReport,
    SyncStage,
)

__all__ = [
    "ConversionPolicy",
    "MedicationService",
    "ObservationService",
    "OrganizationService",
    "PatientService",
    "SyncError",
    "SyncOrchestrator",
    "SyncReport",
    "SyncStage",
]
