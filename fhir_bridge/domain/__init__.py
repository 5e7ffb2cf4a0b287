"""Domain layer for fhir-bridge.

This module contains the resource graph models, flat records, the error
taxonomy and the pure pipeline stages (validation, conversion,
reconciliation). Nothing here depends on infrastructure beyond Pydantic.
"""

from .records import ObservationDto, PatientCsv, PatientDetailDto, PatientDto
from .resources import Observation, Organization, Patient

__all__ = [
    "ObservationDto",
    "PatientCsv",
    "PatientDetailDto",
    "PatientDto",
    "Observation",
    "Organization",
    "Patient",
]
