"""Resource Converters.

Bidirectional mapping between flat records/DTOs and the nested clinical
resource graph. Two resource families are mapped: patients (demographics)
and coded quantity observations. Medication statements are only flattened,
for the per-patient medication list.

Security Impact:
    - Converters are pure functions; nothing is logged except resource ids
    - Unknown codes are passed through verbatim; code-system validation is
      the remote store's responsibility

Architecture:
    - Stateless, total functions over one direction of one family each
    - ``convert_to_flat`` / ``convert_to_resource`` dispatch on the input
      type (functools.singledispatch); lists map element-wise, preserving
      order, and an empty list converts to an empty list
    - Flatten and unflatten are not byte-for-byte inverses: observation
      timestamps are normalized to a fixed +01:00 offset
"""

import logging
from datetime import date, datetime, timedelta, timezone
from functools import singledispatch
from typing import Any, Callable, Optional

from fhir_bridge.domain.ports import ConversionError
from fhir_bridge.domain.records import MedicationDto, ObservationDto, PatientCsv, PatientDetailDto, PatientDto
from fhir_bridge.domain.resources import (
    CodeableConcept,
    Coding,
    ContactPoint,
    DateTimeEffective,
    Extension,
    HumanName,
    Identifier,
    MedicationStatement,
    Observation,
    Patient,
    Quantity,
    QuantityValue,
    Reference,
)
from fhir_bridge.domain.validation import is_blank

logger = logging.getLogger(__name__)

PATIENT_IDENTIFIER_SYSTEM = "http://fhir-bridge.local/patient-identifier"
OBSERVATION_IDENTIFIER_SYSTEM = "http://fhir-bridge.local/observation-identifier"
ORGANIZATION_IDENTIFIER_SYSTEM = "http://fhir-bridge.local/organization-identifier"
MARITAL_STATUS_SYSTEM = "http://terminology.hl7.org/CodeSystem/v3-MaritalStatus"
CITIZENSHIP_EXTENSION_URL = "http://hl7.org/fhir/StructureDefinition/patient-citizenship"
CITIZENSHIP_SYSTEM = "urn:iso:std:iso:3166"
OBSERVATION_CATEGORY_SYSTEM = "http://terminology.hl7.org/CodeSystem/observation-category"
UCUM_SYSTEM = "http://unitsofmeasure.org"

# Observation timestamps are stored at a fixed CET offset (no DST handling).
OBSERVATION_OFFSET = timezone(timedelta(hours=1))

CitizenshipLookup = Callable[[str], Optional[str]]


def _clean(value: Optional[str]) -> Optional[str]:
    return None if is_blank(value) else value.strip()


def to_fixed_offset(value: str, offset: timezone = OBSERVATION_OFFSET) -> datetime:
    """Materialize a FHIR dateTime string at a fixed offset.

    Partial dates (``YYYY``, ``YYYY-MM``, ``YYYY-MM-DD``) resolve to the start
    of the period. Values without an offset are read as being at ``offset``;
    values with an offset are converted to it.

    Raises:
        ValueError: If the string is not a FHIR dateTime
    """
    text = value.strip()
    if len(text) == 4:
        moment = datetime(int(text), 1, 1)
    elif len(text) == 7:
        moment = datetime(int(text[:4]), int(text[5:7]), 1)
    elif len(text) == 10:
        moment = datetime.combine(date.fromisoformat(text), datetime.min.time())
    else:
        moment = datetime.fromisoformat(text.replace("Z", "+00:00"))

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=offset)
    return moment.astimezone(offset)


# ============================================================================
# Observation <-> ObservationDto
# ============================================================================

def observation_to_dto(observation: Observation) -> ObservationDto:
    """Flatten a coded quantity observation.

    Raises:
        ConversionError: If the observation has no coding, its value is not a
            quantity, or its effective time is not a point in time
    """
    resource_id = observation.id or observation.business_identifier()
    logger.debug(f"Converting Observation {resource_id} to DTO")

    coding = observation.code.first_coding()
    if coding is None or not coding.code:
        raise ConversionError(
            "Observation has no coding", "Observation", resource_id, field="code.coding"
        )

    value = observation.value
    if not isinstance(value, QuantityValue):
        kind = value.kind if value is not None else "missing"
        raise ConversionError(
            f"Observation value must be a quantity, got {kind}",
            "Observation", resource_id, field="value[x]",
        )
    if value.quantity.value is None:
        raise ConversionError(
            "Observation quantity has no value", "Observation", resource_id, field="valueQuantity.value"
        )

    effective = observation.effective
    if not isinstance(effective, DateTimeEffective):
        kind = effective.kind if effective is not None else "missing"
        raise ConversionError(
            f"Observation effective time must be a dateTime, got {kind}",
            "Observation", resource_id, field="effective[x]",
        )
    try:
        moment = to_fixed_offset(effective.value)
    except ValueError as e:
        raise ConversionError(
            f"Invalid effective dateTime '{effective.value}'",
            "Observation", resource_id, field="effectiveDateTime",
        ) from e

    return ObservationDto(
        id=resource_id,
        system=coding.system,
        code=coding.code,
        name=observation.code.text or coding.display,
        unit=value.quantity.code or value.quantity.unit,
        value=value.quantity.value,
        effective=moment,
        subject=observation.subject.reference if observation.subject else None,
    )


def dto_to_observation(
    dto: ObservationDto,
    identifier_system: str = OBSERVATION_IDENTIFIER_SYSTEM,
    category: str = "laboratory",
) -> Observation:
    """Build a final observation carrying one coding and one quantity."""
    return Observation(
        id=dto.id,
        identifier=[Identifier(system=identifier_system, value=dto.id)] if dto.id else [],
        status="final",
        category=[CodeableConcept(coding=[Coding(system=OBSERVATION_CATEGORY_SYSTEM, code=category)])],
        code=CodeableConcept(
            coding=[Coding(system=dto.system, code=dto.code, display=dto.name)],
            text=dto.name,
        ),
        subject=Reference(reference=dto.subject) if dto.subject else None,
        effective=DateTimeEffective(value=dto.effective.isoformat()),
        value=QuantityValue(quantity=Quantity(
            value=dto.value,
            unit=dto.unit,
            system=UCUM_SYSTEM if dto.unit else None,
            code=dto.unit,
        )),
    )


# ============================================================================
# Flat patient records <-> Patient
# ============================================================================

def citizenship_extension(code: str) -> Extension:
    return Extension(
        url=CITIZENSHIP_EXTENSION_URL,
        extension=[Extension(
            url="code",
            value_codeable_concept=CodeableConcept(coding=[Coding(system=CITIZENSHIP_SYSTEM, code=code)]),
        )],
    )


def patient_record_to_resource(
    record: PatientCsv,
    identifier_system: str = PATIENT_IDENTIFIER_SYSTEM,
) -> Patient:
    """Map a flat patient record onto the Patient resource graph.

    PatientDto's ``resource_id`` becomes the resource id so the result can
    be used for a full replace.

    Raises:
        ConversionError: If the record has no business identifier
    """
    identifier = _clean(record.identifier)
    if identifier is None:
        raise ConversionError("Patient record has no identifier", "Patient", field="Identifier")

    telecom = []
    if _clean(record.phone):
        telecom.append(ContactPoint(system="phone", value=_clean(record.phone), use="home"))
    if _clean(record.email):
        telecom.append(ContactPoint(system="email", value=_clean(record.email), use="home"))

    given = _clean(record.first_name)
    marital_status = _clean(record.marital_status)
    citizenship = _clean(record.citizenship)

    return Patient(
        id=getattr(record, "resource_id", None),
        identifier=[Identifier(use="official", system=identifier_system, value=identifier)],
        active=True,
        name=[HumanName(use="official", family=_clean(record.last_name), given=[given] if given else [])],
        telecom=telecom,
        gender=_clean(record.gender),
        birth_date=record.birth_date.isoformat() if record.birth_date else None,
        marital_status=(
            CodeableConcept(coding=[Coding(system=MARITAL_STATUS_SYSTEM, code=marital_status)])
            if marital_status else None
        ),
        extension=[citizenship_extension(citizenship)] if citizenship else [],
    )


def patient_citizenship_code(patient: Patient) -> Optional[str]:
    extension = patient.find_extension(CITIZENSHIP_EXTENSION_URL)
    code_extension = extension.find("code") if extension else None
    if code_extension is None or code_extension.value_codeable_concept is None:
        return None
    coding = code_extension.value_codeable_concept.first_coding()
    return coding.code if coding else None


def patient_to_detail_dto(
    patient: Patient,
    citizenship_lookup: Optional[CitizenshipLookup] = None,
    identifier_system: Optional[str] = None,
) -> PatientDetailDto:
    """Flatten a Patient resource for the API layer."""
    name = patient.official_name()
    citizenship = patient_citizenship_code(patient)
    marital = patient.marital_status.first_coding() if patient.marital_status else None

    return PatientDetailDto(
        resource_id=patient.id,
        identifier=patient.business_identifier(identifier_system) or patient.business_identifier(),
        first_name=" ".join(name.given) if name and name.given else None,
        last_name=name.family if name else None,
        birth_date=patient.birth_date,
        gender=patient.gender,
        citizenship=citizenship,
        citizenship_name=citizenship_lookup(citizenship) if citizenship and citizenship_lookup else None,
        marital_status=marital.code if marital else None,
        phone=patient.telecom_value("phone"),
        email=patient.telecom_value("email"),
    )


# ============================================================================
# MedicationStatement -> flat
# ============================================================================

def medication_statement_to_dto(statement: MedicationStatement) -> MedicationDto:
    """Flatten a statement; the first coding names the medication."""
    medication = statement.medication or CodeableConcept()
    coding = medication.first_coding()
    dosage = "; ".join(d.text for d in statement.dosage if d.text)
    return MedicationDto(
        id=statement.id,
        system=coding.system if coding else None,
        code=coding.code if coding else None,
        name=medication.text or (coding.display if coding else None),
        status=statement.status,
        effective=statement.effective_date_time,
        dosage=dosage or None,
    )


# ============================================================================
# Dispatching entry points
# ============================================================================

@singledispatch
def convert_to_flat(resource: Any, **options: Any) -> Any:
    """Flatten a resource (or a list of resources) into DTOs."""
    raise ConversionError(f"No flat representation for {type(resource).__name__}")


@convert_to_flat.register
def _(resource: Observation, **options: Any) -> ObservationDto:
    return observation_to_dto(resource)


@convert_to_flat.register
def _(resource: MedicationStatement, **options: Any) -> MedicationDto:
    return medication_statement_to_dto(resource)


@convert_to_flat.register
def _(resource: Patient, **options: Any) -> PatientDetailDto:
    return patient_to_detail_dto(resource, **options)


@convert_to_flat.register(list)
@convert_to_flat.register(tuple)
def _(resources, **options: Any) -> list:
    return [convert_to_flat(resource, **options) for resource in resources]


@singledispatch
def convert_to_resource(record: Any, **options: Any) -> Any:
    """Build the resource graph for a flat record (or a list of them)."""
    raise ConversionError(f"No resource mapping for {type(record).__name__}")


@convert_to_resource.register
def _(record: PatientCsv, **options: Any) -> Patient:
    return patient_record_to_resource(record, **options)


@convert_to_resource.register
def _(record: PatientDto, **options: Any) -> Patient:
    return patient_record_to_resource(record, **options)


@convert_to_resource.register
def _(record: ObservationDto, **options: Any) -> Observation:
    return dto_to_observation(record, **options)


@convert_to_resource.register(list)
@convert_to_resource.register(tuple)
def _(records, **options: Any) -> list:
    return [convert_to_resource(record, **options) for record in records]
