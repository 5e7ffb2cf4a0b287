"""Flat Record and DTO Definitions.

Single-level shapes used at the edges of the pipeline: rows parsed from
uploaded CSV files, payloads received from the API layer and the flattened
objects returned to it.

Security Impact:
    - Records carry PII (names, birth dates, contact data); log only
      ``business_identifier`` values and counts
    - Pydantic enforces types at runtime; rule-level checks live in the
      RowValidator so that every row can be reported, not just the first

Architecture:
    - Pure domain models with zero infrastructure dependencies
    - Field aliases are the external column/property names (``LastName``,
      ``resourceId``); either alias or field name is accepted on input
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class FlatRecord(BaseModel):
    """Common base for inbound flat records."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True, frozen=True)

    @property
    def business_identifier(self) -> Optional[str]:
        """Identifier used for reconciliation; None when the record has none."""
        return None

    @classmethod
    def external_name(cls, field_name: str) -> str:
        """Column/property name the outside world uses for a field."""
        field = cls.model_fields.get(field_name)
        return (field.alias if field and field.alias else field_name)


class PatientCsv(FlatRecord):
    """One row of an uploaded patients CSV file.

    Parameters:
        identifier: Business identifier (e.g. ``PAT0001``)
        first_name: Given name (PII)
        last_name: Family name (PII)
        birth_date: Date of birth (PII)
        gender: Administrative sex code (``male``, ``female``, ``other``, ``unknown``)
        citizenship: Citizenship code from the reference table
        marital_status: HL7 v3 MaritalStatus code (``M``, ``S``, ``D``, ...)
        phone: Contact phone (PII)
        email: Contact e-mail (PII)
    """

    identifier: Optional[str] = Field(None, alias="Identifier")
    first_name: Optional[str] = Field(None, alias="FirstName")
    last_name: Optional[str] = Field(None, alias="LastName")
    birth_date: Optional[date] = Field(None, alias="BirthDate")
    gender: Optional[str] = Field(None, alias="Gender")
    citizenship: Optional[str] = Field(None, alias="Citizenship")
    marital_status: Optional[str] = Field(None, alias="MaritalStatus")
    phone: Optional[str] = Field(None, alias="Phone")
    email: Optional[str] = Field(None, alias="Email")

    @property
    def business_identifier(self) -> Optional[str]:
        return self.identifier


class PatientDto(PatientCsv):
    """Patient payload received from the API layer for create/update.

    ``resource_id`` is only required when the payload updates an existing
    resource.
    """

    resource_id: Optional[str] = Field(None, alias="ResourceId")


class PatientDetailDto(BaseModel):
    """Flattened patient returned to the API layer."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    resource_id: Optional[str] = None
    identifier: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    birth_date: Optional[str] = None
    gender: Optional[str] = None
    citizenship: Optional[str] = None
    citizenship_name: Optional[str] = None
    marital_status: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


class ObservationDto(BaseModel):
    """Flattened coded measurement.

    Parameters:
        id: Observation identifier
        system: Coding system URI (e.g. ``http://loinc.org``)
        code: Code within the system
        name: Human-readable name of the measurement
        unit: UCUM unit code
        value: Measured value
        effective: Time of measurement, normalized to a fixed offset
    """

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    system: Optional[str] = None
    code: str
    name: Optional[str] = None
    unit: Optional[str] = None
    value: Decimal
    effective: datetime
    subject: Optional[str] = None

    @property
    def business_identifier(self) -> Optional[str]:
        return self.id


class MedicationDto(BaseModel):
    """Flattened medication statement of one patient."""

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    system: Optional[str] = None
    code: Optional[str] = None
    name: Optional[str] = None
    status: str
    effective: Optional[str] = None
    dosage: Optional[str] = None


class Citizenship(BaseModel):
    """Row of the citizenship reference table."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    code: str = Field(..., alias="Code")
    explanation: str = Field(..., alias="Explanation")
    valid_from: Optional[date] = Field(None, alias="From")
    valid_through: Optional[date] = Field(None, alias="Through")

    def is_valid_on(self, day: date) -> bool:
        if self.valid_from and day < self.valid_from:
            return False
        if self.valid_through and day > self.valid_through:
            return False
        return True
