"""Clinical Resource Graph Models.

This module defines the nested resource graph exchanged with the remote FHIR
store. Only the elements the pipeline actually reads or writes are modelled;
everything else in an incoming resource is ignored.

Security Impact:
    - Patient names, birth dates and telecom values are PII and must never
      be logged; only ``id`` and business identifiers are safe to log
    - Pydantic validation rejects malformed graphs before conversion

Architecture:
    - Pure domain models with zero infrastructure dependencies
    - FHIR choice elements (``value[x]``, ``effective[x]``) are explicit
      tagged unions discriminated by ``kind`` instead of untyped values
    - ``from_fhir`` / ``to_fhir`` translate between FHIR JSON and the models
"""

from decimal import Decimal
from typing import Annotated, Any, ClassVar, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError as PydanticValidationError,
    field_serializer,
)

from fhir_bridge.domain.ports import ConversionError


class FhirElement(BaseModel):
    """Base for every FHIR element: camelCase aliases, unknown keys ignored."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Coding(FhirElement):
    system: Optional[str] = None
    code: Optional[str] = None
    display: Optional[str] = None


class CodeableConcept(FhirElement):
    coding: list[Coding] = Field(default_factory=list)
    text: Optional[str] = None

    def first_coding(self) -> Optional[Coding]:
        return self.coding[0] if self.coding else None


class Identifier(FhirElement):
    use: Optional[str] = None
    system: Optional[str] = None
    value: Optional[str] = None


class HumanName(FhirElement):
    use: Optional[str] = None
    family: Optional[str] = None
    given: list[str] = Field(default_factory=list)
    text: Optional[str] = None


class ContactPoint(FhirElement):
    system: Optional[str] = None
    value: Optional[str] = None
    use: Optional[str] = None


class Reference(FhirElement):
    reference: Optional[str] = None
    display: Optional[str] = None


class Period(FhirElement):
    start: Optional[str] = None
    end: Optional[str] = None


class Quantity(FhirElement):
    value: Optional[Decimal] = None
    unit: Optional[str] = None
    system: Optional[str] = None
    code: Optional[str] = None

    @field_serializer("value", when_used="unless-none")
    def _serialize_value(self, value: Decimal) -> Union[int, Decimal]:
        # Decimals stay Decimal; FHIR JSON writers must emit them as numbers
        return int(value) if value == value.to_integral_value() else value


class Extension(FhirElement):
    """FHIR extension; only the value types used by the pipeline are modelled."""

    url: str
    value_string: Optional[str] = Field(None, alias="valueString")
    value_code: Optional[str] = Field(None, alias="valueCode")
    value_codeable_concept: Optional[CodeableConcept] = Field(None, alias="valueCodeableConcept")
    value_period: Optional[Period] = Field(None, alias="valuePeriod")
    extension: list["Extension"] = Field(default_factory=list)

    def find(self, url: str) -> Optional["Extension"]:
        """Return the first nested extension with the given url."""
        return next((ext for ext in self.extension if ext.url == url), None)


# ============================================================================
# Tagged unions for FHIR choice elements
# ============================================================================

class QuantityValue(FhirElement):
    kind: Literal["quantity"] = "quantity"
    quantity: Quantity


class StringValue(FhirElement):
    kind: Literal["string"] = "string"
    value: str


class CodeableConceptValue(FhirElement):
    kind: Literal["codeable_concept"] = "codeable_concept"
    concept: CodeableConcept


class BooleanValue(FhirElement):
    kind: Literal["boolean"] = "boolean"
    value: bool


class IntegerValue(FhirElement):
    kind: Literal["integer"] = "integer"
    value: int


class PeriodValue(FhirElement):
    kind: Literal["period"] = "period"
    period: Period


ObservationValue = Annotated[
    Union[QuantityValue, StringValue, CodeableConceptValue, BooleanValue, IntegerValue, PeriodValue],
    Field(discriminator="kind"),
]


class DateTimeEffective(FhirElement):
    kind: Literal["date_time"] = "date_time"
    value: str


class InstantEffective(FhirElement):
    kind: Literal["instant"] = "instant"
    value: str


class PeriodEffective(FhirElement):
    kind: Literal["period"] = "period"
    period: Period


EffectiveTime = Annotated[
    Union[DateTimeEffective, InstantEffective, PeriodEffective],
    Field(discriminator="kind"),
]

# FHIR JSON key -> (variant kind, payload field on the variant)
_VALUE_KEYS: dict[str, tuple[str, str]] = {
    "valueQuantity": ("quantity", "quantity"),
    "valueString": ("string", "value"),
    "valueCodeableConcept": ("codeable_concept", "concept"),
    "valueBoolean": ("boolean", "value"),
    "valueInteger": ("integer", "value"),
    "valuePeriod": ("period", "period"),
}

_EFFECTIVE_KEYS: dict[str, tuple[str, str]] = {
    "effectiveDateTime": ("date_time", "value"),
    "effectiveInstant": ("instant", "value"),
    "effectivePeriod": ("period", "period"),
}


def _choice_from_fhir(data: dict[str, Any], keys: dict[str, tuple[str, str]]) -> Optional[dict[str, Any]]:
    present = [key for key in keys if key in data]
    if not present:
        return None
    if len(present) > 1:
        raise ValueError(f"Multiple choice elements present: {present}")
    kind, payload_field = keys[present[0]]
    return {"kind": kind, payload_field: data[present[0]]}


def _choice_to_fhir(choice: Optional[FhirElement], keys: dict[str, tuple[str, str]]) -> dict[str, Any]:
    if choice is None:
        return {}
    for json_key, (kind, payload_field) in keys.items():
        if kind == choice.kind:
            dumped = choice.model_dump(by_alias=True, exclude_none=True)
            return {json_key: dumped[payload_field]}
    raise ValueError(f"Unknown choice kind: {choice.kind}")


def _prune(value: Any) -> Any:
    """Drop empty lists and objects, which FHIR JSON does not allow."""
    if isinstance(value, dict):
        pruned = {k: _prune(v) for k, v in value.items()}
        return {k: v for k, v in pruned.items() if v not in (None, [], {})}
    if isinstance(value, list):
        return [item for item in (_prune(v) for v in value) if item not in (None, [], {})]
    return value


# ============================================================================
# Resources
# ============================================================================

class Resource(FhirElement):
    """Base class for top-level resources held by the remote store."""

    resource_type: ClassVar[str] = "Resource"

    id: Optional[str] = None
    identifier: list[Identifier] = Field(default_factory=list)

    def business_identifier(self, system: Optional[str] = None) -> Optional[str]:
        """Return the first identifier value, optionally restricted to a system."""
        for ident in self.identifier:
            if ident.value and (system is None or ident.system == system):
                return ident.value
        return None

    @classmethod
    def from_fhir(cls, data: dict[str, Any]):
        """Build the model from FHIR JSON.

        Raises:
            ConversionError: If the JSON is not a resource of this type
        """
        resource_type = data.get("resourceType")
        if resource_type != cls.resource_type:
            raise ConversionError(
                f"Expected resourceType {cls.resource_type}, got {resource_type}",
                resource_type=cls.resource_type,
                resource_id=data.get("id"),
                field="resourceType",
            )
        try:
            return cls.model_validate(cls._prepare(dict(data)))
        except (PydanticValidationError, ValueError) as e:
            raise ConversionError(
                f"Malformed {cls.resource_type} resource: {e}",
                resource_type=cls.resource_type,
                resource_id=data.get("id"),
            ) from e

    @classmethod
    def _prepare(cls, data: dict[str, Any]) -> dict[str, Any]:
        return data

    def to_fhir(self) -> dict[str, Any]:
        """Serialize to a FHIR JSON dict (empty elements removed).

        Quantity values are kept as ``Decimal``; encode the dict with a
        Decimal-aware writer such as ``simplejson.dumps(body, use_decimal=True)``.
        """
        body = self.model_dump(by_alias=True, exclude_none=True)
        return _prune({"resourceType": self.resource_type, **body})


class Patient(Resource):
    resource_type: ClassVar[str] = "Patient"

    active: Optional[bool] = None
    name: list[HumanName] = Field(default_factory=list)
    telecom: list[ContactPoint] = Field(default_factory=list)
    gender: Optional[str] = None
    birth_date: Optional[str] = Field(None, alias="birthDate")
    marital_status: Optional[CodeableConcept] = Field(None, alias="maritalStatus")
    extension: list[Extension] = Field(default_factory=list)

    def official_name(self) -> Optional[HumanName]:
        """The ``official`` name, falling back to the first name."""
        for name in self.name:
            if name.use == "official":
                return name
        return self.name[0] if self.name else None

    def telecom_value(self, system: str) -> Optional[str]:
        return next((cp.value for cp in self.telecom if cp.system == system), None)

    def find_extension(self, url: str) -> Optional[Extension]:
        return next((ext for ext in self.extension if ext.url == url), None)


class Organization(Resource):
    resource_type: ClassVar[str] = "Organization"

    active: Optional[bool] = None
    name: Optional[str] = None
    telecom: list[ContactPoint] = Field(default_factory=list)


class Observation(Resource):
    resource_type: ClassVar[str] = "Observation"

    status: str = "final"
    category: list[CodeableConcept] = Field(default_factory=list)
    code: CodeableConcept = Field(default_factory=CodeableConcept)
    subject: Optional[Reference] = None
    effective: Optional[EffectiveTime] = None
    value: Optional[ObservationValue] = None

    @classmethod
    def _prepare(cls, data: dict[str, Any]) -> dict[str, Any]:
        data["value"] = _choice_from_fhir(data, _VALUE_KEYS)
        data["effective"] = _choice_from_fhir(data, _EFFECTIVE_KEYS)
        for key in (*_VALUE_KEYS, *_EFFECTIVE_KEYS):
            data.pop(key, None)
        return data

    def to_fhir(self) -> dict[str, Any]:
        body = self.model_dump(
            by_alias=True, exclude_none=True, exclude={"value", "effective"}
        )
        body.update(_choice_to_fhir(self.effective, _EFFECTIVE_KEYS))
        body.update(_choice_to_fhir(self.value, _VALUE_KEYS))
        return _prune({"resourceType": self.resource_type, **body})


class Dosage(FhirElement):
    text: Optional[str] = None


class MedicationStatement(Resource):
    """A medication a patient is, was or will be taking.

    Only the coded form of ``medication[x]`` is modelled; a statement that
    points to a Medication resource parses with ``medication`` None.
    """

    resource_type: ClassVar[str] = "MedicationStatement"

    status: str = "active"
    medication: Optional[CodeableConcept] = Field(None, alias="medicationCodeableConcept")
    subject: Optional[Reference] = None
    effective_date_time: Optional[str] = Field(None, alias="effectiveDateTime")
    dosage: list[Dosage] = Field(default_factory=list)


RESOURCE_TYPES: dict[str, type[Resource]] = {
    cls.resource_type: cls for cls in (Patient, Organization, Observation, MedicationStatement)
}
