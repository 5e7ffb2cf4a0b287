"""Row Validation Service.

Structural, per-row validation of flat records before they are reconciled
against the remote store. Every row is checked and every violation is
collected, so a client fixing an upload sees all problems at once.

Security Impact:
    - Violation messages name fields and rows, never field values
    - Placeholder tokens typed by API clients (``"string"``) are treated as
      not provided, so template payloads cannot create empty patients

Architecture:
    - Pure domain service with no infrastructure dependencies
    - Rule sets are registered per record type; lookup follows the class
      MRO, so subclasses (PatientDto) inherit their parent's rules
    - Batch-level rules (duplicate identifiers) run after the row rules
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Iterable, Optional, Sequence

from fhir_bridge.domain.ports import ValidationError, Violation
from fhir_bridge.domain.records import ObservationDto, PatientCsv

logger = logging.getLogger(__name__)

# Values clients leave in place from generated request templates
PLACEHOLDER_TOKENS = frozenset({"string"})

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# A rule inspects one record and returns (field_name, message) pairs
Rule = Callable[[Any, date], Iterable[tuple[str, str]]]
BatchRule = Callable[[Sequence[Any]], Iterable[Violation]]


def is_blank(value: Any) -> bool:
    """True for missing values, whitespace and placeholder tokens."""
    if value is None:
        return True
    if isinstance(value, str):
        stripped = value.strip()
        return not stripped or stripped.lower() in PLACEHOLDER_TOKENS
    return False


def _external_name(record: Any, field_name: str) -> str:
    namer = getattr(type(record), "external_name", None)
    return namer(field_name) if namer else field_name


def required(field_name: str) -> Rule:
    """Field must be present and not a placeholder."""
    def rule(record: Any, today: date) -> Iterable[tuple[str, str]]:
        if is_blank(getattr(record, field_name, None)):
            yield field_name, f"'{_external_name(record, field_name)}' must not be empty."
    return rule


def not_in_future(field_name: str) -> Rule:
    """Date field, when present, must not lie after today."""
    def rule(record: Any, today: date) -> Iterable[tuple[str, str]]:
        value = getattr(record, field_name, None)
        if isinstance(value, date) and value > today:
            yield field_name, f"'{_external_name(record, field_name)}' must not be in the future."
    return rule


def email_format(field_name: str) -> Rule:
    """Field, when present, must look like an e-mail address."""
    def rule(record: Any, today: date) -> Iterable[tuple[str, str]]:
        value = getattr(record, field_name, None)
        if not is_blank(value) and not EMAIL_PATTERN.match(value):
            yield field_name, f"'{_external_name(record, field_name)}' is not a valid email address."
    return rule


def unique_business_identifier(records: Sequence[Any]) -> Iterable[Violation]:
    """Flag every repeat of a business identifier after its first row."""
    first_seen: dict[str, int] = {}
    for index, record in enumerate(records):
        identifier = getattr(record, "business_identifier", None)
        if is_blank(identifier):
            continue
        if identifier in first_seen:
            yield Violation(
                row_index=index,
                field=_external_name(record, "identifier"),
                message=f"Identifier is duplicated (first seen in row {first_seen[identifier]}).",
            )
        else:
            first_seen[identifier] = index


PATIENT_RULES: list[Rule] = [
    required("identifier"),
    required("first_name"),
    required("last_name"),
    not_in_future("birth_date"),
    email_format("email"),
]

OBSERVATION_RULES: list[Rule] = [
    required("code"),
    required("system"),
]


@dataclass(frozen=True)
class ValidationVerdict:
    """Outcome of validating a batch."""

    violations: tuple[Violation, ...] = field(default_factory=tuple)

    @property
    def is_valid(self) -> bool:
        return not self.violations

    def raise_for_violations(self) -> None:
        """Raise ValidationError if any violation was found."""
        if self.violations:
            rows = len({v.row_index for v in self.violations})
            raise ValidationError(
                f"{len(self.violations)} violation(s) in {rows} row(s)",
                violations=list(self.violations),
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "errors": [v.to_dict() for v in self.violations],
        }


class RowValidator:
    """Validates batches of flat records against per-type rule sets.

    Example Usage:
        ```python
        validator = RowValidator.default()
        verdict = validator.validate(records)
        if not verdict.is_valid:
            for violation in verdict.violations:
                print(violation.row_index, violation.field, violation.message)
        ```
    """

    def __init__(self, batch_rules: Optional[list[BatchRule]] = None):
        self._rule_sets: dict[type, list[Rule]] = {}
        self._batch_rules: list[BatchRule] = list(batch_rules or [])

    @classmethod
    def default(cls) -> "RowValidator":
        """Validator with the built-in patient and observation rule sets."""
        validator = cls(batch_rules=[unique_business_identifier])
        validator.register_rule_set(PatientCsv, PATIENT_RULES)
        validator.register_rule_set(ObservationDto, OBSERVATION_RULES)
        return validator

    def register_rule_set(self, record_type: type, rules: Iterable[Rule]) -> None:
        """Register (or replace) the rule set for a record type."""
        self._rule_sets[record_type] = list(rules)

    def rules_for(self, record: Any) -> list[Rule]:
        for klass in type(record).__mro__:
            if klass in self._rule_sets:
                return self._rule_sets[klass]
        raise TypeError(f"No rule set registered for {type(record).__name__}")

    def validate(self, records: Sequence[Any], today: Optional[date] = None) -> ValidationVerdict:
        """Validate every row and collect all violations.

        Parameters:
            records: Batch of flat records (not modified)
            today: Reference date for date rules (defaults to today)

        Returns:
            ValidationVerdict: valid iff no rule reported a violation
        """
        today = today or date.today()
        violations: list[Violation] = []

        for index, record in enumerate(records):
            for rule in self.rules_for(record):
                for field_name, message in rule(record, today):
                    violations.append(Violation(
                        row_index=index,
                        field=_external_name(record, field_name),
                        message=message,
                    ))

        for batch_rule in self._batch_rules:
            violations.extend(batch_rule(records))

        violations.sort(key=lambda v: v.row_index)
        if violations:
            logger.info(f"Validation found {len(violations)} violation(s) in batch of {len(records)}")
        else:
            logger.debug(f"Validation passed for batch of {len(records)}")
        return ValidationVerdict(violations=tuple(violations))
