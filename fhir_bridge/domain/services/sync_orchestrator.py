"""Sync Orchestrator.

Drives a batch of flat records through the synchronization pipeline:

    parse -> validate -> reconcile -> convert -> create(new) / update(existing)

Security Impact:
    - Fail-fast: a batch with any validation violation writes nothing
    - Errors in the report carry identifiers and field names, never PII
    - Store failures (and unreadable store answers) are reported per record
      and never retried here

Architecture:
    - Domain service; the store is an explicitly constructed ResourceStorePort
      passed in by the composition root
    - Stages are linear (SyncStage); a failing stage stops the run and the
      report names the last stage that completed
    - Creates and updates are independent and dispatched concurrently;
      CancelledError is never caught, so a cancelled run leaves issued writes
      in an undefined state and reconciliation must be re-run before retrying
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Optional, Sequence

from fhir_bridge.domain import converters
from fhir_bridge.domain.converters import PATIENT_IDENTIFIER_SYSTEM
from fhir_bridge.domain.ports import (
    ConversionError,
    ParseError,
    PipelineError,
    ResourceStorePort,
    Result,
)
from fhir_bridge.domain.reconciliation import ReconciliationResult, reconcile
from fhir_bridge.domain.resources import Patient, Resource
from fhir_bridge.domain.validation import RowValidator, ValidationVerdict

logger = logging.getLogger(__name__)


class SyncStage(str, Enum):
    """Pipeline stages, in order."""
    PARSED = "parsed"
    VALIDATED = "validated"
    RECONCILED = "reconciled"
    CONVERTED = "converted"
    WRITTEN = "written"
    REPORTED = "reported"


class ConversionPolicy(str, Enum):
    """What to do when a single record cannot be converted."""
    FAIL_BATCH = "fail_batch"
    SKIP_AND_REPORT = "skip_and_report"


@dataclass(frozen=True)
class SyncError:
    """One error in a sync report."""

    error_type: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_exception(cls, error: Exception) -> 'SyncError':
        details = error.details() if isinstance(error, PipelineError) else {}
        return cls(error_type=type(error).__name__, message=str(error), details=details)

    @classmethod
    def from_result(cls, result: Result) -> 'SyncError':
        return cls(
            error_type=result.error_type or "UnknownError",
            message=result.error or "",
            details=result.error_details or {},
        )

    def to_dict(self) -> dict[str, Any]:
        return {"errorType": self.error_type, "message": self.message, "details": self.details}


@dataclass
class SyncReport:
    """Aggregate outcome of one synchronization run.

    Attributes:
        created_count: Resources created
        updated_count: Resources replaced
        errors: Every error encountered
        stage: Last stage that completed (None if parsing failed)
    """

    created_count: int = 0
    updated_count: int = 0
    errors: list[SyncError] = field(default_factory=list)
    stage: Optional[SyncStage] = None

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        """Boundary shape: ``{createdCount, updatedCount, errors}``."""
        return {
            "createdCount": self.created_count,
            "updatedCount": self.updated_count,
            "errors": [error.to_dict() for error in self.errors],
        }


async def _as_result(write: Awaitable[Resource]) -> Result[Resource]:
    try:
        return Result.success_result(await write)
    except PipelineError as e:
        return Result.failure_result(e)


class SyncOrchestrator:
    """Bulk synchronization of flat records with the remote store.

    Parameters:
        store: Initialized resource store
        parser: Object with ``parse(bytes) -> list`` (only needed for sync_csv)
        validator: Row validator (defaults to RowValidator.default())
        policy: Per-record conversion failure policy
        identifier_system: Identifier system written onto converted resources
        resource_cls: Resource type records are reconciled against

    Example Usage:
        ```python
        orchestrator = SyncOrchestrator(store, parser=PatientCsvParser())
        report = await orchestrator.sync_csv(upload_bytes)
        return report.to_dict()
        ```
    """

    def __init__(
        self,
        store: ResourceStorePort,
        parser: Any = None,
        validator: Optional[RowValidator] = None,
        policy: ConversionPolicy = ConversionPolicy.FAIL_BATCH,
        identifier_system: str = PATIENT_IDENTIFIER_SYSTEM,
        resource_cls: type[Resource] = Patient,
    ):
        self.store = store
        self.parser = parser
        self.validator = validator or RowValidator.default()
        self.policy = ConversionPolicy(policy)
        self.identifier_system = identifier_system
        self.resource_cls = resource_cls

    # ------------------------------------------------------------------
    # Boundary surface
    # ------------------------------------------------------------------

    def parse(self, data: bytes) -> list:
        if self.parser is None:
            raise ValueError("SyncOrchestrator was created without a parser")
        return self.parser.parse(data)

    def validate(self, records: Sequence[Any]) -> ValidationVerdict:
        return self.validator.validate(records)

    @staticmethod
    def convert_to_flat(resources: Any, **options: Any) -> Any:
        return converters.convert_to_flat(resources, **options)

    def convert_to_resource(self, records: Any) -> Any:
        return converters.convert_to_resource(records, identifier_system=self.identifier_system)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def sync_csv(self, data: bytes) -> SyncReport:
        """Parse uploaded bytes, then synchronize the parsed batch."""
        try:
            records = self.parse(data)
        except ParseError as e:
            logger.warning(f"Parse failed at line {e.line}: {e}")
            return SyncReport(errors=[SyncError.from_exception(e)])
        logger.info(f"Parsed {len(records)} record(s)", extra={"stage": SyncStage.PARSED.value})
        return await self.sync_batch(records)

    async def sync_batch(self, records: Sequence[Any]) -> SyncReport:
        """Validate, reconcile, convert and write a batch.

        Parameters:
            records: Flat records (already parsed)

        Returns:
            SyncReport: counts, errors and the last completed stage
        """
        report = SyncReport(stage=SyncStage.PARSED)
        if not records:
            report.stage = SyncStage.REPORTED
            return report

        verdict = self.validate(records)
        if not verdict.is_valid:
            report.errors.extend(
                SyncError("ValidationError", v.message, v.to_dict()) for v in verdict.violations
            )
            logger.warning(f"Batch rejected: {len(verdict.violations)} violation(s); nothing written")
            return report
        report.stage = SyncStage.VALIDATED

        try:
            partition = await reconcile(records, self._lookup_resource_id)
        except PipelineError as e:
            report.errors.append(SyncError.from_exception(e))
            logger.error(f"Reconciliation aborted: {e}")
            return report
        report.stage = SyncStage.RECONCILED
        logger.info(
            f"Reconciled {len(partition.new)} new / {len(partition.existing)} existing",
            extra={"stage": report.stage.value},
        )

        converted = self._convert(partition, report)
        if converted is None:
            return report
        creates, updates = converted
        report.stage = SyncStage.CONVERTED

        create_results, update_results = await asyncio.gather(
            asyncio.gather(*(_as_result(self.store.create(r)) for r in creates)),
            asyncio.gather(*(_as_result(self.store.update(rid, r)) for rid, r in updates)),
        )
        report.stage = SyncStage.WRITTEN

        for results, counter in ((create_results, "created_count"), (update_results, "updated_count")):
            for result in results:
                if result.is_success():
                    setattr(report, counter, getattr(report, counter) + 1)
                else:
                    report.errors.append(SyncError.from_result(result))

        report.stage = SyncStage.REPORTED
        logger.info(
            f"Sync finished: {report.created_count} created, {report.updated_count} updated, "
            f"{len(report.errors)} error(s)",
            extra={"stage": report.stage.value},
        )
        return report

    async def _lookup_resource_id(self, identifier: str) -> Optional[str]:
        resource = await self.store.search_by_identifier(self.resource_cls, identifier)
        return resource.id if resource is not None else None

    def _convert(
        self, partition: ReconciliationResult, report: SyncReport
    ) -> Optional[tuple[list[Resource], list[tuple[str, Resource]]]]:
        """Convert both partitions; None means the batch must stop here."""
        creates: list[Resource] = []
        updates: list[tuple[str, Resource]] = []
        pending = [(None, record) for record in partition.new]
        pending += [(match.resource_id, match.record) for match in partition.existing]

        for resource_id, record in pending:
            try:
                resource = self.convert_to_resource(record)
            except ConversionError as e:
                report.errors.append(SyncError.from_exception(e))
                if self.policy is ConversionPolicy.FAIL_BATCH:
                    logger.error(f"Conversion failed for {record.business_identifier}; batch aborted")
                    return None
                logger.warning(f"Conversion failed for {record.business_identifier}; record skipped")
                continue

            if resource_id is None:
                creates.append(resource)
            else:
                updates.append((resource_id, resource.model_copy(update={"id": resource_id})))
        return creates, updates
