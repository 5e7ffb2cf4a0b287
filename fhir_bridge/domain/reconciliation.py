"""Reconciliation Engine.

Partitions a validated batch of flat records into records that are new to
the remote store and records that already exist there, keyed on business
identifier.

Security Impact:
    - Only business identifiers are sent to the store and written to logs
    - A failed lookup aborts the whole reconciliation; writes are never
      planned from a partial view of the remote state

Architecture:
    - One ``identifier -> resource id`` map is built per batch; each distinct
      identifier is looked up exactly once
    - Lookups run concurrently; the first failure cancels the rest
    - Partitioning is by identifier equality only: a record whose content
      differs from the remote resource is still "existing" (full replace)
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Optional, Sequence, TypeVar

from fhir_bridge.domain.validation import is_blank

logger = logging.getLogger(__name__)

RecordT = TypeVar('RecordT')

# Looks up a business identifier; returns the remote resource id or None
RemoteLookup = Callable[[str], Awaitable[Optional[str]]]


def business_identifier(record: Any) -> Optional[str]:
    """Default key: the record's ``business_identifier`` property."""
    return getattr(record, "business_identifier", None)


@dataclass(frozen=True)
class ExistingRecord(Generic[RecordT]):
    """A batch record matched to a remote resource."""

    record: RecordT
    resource_id: str


@dataclass(frozen=True)
class ReconciliationResult(Generic[RecordT]):
    """Partition of a batch into ``new`` and ``existing`` records.

    Every batch record appears in exactly one partition, in batch order.
    """

    new: list[RecordT] = field(default_factory=list)
    existing: list[ExistingRecord[RecordT]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.new) + len(self.existing)


async def _lookup_all(identifiers: list[str], remote_lookup: RemoteLookup) -> dict[str, Optional[str]]:
    tasks = [asyncio.ensure_future(remote_lookup(identifier)) for identifier in identifiers]
    try:
        resource_ids = await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        raise
    return dict(zip(identifiers, resource_ids))


async def reconcile(
    batch: Sequence[RecordT],
    remote_lookup: RemoteLookup,
    key: Callable[[RecordT], Optional[str]] = business_identifier,
) -> ReconciliationResult[RecordT]:
    """Partition ``batch`` into new and existing records.

    Parameters:
        batch: Validated flat records
        remote_lookup: Coroutine function mapping a business identifier to
            the remote resource id (None when not found)
        key: Extracts the business identifier from a record

    Returns:
        ReconciliationResult: ``new`` and ``existing`` in batch order

    Raises:
        PipelineError: If any lookup fails (StoreError) or its answer cannot
            be read; outstanding lookups are cancelled
    """
    if not batch:
        return ReconciliationResult()

    identifiers = list(dict.fromkeys(
        identifier for identifier in map(key, batch) if not is_blank(identifier)
    ))

    logger.debug(f"Reconciling {len(batch)} record(s) over {len(identifiers)} identifier(s)")
    remote_ids = await _lookup_all(identifiers, remote_lookup)

    result: ReconciliationResult[RecordT] = ReconciliationResult()
    for record in batch:
        resource_id = remote_ids.get(key(record))
        if resource_id:
            result.existing.append(ExistingRecord(record=record, resource_id=resource_id))
        else:
            result.new.append(record)

    logger.info(f"Reconciled batch: {len(result.new)} new, {len(result.existing)} existing")
    return result
