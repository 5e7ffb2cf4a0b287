"""Composition root for fhir-bridge.

Builds the resource store, the reference data and the services from
configuration, and runs a synchronization end to end. The CLI and any HTTP
layer call into these factories; nothing in the domain constructs its own
collaborators.

Security Impact:
    - Store credentials come from the configuration manager (SecretStr)
    - Store initialization failures surface at start-up, before any batch

Architecture:
    - Follows Hexagonal Architecture principles
    - The store backend is selected by settings (``fhir`` or ``memory``);
      dry runs always use the in-memory store
"""

import logging
from typing import Optional

from fhir_bridge.adapters.csv_parser import PatientCsvParser
from fhir_bridge.adapters.stores import FhirRestStore, InMemoryResourceStore
from fhir_bridge.domain.ports import ResourceStorePort
from fhir_bridge.domain.services import (
    ConversionPolicy,
    MedicationService,
    ObservationService,
    OrganizationService,
    PatientService,
    SyncOrchestrator,
    SyncReport,
)
from fhir_bridge.infrastructure.reference_data import (
    CitizenshipRegistry,
    get_reference_data,
    initialize_reference_data,
)
from fhir_bridge.infrastructure.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)


def create_store(dry_run: bool = False, app_settings: Optional[Settings] = None) -> ResourceStorePort:
    """Create the configured resource store (not yet initialized).

    Parameters:
        dry_run: Use the in-memory store regardless of configuration
        app_settings: Settings to read (defaults to the global settings)
    """
    app_settings = app_settings or default_settings
    fhir_config = app_settings.fhir_config
    if dry_run or app_settings.store_backend == "memory":
        logger.info("Using in-memory resource store")
        return InMemoryResourceStore(identifier_systems={
            "Patient": fhir_config.identifier_system,
            "Observation": fhir_config.observation_identifier_system,
            "Organization": fhir_config.organization_identifier_system,
        })
    logger.info(f"Using FHIR REST store at {fhir_config.base_url}")
    return FhirRestStore(fhir_config)


def create_orchestrator(
    store: ResourceStorePort,
    skip_bad_records: bool = False,
    app_settings: Optional[Settings] = None,
) -> SyncOrchestrator:
    app_settings = app_settings or default_settings
    policy = ConversionPolicy.SKIP_AND_REPORT if skip_bad_records else ConversionPolicy(app_settings.conversion_policy)
    return SyncOrchestrator(
        store,
        parser=PatientCsvParser(),
        policy=policy,
        identifier_system=app_settings.fhir_config.identifier_system,
    )


def create_patient_service(
    store: ResourceStorePort,
    registry: Optional[CitizenshipRegistry] = None,
    app_settings: Optional[Settings] = None,
) -> PatientService:
    app_settings = app_settings or default_settings
    registry = registry or get_reference_data()
    fhir_config = app_settings.fhir_config
    return PatientService(
        store,
        identifier_system=fhir_config.identifier_system,
        citizenship_lookup=registry.name_for,
        page_size=fhir_config.page_size,
    )


def create_observation_service(store: ResourceStorePort, app_settings: Optional[Settings] = None) -> ObservationService:
    app_settings = app_settings or default_settings
    return ObservationService(store, identifier_system=app_settings.fhir_config.observation_identifier_system)


def create_organization_service(store: ResourceStorePort, app_settings: Optional[Settings] = None) -> OrganizationService:
    app_settings = app_settings or default_settings
    return OrganizationService(store, identifier_system=app_settings.fhir_config.organization_identifier_system)


def create_medication_service(store: ResourceStorePort) -> MedicationService:
    return MedicationService(store)


def bootstrap(app_settings: Optional[Settings] = None) -> CitizenshipRegistry:
    """Load process-wide reference data; call once before serving requests."""
    app_settings = app_settings or default_settings
    return initialize_reference_data(app_settings.citizenship_table)


async def run_sync(
    data: bytes,
    dry_run: bool = False,
    skip_bad_records: bool = False,
    store: Optional[ResourceStorePort] = None,
    app_settings: Optional[Settings] = None,
) -> SyncReport:
    """Synchronize one uploaded CSV file.

    Parameters:
        data: CSV bytes
        dry_run: Write to an in-memory store instead of the server
        skip_bad_records: Skip records that fail conversion instead of
            failing the batch
        store: Store to use instead of the configured one (not closed here)

    Raises:
        StoreError: If the configured store cannot be initialized
    """
    if store is not None:
        return await create_orchestrator(store, skip_bad_records, app_settings).sync_csv(data)

    async with create_store(dry_run, app_settings) as owned_store:
        return await create_orchestrator(owned_store, skip_bad_records, app_settings).sync_csv(data)
