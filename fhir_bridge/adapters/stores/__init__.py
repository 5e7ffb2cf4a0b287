"""Resource store adapters for fhir-bridge.

Implementations of ResourceStorePort: a FHIR REST client and an in-memory
store for tests and dry runs.
"""

from fhir_bridge.adapters.stores.fhir_rest_store import FhirRestStore
from fhir_bridge.adapters.stores.memory_store import InMemoryResourceStore

__all__ = ["FhirRestStore", "InMemoryResourceStore"]
