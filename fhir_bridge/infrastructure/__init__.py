"""Infrastructure layer for fhir-bridge: configuration, logging, reference data."""
