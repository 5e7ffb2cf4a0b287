"""fhir-bridge: flat-record synchronization with a FHIR server."""

__version__ = "1.0.0"
