"""Adapters layer for fhir-bridge.

This module contains the tabular parser and the resource store adapters.
Store adapters implement ResourceStorePort defined in the domain layer.
"""
