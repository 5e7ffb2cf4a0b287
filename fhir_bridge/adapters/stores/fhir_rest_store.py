"""FHIR REST Store Adapter.

Implements ResourceStorePort against a FHIR R4 REST server using aiohttp.

Security Impact:
    - The bearer token is read from SecretStr only when building headers
    - Request URLs and response bodies are never logged (they carry PII);
      only operation, resource type, identifier and status are logged
    - TLS verification is on unless explicitly disabled in configuration

Architecture:
    - Implements ResourceStorePort (Hexagonal Architecture)
    - One ClientSession per store, opened by ``initialize()``; the session is
      safe for concurrent requests
    - Non-2xx responses and unreadable create/update bodies become
      StoreError; 404/410 on reads become None
    - JSON goes through simplejson with ``use_decimal`` so quantity values
      keep every digit in both directions
    - No retries: retry policy belongs to the server side or the caller
"""

import asyncio
import logging
from typing import Any, Optional

import aiohttp
import simplejson

from fhir_bridge.domain.ports import ConversionError, R, ResourceStorePort, StoreError
from fhir_bridge.infrastructure.config_manager import FhirServerConfig

logger = logging.getLogger(__name__)

FHIR_JSON = "application/fhir+json"

# Statuses meaning "no such resource" on read/delete
NOT_FOUND_STATUSES = (404, 410)


class FhirRestStore(ResourceStorePort):
    """aiohttp client for a FHIR R4 server.

    Example Usage:
        ```python
        config = FhirServerConfig(base_url="https://fhir.example.org/fhir")
        async with FhirRestStore(config) as store:
            patient = await store.search_by_identifier(Patient, "PAT0001")
        ```
    """

    def __init__(self, config: FhirServerConfig):
        self.config = config
        self._session: Optional[aiohttp.ClientSession] = None
        self._identifier_systems = {
            "Patient": config.identifier_system,
            "Observation": config.observation_identifier_system,
            "Organization": config.organization_identifier_system,
        }

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": FHIR_JSON,
            "Content-Type": FHIR_JSON,
            "Prefer": "return=representation",
        }
        if self.config.auth_token is not None:
            headers["Authorization"] = f"Bearer {self.config.auth_token.get_secret_value()}"
        return headers

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise StoreError("Store not initialized", operation="session")
        return self._session

    async def initialize(self) -> None:
        """Open the HTTP session and fetch ``/metadata``.

        Raises:
            StoreError: If the server cannot be reached or rejects the request
        """
        if self._session is not None:
            return
        self._session = aiohttp.ClientSession(
            headers=self._headers(),
            timeout=aiohttp.ClientTimeout(total=self.config.timeout_seconds),
            connector=aiohttp.TCPConnector(ssl=self.config.verify_ssl),
        )
        try:
            statement, _ = await self._request("GET", "/metadata", operation="initialize")
        except BaseException:
            await self.close()
            raise
        logger.info(f"Connected to FHIR server (fhirVersion {statement.get('fhirVersion', 'unknown')})")

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        identifier: Optional[str] = None,
        params: Optional[dict[str, Any]] = None,
        body: Optional[dict[str, Any]] = None,
        not_found_ok: bool = False,
    ) -> tuple[Optional[dict[str, Any]], Optional[str]]:
        """Issue one request; returns the parsed JSON body and the Location header.

        Returns ``(None, None)`` for 404/410 when ``not_found_ok`` is set.
        """
        url = f"{self.config.base_url}{path}"
        data = simplejson.dumps(body, use_decimal=True) if body is not None else None
        try:
            async with self.session.request(method, url, params=params, data=data) as response:
                if not_found_ok and response.status in NOT_FOUND_STATUSES:
                    return None, None
                if response.status >= 400:
                    logger.error(f"FHIR {operation} failed: HTTP {response.status} (identifier={identifier})")
                    raise StoreError(
                        f"{operation} failed with HTTP {response.status}",
                        operation=operation,
                        identifier=identifier,
                        status=response.status,
                    )
                text = await response.text()
                parsed = simplejson.loads(text, use_decimal=True) if text.strip() else {}
                return parsed, response.headers.get("Location")
        except asyncio.TimeoutError as e:
            logger.error(f"FHIR {operation} timed out after {self.config.timeout_seconds}s (identifier={identifier})")
            raise StoreError(f"{operation} timed out", operation=operation, identifier=identifier) from e
        except aiohttp.ClientError as e:
            logger.error(f"FHIR {operation} failed: {type(e).__name__} (identifier={identifier})")
            raise StoreError(f"{operation} failed: {e}", operation=operation, identifier=identifier) from e
        except simplejson.JSONDecodeError as e:
            raise StoreError(f"{operation} returned invalid JSON", operation=operation, identifier=identifier) from e

    @staticmethod
    def _entries(resource_cls: type[R], bundle: Optional[dict[str, Any]]) -> list[R]:
        entries = (bundle or {}).get("entry", [])
        return [
            resource_cls.from_fhir(entry["resource"])
            for entry in entries
            if entry.get("resource", {}).get("resourceType") == resource_cls.resource_type
        ]

    @staticmethod
    def _written(resource: R, body: dict[str, Any], operation: str, identifier: Optional[str]) -> R:
        """Parse the body echoed by a create/update.

        The write has already been accepted by the server, so a body that is
        not the written resource (e.g. an OperationOutcome) is a StoreError.
        """
        returned = body.get("resourceType") if isinstance(body, dict) else type(body).__name__
        try:
            if not isinstance(body, dict):
                raise ConversionError(f"Expected a JSON object, got {returned}")
            return type(resource).from_fhir(body)
        except ConversionError as e:
            logger.error(
                f"FHIR {operation} returned {returned} instead of {resource.resource_type} "
                f"(identifier={identifier})"
            )
            raise StoreError(
                f"{operation} returned an unexpected body: {e}",
                operation=operation,
                identifier=identifier,
            ) from e

    async def search_by_identifier(self, resource_cls: type[R], identifier: str) -> Optional[R]:
        system = self._identifier_systems.get(resource_cls.resource_type)
        token = f"{system}|{identifier}" if system else identifier
        bundle, _ = await self._request(
            "GET", f"/{resource_cls.resource_type}",
            operation="search_by_identifier", identifier=identifier,
            params={"identifier": token},
        )
        matches = self._entries(resource_cls, bundle)
        return matches[0] if matches else None

    async def read(self, resource_cls: type[R], resource_id: str) -> Optional[R]:
        body, _ = await self._request(
            "GET", f"/{resource_cls.resource_type}/{resource_id}",
            operation="read", identifier=resource_id, not_found_ok=True,
        )
        return resource_cls.from_fhir(body) if body is not None else None

    async def create(self, resource: R) -> R:
        identifier = resource.business_identifier()
        body = resource.to_fhir()
        body.pop("id", None)
        created, location = await self._request(
            "POST", f"/{resource.resource_type}",
            operation="create", identifier=identifier, body=body,
        )
        if created:
            return self._written(resource, created, "create", identifier)
        # Server ignored Prefer: take the id from Location (.../Patient/<id>/_history/<v>)
        if location is None:
            raise StoreError("create returned neither a body nor a Location", operation="create", identifier=identifier)
        parts = location.rstrip("/").split("/")
        resource_id = parts[parts.index(resource.resource_type) + 1] if resource.resource_type in parts else parts[-1]
        return resource.model_copy(update={"id": resource_id})

    async def update(self, resource_id: str, resource: R) -> R:
        body = resource.to_fhir()
        body["id"] = resource_id
        updated, _ = await self._request(
            "PUT", f"/{resource.resource_type}/{resource_id}",
            operation="update", identifier=resource_id, body=body,
        )
        if updated:
            return self._written(resource, updated, "update", resource_id)
        return resource.model_copy(update={"id": resource_id})

    async def list_resources(self, resource_cls: type[R], page_size: int = 10) -> list[R]:
        bundle, _ = await self._request(
            "GET", f"/{resource_cls.resource_type}",
            operation="list", params={"_count": str(page_size)},
        )
        return self._entries(resource_cls, bundle)

    async def search(self, resource_cls: type[R], params: dict[str, str]) -> list[R]:
        bundle, _ = await self._request(
            "GET", f"/{resource_cls.resource_type}", operation="search", params=params,
        )
        return self._entries(resource_cls, bundle)

    async def delete(self, resource_cls: type[R], resource_id: str) -> bool:
        result, _ = await self._request(
            "DELETE", f"/{resource_cls.resource_type}/{resource_id}",
            operation="delete", identifier=resource_id, not_found_ok=True,
        )
        return result is not None
