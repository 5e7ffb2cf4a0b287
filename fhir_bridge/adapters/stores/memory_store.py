"""In-Memory Resource Store Adapter.

Dict-backed implementation of ResourceStorePort. Used for tests and for
``--dry-run`` synchronizations, where no remote server should be touched.

Architecture:
    - Implements ResourceStorePort
    - Resources are stored as FHIR JSON and re-parsed on every read, so
      callers never share mutable model instances with the store
    - Every call is appended to ``operations`` as ``(operation, resource_type, key)``
"""

import logging
import uuid
from typing import Any, Optional

from fhir_bridge.domain.ports import R, ResourceStorePort, StoreError
from fhir_bridge.domain.resources import Resource

logger = logging.getLogger(__name__)


class InMemoryResourceStore(ResourceStorePort):
    """Resource store held entirely in process memory.

    Example Usage:
        ```python
        store = InMemoryResourceStore()
        await store.initialize()
        created = await store.create(patient)
        assert await store.read(Patient, created.id) is not None
        ```
    """

    def __init__(self, identifier_systems: Optional[dict[str, str]] = None):
        self._resources: dict[str, dict[str, dict[str, Any]]] = {}
        self._identifier_systems = dict(identifier_systems or {})
        self.operations: list[tuple[str, str, Optional[str]]] = []
        self.initialized = False

    async def initialize(self) -> None:
        self.initialized = True

    async def close(self) -> None:
        self.initialized = False

    def _bucket(self, resource_type: str) -> dict[str, dict[str, Any]]:
        return self._resources.setdefault(resource_type, {})

    def count(self, resource_cls: type[Resource]) -> int:
        return len(self._resources.get(resource_cls.resource_type, {}))

    def writes(self) -> list[tuple[str, str, Optional[str]]]:
        """Recorded create/update/delete calls."""
        return [op for op in self.operations if op[0] in ("create", "update", "delete")]

    async def search_by_identifier(self, resource_cls: type[R], identifier: str) -> Optional[R]:
        self.operations.append(("search_by_identifier", resource_cls.resource_type, identifier))
        system = self._identifier_systems.get(resource_cls.resource_type)
        for body in self._bucket(resource_cls.resource_type).values():
            resource = resource_cls.from_fhir(body)
            if resource.business_identifier(system) == identifier:
                return resource
        return None

    async def read(self, resource_cls: type[R], resource_id: str) -> Optional[R]:
        self.operations.append(("read", resource_cls.resource_type, resource_id))
        body = self._bucket(resource_cls.resource_type).get(resource_id)
        return resource_cls.from_fhir(body) if body is not None else None

    async def create(self, resource: R) -> R:
        resource_id = uuid.uuid4().hex
        self.operations.append(("create", resource.resource_type, resource.business_identifier()))
        body = resource.to_fhir()
        body["id"] = resource_id
        self._bucket(resource.resource_type)[resource_id] = body
        logger.debug(f"Created {resource.resource_type}/{resource_id}")
        return type(resource).from_fhir(body)

    async def update(self, resource_id: str, resource: R) -> R:
        self.operations.append(("update", resource.resource_type, resource_id))
        bucket = self._bucket(resource.resource_type)
        if resource_id not in bucket:
            raise StoreError(
                f"{resource.resource_type}/{resource_id} does not exist",
                operation="update",
                identifier=resource_id,
                status=404,
            )
        body = resource.to_fhir()
        body["id"] = resource_id
        bucket[resource_id] = body
        return type(resource).from_fhir(body)

    async def list_resources(self, resource_cls: type[R], page_size: int = 10) -> list[R]:
        self.operations.append(("list", resource_cls.resource_type, None))
        bodies = list(self._bucket(resource_cls.resource_type).values())[:page_size]
        return [resource_cls.from_fhir(body) for body in bodies]

    async def search(self, resource_cls: type[R], params: dict[str, str]) -> list[R]:
        """Supports the ``identifier``, ``_id``, ``subject`` and ``code`` parameters."""
        self.operations.append(("search", resource_cls.resource_type, None))
        matches = []
        for body in self._bucket(resource_cls.resource_type).values():
            if all(self._matches(body, name, value) for name, value in params.items()):
                matches.append(resource_cls.from_fhir(body))
        return matches

    @staticmethod
    def _matches(body: dict[str, Any], name: str, value: str) -> bool:
        if name == "_id":
            return body.get("id") == value
        if name == "identifier":
            system, _, ident = value.rpartition("|")
            return any(
                i.get("value") == ident and (not system or i.get("system") == system)
                for i in body.get("identifier", [])
            )
        if name in ("subject", "patient"):
            reference = body.get("subject", {}).get("reference", "")
            return reference == value or reference == f"Patient/{value}"
        if name == "code":
            system, _, code = value.rpartition("|")
            return any(
                c.get("code") == code and (not system or c.get("system") == system)
                for c in body.get("code", {}).get("coding", [])
            )
        raise StoreError(f"Unsupported search parameter '{name}'", operation="search", status=400)

    async def delete(self, resource_cls: type[R], resource_id: str) -> bool:
        self.operations.append(("delete", resource_cls.resource_type, resource_id))
        return self._bucket(resource_cls.resource_type).pop(resource_id, None) is not None
