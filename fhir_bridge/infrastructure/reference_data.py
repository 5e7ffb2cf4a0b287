"""Citizenship Reference Data.

The citizenship code table is loaded once at start-up and shared read-only by
every request afterwards.

Security Impact:
    - The table is immutable after loading; request handling cannot alter it
    - A missing or malformed table is a start-up failure

Architecture:
    - Infrastructure layer; parsing is delegated to CitizenshipTableParser
    - Process-wide state is set only by ``initialize_reference_data``; reads
      need no locking because the mapping never changes afterwards
"""

import logging
from datetime import date
from pathlib import Path
from types import MappingProxyType
from typing import Iterator, Mapping, Optional, Union

from fhir_bridge.adapters.csv_parser import CitizenshipTableParser
from fhir_bridge.domain.records import Citizenship

logger = logging.getLogger(__name__)


class CitizenshipRegistry:
    """Read-only ``code -> Citizenship`` lookup."""

    def __init__(self, citizenships: list[Citizenship]):
        entries: dict[str, Citizenship] = {}
        for citizenship in citizenships:
            if citizenship.code in entries:
                raise ValueError(f"Duplicate citizenship code '{citizenship.code}'")
            entries[citizenship.code] = citizenship
        self._entries: Mapping[str, Citizenship] = MappingProxyType(entries)

    @classmethod
    def from_csv(cls, path: Union[str, Path]) -> 'CitizenshipRegistry':
        """Load the registry from a ``Code,Explanation,From,Through`` CSV file.

        Raises:
            FileNotFoundError: If the file does not exist
            ParseError: If the file is malformed
        """
        data = Path(path).read_bytes()
        return cls(CitizenshipTableParser().parse(data))

    @property
    def citizenships(self) -> Mapping[str, Citizenship]:
        return self._entries

    def get(self, code: str) -> Optional[Citizenship]:
        return self._entries.get(code)

    def name_for(self, code: str) -> Optional[str]:
        """Explanation text for a code, or None when the code is unknown."""
        citizenship = self._entries.get(code)
        return citizenship.explanation if citizenship else None

    def valid_on(self, day: date) -> list[Citizenship]:
        return [c for c in self._entries.values() if c.is_valid_on(day)]

    def __contains__(self, code: object) -> bool:
        return code in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


_registry: Optional[CitizenshipRegistry] = None


def initialize_reference_data(path: Optional[Union[str, Path]] = None) -> CitizenshipRegistry:
    """Load the process-wide citizenship registry.

    Parameters:
        path: CSV file to load (defaults to the configured table)

    Returns:
        CitizenshipRegistry: The loaded registry
    """
    global _registry
    if path is None:
        from fhir_bridge.infrastructure.settings import settings
        path = settings.citizenship_table

    _registry = CitizenshipRegistry.from_csv(path)
    logger.info(f"Loaded {len(_registry)} citizenship code(s) from {path}")
    return _registry


def get_reference_data() -> CitizenshipRegistry:
    """The registry loaded by ``initialize_reference_data``.

    Raises:
        RuntimeError: If reference data has not been initialized
    """
    if _registry is None:
        raise RuntimeError("Reference data not initialized; call initialize_reference_data() at start-up")
    return _registry


def reset_reference_data() -> None:
    """Forget the loaded registry (used by tests)."""
    global _registry
    _registry = None
