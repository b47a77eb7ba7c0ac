"""Registry collaborator interfaces.

The engine reads the registry once per batch (``fetch_registry_snapshot``)
and writes to it only from the merge executor.
"""

from typing import Any, Protocol, runtime_checkable

from ..models.base import EntityKind, RegistrySnapshot


@runtime_checkable
class RegistryReader(Protocol):
    """Read side of the registry."""

    async def fetch_registry_snapshot(self, kind: EntityKind) -> RegistrySnapshot:
        ...


@runtime_checkable
class RegistryWriter(Protocol):
    """Write side of the registry.

    Implementations raise on failure; the executor attributes the error to
    the record or merge group that caused it.
    """

    async def create_entity(self, kind: EntityKind, attrs: dict[str, Any]) -> str:
        ...

    async def update_entity(self, kind: EntityKind, entity_id: str, attrs: dict[str, Any]) -> None:
        ...

    async def merge_entities(
        self,
        kind: EntityKind,
        primary_id: str,
        duplicate_ids: list[str],
    ) -> None:
        ...
