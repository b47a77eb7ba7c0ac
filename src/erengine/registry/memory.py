"""Dict-backed registry.

Implements both registry ports in process memory. Foreign references to
entities are tracked so that merges can be verified the same way as against
a database.
"""

from typing import Any, Iterable
from uuid import uuid4

from ..errors import RegistryError
from ..logging import get_context_logger
from ..models.base import EntityKind, RegistryEntity, RegistrySnapshot

logger = get_context_logger(__name__)


class InMemoryRegistry:
    """In-memory registry of employers and patches.

    Attributes written by ``create_entity``/``update_entity`` are split the
    same way as in the SQL adapter: ``name`` and ``geometry`` are columns of
    their own, keys listed in ``identifier_fields`` become identifiers and
    everything else lands in the free-form attributes.
    """

    def __init__(
        self,
        entities: Iterable[RegistryEntity] = (),
        identifier_fields: Iterable[str] = (),
    ):
        self.identifier_fields = frozenset(identifier_fields)
        self._rows: dict[str, dict[str, Any]] = {}
        # reference id -> entity id
        self._references: dict[str, str] = {}
        for entity in entities:
            self.add(entity)

    # =========================
    # Setup helpers
    # =========================

    def add(self, entity: RegistryEntity) -> str:
        """Insert an existing entity as-is."""
        if entity.id in self._rows:
            raise RegistryError(f"entity {entity.id} already exists")
        self._rows[entity.id] = {
            "kind": entity.kind,
            "name": entity.name,
            "aliases": list(entity.aliases),
            "identifiers": dict(entity.identifiers),
            "attributes": {},
            "geometry": entity.geometries[0] if entity.geometries else None,
        }
        return entity.id

    def add_reference(self, reference_id: str, entity_id: str) -> None:
        """Record a foreign reference (e.g. a project site) to an entity."""
        if entity_id not in self._rows:
            raise RegistryError(f"entity {entity_id} not found")
        self._references[reference_id] = entity_id

    def references_to(self, entity_id: str) -> list[str]:
        return [ref for ref, target in self._references.items() if target == entity_id]

    def get(self, entity_id: str) -> RegistryEntity | None:
        row = self._rows.get(entity_id)
        return self._to_entity(entity_id, row) if row else None

    def attributes(self, entity_id: str) -> dict[str, Any]:
        """Free-form attributes of an entity (empty if unknown)."""
        row = self._rows.get(entity_id)
        return dict(row["attributes"]) if row else {}

    def find_by_name(self, name: str) -> list[RegistryEntity]:
        return [
            self._to_entity(entity_id, row)
            for entity_id, row in self._rows.items()
            if row["name"] == name
        ]

    def __len__(self) -> int:
        return len(self._rows)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._rows

    # =========================
    # RegistryReader
    # =========================

    async def fetch_registry_snapshot(self, kind: EntityKind) -> RegistrySnapshot:
        kind = EntityKind(kind)
        entities = [
            self._to_entity(entity_id, row)
            for entity_id, row in self._rows.items()
            if row["kind"] == kind
        ]
        return RegistrySnapshot(kind, entities)

    # =========================
    # RegistryWriter
    # =========================

    async def create_entity(self, kind: EntityKind, attrs: dict[str, Any]) -> str:
        name = attrs.get("name")
        if not name:
            raise RegistryError("cannot create an entity without a name")
        entity_id = uuid4().hex
        self._rows[entity_id] = {
            "kind": EntityKind(kind),
            "name": name,
            "aliases": [],
            "identifiers": {},
            "attributes": {},
            "geometry": None,
        }
        self._apply(self._rows[entity_id], attrs)
        logger.debug(f"Created {EntityKind(kind).value} {entity_id} ({name})")
        return entity_id

    async def update_entity(self, kind: EntityKind, entity_id: str, attrs: dict[str, Any]) -> None:
        row = self._require(kind, entity_id)
        self._apply(row, attrs)

    async def merge_entities(
        self,
        kind: EntityKind,
        primary_id: str,
        duplicate_ids: list[str],
    ) -> None:
        """Reassign references from the duplicates to the primary, then delete them.

        All ids are validated before anything changes, so a failed merge
        leaves the registry untouched.
        """
        primary = self._require(kind, primary_id)
        duplicates = [d for d in duplicate_ids if d != primary_id]
        for duplicate_id in duplicates:
            self._require(kind, duplicate_id)

        for reference_id, target in list(self._references.items()):
            if target in duplicates:
                self._references[reference_id] = primary_id

        for duplicate_id in duplicates:
            row = self._rows.pop(duplicate_id)
            if row["name"] != primary["name"] and row["name"] not in primary["aliases"]:
                primary["aliases"].append(row["name"])

    # =========================
    # Internals
    # =========================

    def _require(self, kind: EntityKind, entity_id: str) -> dict[str, Any]:
        row = self._rows.get(entity_id)
        if row is None:
            raise RegistryError(f"entity {entity_id} not found")
        if row["kind"] != EntityKind(kind):
            raise RegistryError(f"entity {entity_id} is not a {EntityKind(kind).value}")
        return row

    def _apply(self, row: dict[str, Any], attrs: dict[str, Any]) -> None:
        for key, value in attrs.items():
            if key == "name":
                row["name"] = value
            elif key == "geometry":
                row["geometry"] = value
            elif key in self.identifier_fields:
                row["identifiers"][key] = value
            else:
                row["attributes"][key] = value

    @staticmethod
    def _to_entity(entity_id: str, row: dict[str, Any]) -> RegistryEntity:
        return RegistryEntity(
            id=entity_id,
            kind=row["kind"],
            name=row["name"],
            aliases=tuple(row["aliases"]),
            identifiers={k: str(v) for k, v in row["identifiers"].items() if v is not None},
            geometries=(row["geometry"],) if row["geometry"] is not None else (),
        )
