"""SQL registry adapter.

Reads and writes the ``registry_entities`` and ``entity_references`` tables
through SQLAlchemy async sessions. Aliases, identifiers and attributes are
stored as JSON text so the same schema runs on PostgreSQL and SQLite.
"""

import json
from datetime import datetime, timezone
from typing import Any, Iterable
from uuid import uuid4

from sqlalchemy import DateTime, bindparam, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db import get_db_session
from ..errors import RegistryError
from ..logging import get_context_logger
from ..models.base import EntityKind, RegistryEntity, RegistrySnapshot

logger = get_context_logger(__name__)


def _now_param():
    return bindparam("now", type_=DateTime(timezone=True))


class SqlRegistry:
    """Registry backed by the SQL registry tables."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        identifier_fields: Iterable[str] = (),
    ):
        """Initialize the adapter.

        Args:
            session_factory: Session factory to use (defaults to the one
                built from settings)
            identifier_fields: Attribute keys stored as identifying attributes
        """
        self.session_factory = session_factory
        self.identifier_fields = frozenset(identifier_fields)

    # =========================
    # RegistryReader
    # =========================

    async def fetch_registry_snapshot(self, kind: EntityKind) -> RegistrySnapshot:
        """Load every entity of one kind in a single query."""
        kind = EntityKind(kind)
        async with get_db_session(self.session_factory) as db:
            query = text("""
                SELECT id, kind, name, aliases, identifiers, geometry
                FROM registry_entities
                WHERE kind = :kind
                ORDER BY name, id
            """)
            result = await db.execute(query, {"kind": kind.value})
            rows = result.fetchall()

        entities = [self._row_to_entity(row) for row in rows]
        logger.debug(f"Fetched {len(entities)} {kind.value} entities from registry")
        return RegistrySnapshot(kind, entities)

    async def get(self, entity_id: str) -> RegistryEntity | None:
        async with get_db_session(self.session_factory) as db:
            query = text("""
                SELECT id, kind, name, aliases, identifiers, geometry
                FROM registry_entities
                WHERE id = :id
            """)
            result = await db.execute(query, {"id": entity_id})
            row = result.fetchone()
        return self._row_to_entity(row) if row else None

    async def attributes(self, entity_id: str) -> dict[str, Any]:
        async with get_db_session(self.session_factory) as db:
            query = text("SELECT attributes FROM registry_entities WHERE id = :id")
            result = await db.execute(query, {"id": entity_id})
            row = result.fetchone()
        return json.loads(row.attributes) if row else {}

    async def references_to(self, entity_id: str) -> list[str]:
        async with get_db_session(self.session_factory) as db:
            query = text("""
                SELECT id FROM entity_references
                WHERE entity_id = :entity_id
                ORDER BY id
            """)
            result = await db.execute(query, {"entity_id": entity_id})
            return [row.id for row in result.fetchall()]

    # =========================
    # RegistryWriter
    # =========================

    async def create_entity(self, kind: EntityKind, attrs: dict[str, Any]) -> str:
        name = attrs.get("name")
        if not name:
            raise RegistryError("cannot create an entity without a name")

        identifiers, attributes = self._split(attrs)
        entity_id = uuid4().hex

        async with get_db_session(self.session_factory) as db:
            query = text("""
                INSERT INTO registry_entities (
                    id, kind, name, aliases, identifiers,
                    attributes, geometry, created_at, updated_at
                ) VALUES (
                    :id, :kind, :name, '[]', :identifiers,
                    :attributes, :geometry, :now, :now
                )
            """).bindparams(_now_param())
            await db.execute(
                query,
                {
                    "id": entity_id,
                    "kind": EntityKind(kind).value,
                    "name": name,
                    "identifiers": json.dumps(identifiers),
                    "attributes": json.dumps(attributes, default=str),
                    "geometry": attrs.get("geometry"),
                    "now": datetime.now(timezone.utc),
                },
            )

        logger.debug(f"Created {EntityKind(kind).value} {entity_id} ({name})")
        return entity_id

    async def update_entity(self, kind: EntityKind, entity_id: str, attrs: dict[str, Any]) -> None:
        async with get_db_session(self.session_factory) as db:
            current = await self._require(db, kind, entity_id)

            new_identifiers, new_attributes = self._split(attrs)
            identifiers = json.loads(current.identifiers)
            identifiers.update(new_identifiers)
            attributes = json.loads(current.attributes)
            attributes.update(new_attributes)

            query = text("""
                UPDATE registry_entities
                SET name = :name,
                    geometry = :geometry,
                    identifiers = :identifiers,
                    attributes = :attributes,
                    updated_at = :now
                WHERE id = :id
            """).bindparams(_now_param())
            await db.execute(
                query,
                {
                    "id": entity_id,
                    "name": attrs.get("name") or current.name,
                    "geometry": attrs.get("geometry", current.geometry),
                    "identifiers": json.dumps(identifiers),
                    "attributes": json.dumps(attributes, default=str),
                    "now": datetime.now(timezone.utc),
                },
            )

    async def merge_entities(
        self,
        kind: EntityKind,
        primary_id: str,
        duplicate_ids: list[str],
    ) -> None:
        """Merge duplicates into the primary entity in one transaction.

        References are reassigned to the primary, duplicate names are kept
        as aliases of the primary and the duplicates are deleted.
        """
        duplicates = [d for d in dict.fromkeys(duplicate_ids) if d != primary_id]
        if not duplicates:
            return

        async with get_db_session(self.session_factory) as db:
            primary = await self._require(db, kind, primary_id)

            names_query = text("""
                SELECT id, name FROM registry_entities
                WHERE kind = :kind AND id IN :ids
            """).bindparams(bindparam("ids", expanding=True))
            result = await db.execute(
                names_query, {"kind": EntityKind(kind).value, "ids": duplicates}
            )
            found = {row.id: row.name for row in result.fetchall()}
            missing = [d for d in duplicates if d not in found]
            if missing:
                raise RegistryError(f"cannot merge unknown entities: {missing}")

            update_refs_query = text("""
                UPDATE entity_references
                SET entity_id = :primary_id
                WHERE entity_id IN :ids
            """).bindparams(bindparam("ids", expanding=True))
            await db.execute(update_refs_query, {"primary_id": primary_id, "ids": duplicates})

            aliases = json.loads(primary.aliases)
            for duplicate_id in duplicates:
                name = found[duplicate_id]
                if name != primary.name and name not in aliases:
                    aliases.append(name)

            aliases_query = text("""
                UPDATE registry_entities
                SET aliases = :aliases, updated_at = :now
                WHERE id = :primary_id
            """).bindparams(_now_param())
            await db.execute(
                aliases_query,
                {
                    "aliases": json.dumps(aliases),
                    "primary_id": primary_id,
                    "now": datetime.now(timezone.utc),
                },
            )

            delete_query = text("""
                DELETE FROM registry_entities
                WHERE id IN :ids
            """).bindparams(bindparam("ids", expanding=True))
            await db.execute(delete_query, {"ids": duplicates})

        logger.info(f"Merged {len(duplicates)} entities into {primary_id}")

    # =========================
    # Setup helpers
    # =========================

    async def add(self, entity: RegistryEntity) -> str:
        """Insert an existing entity with a fixed id."""
        async with get_db_session(self.session_factory) as db:
            query = text("""
                INSERT INTO registry_entities (
                    id, kind, name, aliases, identifiers,
                    attributes, geometry, created_at, updated_at
                ) VALUES (
                    :id, :kind, :name, :aliases, :identifiers,
                    '{}', :geometry, :now, :now
                )
            """).bindparams(_now_param())
            await db.execute(
                query,
                {
                    "id": entity.id,
                    "kind": entity.kind.value,
                    "name": entity.name,
                    "aliases": json.dumps(list(entity.aliases)),
                    "identifiers": json.dumps(entity.identifiers),
                    "geometry": entity.geometries[0] if entity.geometries else None,
                    "now": datetime.now(timezone.utc),
                },
            )
        return entity.id

    async def add_reference(
        self,
        reference_id: str,
        entity_id: str,
        reference_type: str = "project",
    ) -> None:
        """Record a foreign reference to an entity."""
        async with get_db_session(self.session_factory) as db:
            query = text("""
                INSERT INTO entity_references (id, entity_id, reference_type, created_at)
                VALUES (:id, :entity_id, :reference_type, :now)
            """).bindparams(_now_param())
            await db.execute(
                query,
                {
                    "id": reference_id,
                    "entity_id": entity_id,
                    "reference_type": reference_type,
                    "now": datetime.now(timezone.utc),
                },
            )

    # =========================
    # Internals
    # =========================

    async def _require(self, db: AsyncSession, kind: EntityKind, entity_id: str):
        query = text("""
            SELECT id, kind, name, aliases, identifiers, attributes, geometry
            FROM registry_entities
            WHERE id = :id
        """)
        result = await db.execute(query, {"id": entity_id})
        row = result.fetchone()
        if row is None:
            raise RegistryError(f"entity {entity_id} not found")
        if row.kind != EntityKind(kind).value:
            raise RegistryError(f"entity {entity_id} is not a {EntityKind(kind).value}")
        return row

    def _split(self, attrs: dict[str, Any]) -> tuple[dict[str, str], dict[str, Any]]:
        """Split write attributes into identifiers and free-form attributes."""
        identifiers: dict[str, str] = {}
        attributes: dict[str, Any] = {}
        for key, value in attrs.items():
            if key in ("name", "geometry"):
                continue
            if key in self.identifier_fields:
                identifiers[key] = str(value)
            else:
                attributes[key] = value
        return identifiers, attributes

    @staticmethod
    def _row_to_entity(row) -> RegistryEntity:
        """Convert database row to RegistryEntity."""
        identifiers = json.loads(row.identifiers) if row.identifiers else {}
        return RegistryEntity(
            id=row.id,
            kind=EntityKind(row.kind),
            name=row.name,
            aliases=tuple(json.loads(row.aliases) if row.aliases else ()),
            identifiers={k: str(v) for k, v in identifiers.items() if v is not None},
            geometries=(row.geometry,) if row.geometry else (),
        )
