"""Base models for records entering the pipeline and registry entities."""

from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Iterator

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from ..errors import InvalidRecordError


class EntityKind(str, Enum):
    """Entity families the engine reconciles."""

    EMPLOYER = "employer"
    PATCH = "patch"


# Extra source columns carried through to entity creation, per kind.
PAYLOAD_KEYS: dict[EntityKind, frozenset[str]] = {
    EntityKind.EMPLOYER: frozenset(
        {
            "employer_type",
            "abn",
            "address_line_1",
            "suburb",
            "state",
            "postcode",
            "phone",
            "email",
            "website",
            "contact_name",
            "sector",
        }
    ),
    EntityKind.PATCH: frozenset(
        {
            "code",
            "description",
            "patch_type",
            "organiser",
            "source_fid",
        }
    ),
}


class IncomingRecord(BaseModel):
    """One externally-sourced row to reconcile.

    Records are validated here, at the boundary, so that everything past
    construction can assume a usable name and a known set of payload keys.
    """

    model_config = ConfigDict(frozen=True)

    kind: EntityKind
    name: str = Field(..., description="Raw display name used for matching")
    ordinal: int = Field(..., ge=0, description="Position in the source batch")
    external_id: str | None = Field(
        default=None, description="Domain identifier, e.g. a membership id"
    )
    payload: dict[str, Any] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("record name must not be blank")
        return value

    @field_validator("external_id")
    @classmethod
    def _strip_external_id(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @model_validator(mode="after")
    def _payload_keys_known(self) -> "IncomingRecord":
        unknown = set(self.payload) - PAYLOAD_KEYS[self.kind]
        if unknown:
            raise ValueError(
                f"unrecognized {self.kind.value} payload keys: {sorted(unknown)}"
            )
        return self

    @property
    def label(self) -> str:
        """Name used in progress reports and error messages."""
        return self.name.strip()

    @classmethod
    def build(
        cls,
        kind: EntityKind | str,
        name: str,
        ordinal: int,
        external_id: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> "IncomingRecord":
        """Construct a record, raising InvalidRecordError on malformed input."""
        try:
            return cls(
                kind=kind,
                name=name,
                ordinal=ordinal,
                external_id=external_id,
                payload=payload or {},
            )
        except ValidationError as e:
            raise InvalidRecordError(
                f"record #{ordinal} ({name!r}) rejected: {e.errors()[0]['msg']}"
            ) from e


def build_records(
    kind: EntityKind | str,
    rows: Iterable[dict[str, Any]],
    name_field: str = "name",
    id_field: str | None = None,
) -> tuple[list[IncomingRecord], list[str]]:
    """Build records from parsed rows, filtering out malformed ones.

    Rows without a usable name never enter the pipeline. Columns outside the
    kind's recognized payload keys are dropped rather than rejected, since
    source files routinely carry unrelated columns.

    Args:
        kind: Entity kind of every row
        rows: Parsed source rows (already decoded from CSV/GeoJSON)
        name_field: Column holding the display name
        id_field: Column holding the external identifier, if any

    Returns:
        Tuple of (records, rejection messages)
    """
    kind = EntityKind(kind)
    allowed = PAYLOAD_KEYS[kind]
    records: list[IncomingRecord] = []
    rejected: list[str] = []

    for ordinal, row in enumerate(rows):
        name = row.get(name_field) or ""
        external_id = row.get(id_field) if id_field else None
        payload = {k: v for k, v in row.items() if k in allowed}
        try:
            records.append(
                IncomingRecord.build(
                    kind,
                    str(name),
                    ordinal,
                    external_id=str(external_id) if external_id is not None else None,
                    payload=payload,
                )
            )
        except InvalidRecordError as e:
            rejected.append(str(e))

    return records, rejected


class RegistryEntity(BaseModel):
    """An existing authoritative entity, read from the registry."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: EntityKind
    name: str
    aliases: tuple[str, ...] = ()
    identifiers: dict[str, str] = Field(default_factory=dict)
    geometries: tuple[Any, ...] = ()


class RegistrySnapshot:
    """Immutable view of the registry for the lifetime of one batch run.

    Fetched once per run by the caller and passed into every matching call;
    the engine never queries the registry itself.
    """

    __slots__ = ("_kind", "_entities", "_by_id", "_fetched_at")

    def __init__(
        self,
        kind: EntityKind | str,
        entities: Iterable[RegistryEntity],
        fetched_at: datetime | None = None,
    ):
        self._kind = EntityKind(kind)
        self._entities = tuple(entities)
        self._by_id = {e.id: e for e in self._entities}
        self._fetched_at = fetched_at or datetime.utcnow()

    @property
    def kind(self) -> EntityKind:
        return self._kind

    @property
    def entities(self) -> tuple[RegistryEntity, ...]:
        return self._entities

    @property
    def fetched_at(self) -> datetime:
        return self._fetched_at

    def get(self, entity_id: str) -> RegistryEntity | None:
        return self._by_id.get(entity_id)

    def name_of(self, entity_id: str) -> str:
        """Entity name for display, falling back to the id."""
        entity = self._by_id.get(entity_id)
        return entity.name if entity else entity_id

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._by_id

    def __len__(self) -> int:
        return len(self._entities)

    def __iter__(self) -> Iterator[RegistryEntity]:
        return iter(self._entities)

    def __repr__(self) -> str:
        return f"RegistrySnapshot(kind={self._kind.value!r}, entities={len(self._entities)})"
