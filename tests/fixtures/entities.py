"""Registry entity and record fixtures."""

import pytest

from erengine.models import (
    BatchRun,
    Decision,
    EntityKind,
    IncomingRecord,
    RegistryEntity,
    RegistrySnapshot,
)

# =========================
# Employer Fixtures
# =========================

SAMPLE_EMPLOYERS = [
    RegistryEntity(id="e1", kind=EntityKind.EMPLOYER, name="Acme Pty Ltd"),
    RegistryEntity(id="e2", kind=EntityKind.EMPLOYER, name="Bravo Constructions"),
    RegistryEntity(
        id="e3",
        kind=EntityKind.EMPLOYER,
        name="Beta Industries",
        aliases=("Southern Cross Builders",),
    ),
    RegistryEntity(
        id="e4",
        kind=EntityKind.EMPLOYER,
        name="Gamma Holdings",
        identifiers={"incolink_id": "INC-100"},
    ),
]


# =========================
# Patch Fixtures
# =========================

SAMPLE_PATCHES = [
    RegistryEntity(id="p1", kind=EntityKind.PATCH, name="North Zone"),
    RegistryEntity(id="p2", kind=EntityKind.PATCH, name="Harbour Precinct"),
]


def make_record(
    name: str,
    ordinal: int = 0,
    kind: EntityKind = EntityKind.EMPLOYER,
    external_id: str | None = None,
    **payload,
) -> IncomingRecord:
    """Build a valid incoming record."""
    return IncomingRecord.build(kind, name, ordinal, external_id=external_id, payload=payload)


def make_decision(
    name: str,
    ordinal: int = 0,
    kind: EntityKind = EntityKind.EMPLOYER,
    external_id: str | None = None,
) -> Decision:
    """Build an undecided Decision for a record."""
    return Decision(record=make_record(name, ordinal, kind, external_id))


def make_run(snapshot: RegistrySnapshot, decisions: list[Decision]) -> BatchRun:
    """Build a BatchRun directly from decisions, with reporting computed."""
    run = BatchRun(kind=snapshot.kind, snapshot=snapshot, decisions=decisions)
    run.refresh()
    return run


@pytest.fixture
def employer_snapshot() -> RegistrySnapshot:
    """Snapshot of the sample employer registry."""
    return RegistrySnapshot(EntityKind.EMPLOYER, SAMPLE_EMPLOYERS)


@pytest.fixture
def patch_snapshot() -> RegistrySnapshot:
    """Snapshot of the sample patch registry."""
    return RegistrySnapshot(EntityKind.PATCH, SAMPLE_PATCHES)


@pytest.fixture
def employer_records() -> list[IncomingRecord]:
    """One exact, one fuzzy and one unmatched employer row."""
    return [
        make_record("ACME PTY LTD", 0, external_id="INC-001"),
        make_record("Bravo Construction Co", 1, external_id="INC-002"),
        make_record("Zenith Plumbing", 2),
    ]
