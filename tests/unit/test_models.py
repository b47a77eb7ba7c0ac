"""Tests for record, snapshot and decision models."""

from datetime import datetime

import pytest

from erengine.errors import InvalidRecordError
from erengine.models import (
    Decision,
    DecisionAction,
    EntityKind,
    IncomingRecord,
    RegistryEntity,
    RegistrySnapshot,
    build_records,
)

from fixtures.entities import make_record


class TestIncomingRecord:
    """Tests for IncomingRecord validation."""

    def test_build(self):
        """Test building a valid record."""
        record = IncomingRecord.build(
            "employer", "  Acme Pty Ltd ", 4, external_id=" INC-9 ", payload={"suburb": "Carlton"}
        )

        assert record.kind == EntityKind.EMPLOYER
        assert record.label == "Acme Pty Ltd"
        assert record.external_id == "INC-9"
        assert record.payload == {"suburb": "Carlton"}

    def test_blank_external_id_becomes_none(self):
        """Test that a whitespace-only external id is dropped."""
        assert make_record("Acme", external_id="   ").external_id is None

    @pytest.mark.parametrize("name", ["", "   ", "\t\n"])
    def test_blank_name_rejected(self, name):
        """Test that records without a usable name never enter the pipeline."""
        with pytest.raises(InvalidRecordError):
            IncomingRecord.build(EntityKind.EMPLOYER, name, 0)

    def test_unknown_payload_key_rejected(self):
        """Test that payload keys outside the kind's known set are rejected."""
        with pytest.raises(InvalidRecordError) as exc_info:
            IncomingRecord.build(EntityKind.PATCH, "North Zone", 0, payload={"abn": "1"})

        assert "#0" in str(exc_info.value)

    def test_negative_ordinal_rejected(self):
        """Test that ordinals are non-negative."""
        with pytest.raises(InvalidRecordError):
            IncomingRecord.build(EntityKind.EMPLOYER, "Acme", -1)

    def test_frozen(self):
        """Test that records cannot be changed after construction."""
        record = make_record("Acme")

        with pytest.raises(ValueError):
            record.name = "Other"


class TestBuildRecords:
    """Tests for build_records."""

    def test_filters_malformed_rows(self):
        """Test that nameless rows are rejected and the rest keep their position."""
        rows = [
            {"company_name": "Acme Pty Ltd", "member_no": 1001, "suburb": "Carlton"},
            {"company_name": "   ", "member_no": 1002},
            {"company_name": "Bravo", "member_no": None, "notes": "ignored"},
        ]

        records, rejected = build_records(
            "employer", rows, name_field="company_name", id_field="member_no"
        )

        assert [r.name for r in records] == ["Acme Pty Ltd", "Bravo"]
        assert [r.ordinal for r in records] == [0, 2]
        assert records[0].external_id == "1001"
        assert records[0].payload == {"suburb": "Carlton"}
        assert records[1].external_id is None
        assert records[1].payload == {}
        assert len(rejected) == 1
        assert "#1" in rejected[0]

    def test_missing_name_column(self):
        """Test that a row without the name column is rejected."""
        records, rejected = build_records(EntityKind.PATCH, [{"code": "NZ"}])

        assert records == []
        assert len(rejected) == 1


class TestRegistrySnapshot:
    """Tests for RegistrySnapshot."""

    def test_lookup(self, employer_snapshot):
        """Test id lookup and display names."""
        assert employer_snapshot.kind == EntityKind.EMPLOYER
        assert len(employer_snapshot) == 4
        assert "e1" in employer_snapshot
        assert employer_snapshot.get("e3").aliases == ("Southern Cross Builders",)
        assert employer_snapshot.get("missing") is None
        assert employer_snapshot.name_of("e2") == "Bravo Constructions"
        assert employer_snapshot.name_of("missing") == "missing"

    def test_iteration_order(self, employer_snapshot):
        """Test that entities iterate in the order they were given."""
        assert [e.id for e in employer_snapshot] == ["e1", "e2", "e3", "e4"]

    def test_fetched_at(self):
        """Test that the fetch time is kept."""
        fetched_at = datetime(2024, 3, 1, 9, 30)
        snapshot = RegistrySnapshot("patch", [], fetched_at=fetched_at)

        assert snapshot.fetched_at == fetched_at
        assert snapshot.kind == EntityKind.PATCH
        assert len(snapshot) == 0

    def test_entities_frozen(self):
        """Test that registry entities are immutable."""
        entity = RegistryEntity(id="e1", kind=EntityKind.EMPLOYER, name="Acme")

        with pytest.raises(ValueError):
            entity.name = "Other"


class TestDecisionInvariants:
    """Tests for Decision.check_invariants."""

    def test_pending_is_valid(self):
        """Test that a fresh decision is consistent."""
        Decision(record=make_record("Acme")).check_invariants()

    def test_use_existing_requires_target(self):
        """Test that use_existing without targets is inconsistent."""
        decision = Decision(record=make_record("Acme"), action=DecisionAction.USE_EXISTING)

        with pytest.raises(ValueError):
            decision.check_invariants()

    def test_create_new_rejects_targets(self):
        """Test that create_new with targets is inconsistent."""
        decision = Decision(
            record=make_record("Acme"), action=DecisionAction.CREATE_NEW, target_ids=["e1"]
        )

        with pytest.raises(ValueError):
            decision.check_invariants()

    def test_duplicates_need_single_target(self):
        """Test that duplicate flags require exactly one primary."""
        decision = Decision(
            record=make_record("Acme"),
            action=DecisionAction.USE_EXISTING,
            target_ids=["e1", "e2"],
            duplicate_ids=["e5"],
        )

        with pytest.raises(ValueError):
            decision.check_invariants()

    def test_repeated_target_rejected(self):
        """Test that a target id may only appear once."""
        decision = Decision(
            record=make_record("Acme"),
            action=DecisionAction.USE_EXISTING,
            target_ids=["e1", "e1"],
        )

        with pytest.raises(ValueError):
            decision.check_invariants()
