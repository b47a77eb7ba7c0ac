"""Tests for candidate generation and matching options."""

import pytest

from erengine.models import ConfidenceTier, EntityKind, MatchType, RegistryEntity, RegistrySnapshot
from erengine.resolution.candidates import CandidateGenerator, MatchingOptions, generate_candidates

from fixtures.entities import make_record


class TestMatchingOptions:
    """Tests for MatchingOptions validation and tiering."""

    def test_defaults(self):
        """Test default thresholds."""
        options = MatchingOptions()

        assert options.confidence_threshold == 0.70
        assert options.medium_threshold == 0.80
        assert options.high_threshold == 0.90
        assert options.top_k == 5
        assert options.require_user_confirmation is True

    def test_thresholds_must_be_ordered(self):
        """Test that a confidence threshold above medium is rejected."""
        with pytest.raises(ValueError):
            MatchingOptions(confidence_threshold=0.9, medium_threshold=0.8, high_threshold=0.95)

    def test_high_threshold_below_one(self):
        """Test that the high threshold cannot swallow the exact tier."""
        with pytest.raises(ValueError):
            MatchingOptions(high_threshold=1.0)

    def test_unmatched_action_cannot_use_existing(self):
        """Test that unmatched records cannot default to use_existing."""
        with pytest.raises(ValueError):
            MatchingOptions(unmatched_action="use_existing")

    def test_tier_for(self):
        """Test score to tier mapping at the boundaries."""
        options = MatchingOptions()

        assert options.tier_for(1.0) == ConfidenceTier.EXACT
        assert options.tier_for(0.9) == ConfidenceTier.HIGH
        assert options.tier_for(0.85) == ConfidenceTier.MEDIUM
        assert options.tier_for(0.7) == ConfidenceTier.LOW
        assert options.tier_for(0.69) is None

    def test_from_settings_with_overrides(self, monkeypatch):
        """Test that options follow settings and accept per-call overrides."""
        monkeypatch.setenv("MATCH_TOP_K", "3")
        monkeypatch.setenv("MATCH_CONFIDENCE_THRESHOLD", "0.75")

        options = MatchingOptions.from_settings(require_user_confirmation=False)

        assert options.top_k == 3
        assert options.confidence_threshold == 0.75
        assert options.require_user_confirmation is False


class TestCandidateGenerator:
    """Tests for CandidateGenerator."""

    def test_exact_scenario(self):
        """Test that 'ACME PTY LTD' finds 'Acme Pty Ltd' as an exact candidate."""
        snapshot = RegistrySnapshot(
            EntityKind.EMPLOYER,
            [RegistryEntity(id="e1", kind=EntityKind.EMPLOYER, name="Acme Pty Ltd")],
        )

        candidates = generate_candidates(make_record("ACME PTY LTD"), snapshot)

        assert len(candidates) == 1
        assert candidates[0].entity_id == "e1"
        assert candidates[0].score == 1.0
        assert candidates[0].tier == ConfidenceTier.EXACT
        assert candidates[0].match_type == MatchType.NAME

    def test_fuzzy_scenario(self):
        """Test that a near name is offered with a high or medium tier."""
        snapshot = RegistrySnapshot(
            EntityKind.EMPLOYER,
            [RegistryEntity(id="e1", kind=EntityKind.EMPLOYER, name="Acme Constructions")],
        )

        candidates = generate_candidates(make_record("Acme Construction Co"), snapshot)

        assert [c.entity_id for c in candidates] == ["e1"]
        assert candidates[0].tier in (ConfidenceTier.HIGH, ConfidenceTier.MEDIUM)

    def test_sorted_and_capped(self):
        """Test that candidates are sorted by score and capped at top_k."""
        names = [
            "Acme Group",
            "Acme Group North",
            "Acme Group South",
            "Acme Group East",
            "Acme Group West",
            "Acme Group Central",
            "Acme Groups",
            "Acme Grouping Services",
        ]
        snapshot = RegistrySnapshot(
            EntityKind.EMPLOYER,
            [
                RegistryEntity(id=f"e{i}", kind=EntityKind.EMPLOYER, name=name)
                for i, name in enumerate(names)
            ],
        )
        options = MatchingOptions(top_k=5)

        candidates = generate_candidates(make_record("Acme Group"), snapshot, options)

        assert len(candidates) == 5
        scores = [c.score for c in candidates]
        assert scores == sorted(scores, reverse=True)
        assert candidates[0].entity_id == "e0"
        assert candidates[0].tier == ConfidenceTier.EXACT

    def test_nothing_below_threshold(self, employer_snapshot):
        """Test that no candidate below the confidence threshold is returned."""
        options = MatchingOptions(
            confidence_threshold=0.95,
            medium_threshold=0.96,
            high_threshold=0.97,
        )

        candidates = generate_candidates(
            make_record("Bravo Construction Co"), employer_snapshot, options
        )

        assert candidates == []

    def test_every_candidate_above_threshold(self, employer_snapshot, employer_records):
        """Test the threshold property across the sample records."""
        options = MatchingOptions()
        for record in employer_records:
            for candidate in generate_candidates(record, employer_snapshot, options):
                assert candidate.score >= options.confidence_threshold

    def test_no_match(self, employer_snapshot):
        """Test that an unrelated name yields no candidates."""
        assert generate_candidates(make_record("Zenith Plumbing"), employer_snapshot) == []

    def test_fuzzy_disabled(self, employer_snapshot):
        """Test that only exact matches survive when fuzzy matching is off."""
        options = MatchingOptions(allow_fuzzy_matching=False)

        assert generate_candidates(
            make_record("Bravo Construction Co"), employer_snapshot, options
        ) == []
        exact = generate_candidates(make_record("ACME PTY LTD"), employer_snapshot, options)
        assert [c.entity_id for c in exact] == ["e1"]

    def test_fuzzy_disabled_ignores_aliases(self, employer_snapshot):
        """Test that an alias hit, never exact, is dropped when fuzzy matching is off."""
        options = MatchingOptions(allow_fuzzy_matching=False)

        assert generate_candidates(
            make_record("Southern Cross Builders"), employer_snapshot, options
        ) == []

    def test_kind_mismatch(self, patch_snapshot):
        """Test that records never match entities of another kind."""
        assert generate_candidates(make_record("North Zone"), patch_snapshot) == []


class TestAliasAndIdentifierMatching:
    """Tests for alias and identifier signals."""

    def test_alias_boosted_but_not_exact(self, employer_snapshot):
        """Test that an exact alias hit is capped below the exact tier."""
        candidates = generate_candidates(make_record("Southern Cross Builders"), employer_snapshot)

        assert len(candidates) == 1
        candidate = candidates[0]
        assert candidate.entity_id == "e3"
        assert candidate.name == "Beta Industries"
        assert candidate.match_type == MatchType.ALIAS
        assert candidate.matched_alias == "Southern Cross Builders"
        assert candidate.score == pytest.approx(0.94)
        assert candidate.tier == ConfidenceTier.HIGH

    def test_aliases_can_be_ignored(self, employer_snapshot):
        """Test that alias matching can be switched off."""
        options = MatchingOptions(include_aliases=False)

        assert generate_candidates(
            make_record("Southern Cross Builders"), employer_snapshot, options
        ) == []

    def test_identifier_match_is_exact(self, employer_snapshot):
        """Test that a matching external id is an exact candidate."""
        options = MatchingOptions(identifier_field="incolink_id")
        record = make_record("Totally Different Trading", external_id="INC-100")

        candidates = generate_candidates(record, employer_snapshot, options)

        assert [c.entity_id for c in candidates] == ["e4"]
        assert candidates[0].score == 1.0
        assert candidates[0].tier == ConfidenceTier.EXACT
        assert candidates[0].match_type == MatchType.IDENTIFIER

    def test_identifier_ignored_without_field(self, employer_snapshot):
        """Test that identifiers only count when a field is configured."""
        record = make_record("Totally Different Trading", external_id="INC-100")

        assert generate_candidates(record, employer_snapshot) == []

    def test_name_ranks_before_identifier_on_ties(self):
        """Test the match-type tie-break among equal scores."""
        snapshot = RegistrySnapshot(
            EntityKind.EMPLOYER,
            [
                RegistryEntity(
                    id="z-by-id",
                    kind=EntityKind.EMPLOYER,
                    name="Delta Services",
                    identifiers={"incolink_id": "INC-7"},
                ),
                RegistryEntity(id="a-by-name", kind=EntityKind.EMPLOYER, name="Gamma Pty Ltd"),
            ],
        )
        options = MatchingOptions(identifier_field="incolink_id")

        candidates = generate_candidates(
            make_record("Gamma", external_id="INC-7"), snapshot, options
        )

        assert [c.entity_id for c in candidates] == ["a-by-name", "z-by-id"]
        assert [c.match_type for c in candidates] == [MatchType.NAME, MatchType.IDENTIFIER]

    def test_entity_listed_once(self):
        """Test that an entity matching on several signals appears once."""
        snapshot = RegistrySnapshot(
            EntityKind.EMPLOYER,
            [
                RegistryEntity(
                    id="e1",
                    kind=EntityKind.EMPLOYER,
                    name="Gamma Pty Ltd",
                    aliases=("Gamma",),
                    identifiers={"incolink_id": "INC-7"},
                )
            ],
        )
        generator = CandidateGenerator(MatchingOptions(identifier_field="incolink_id"))

        candidates = generator.generate(make_record("Gamma", external_id="INC-7"), snapshot)

        assert len(candidates) == 1
        assert candidates[0].match_type == MatchType.NAME
