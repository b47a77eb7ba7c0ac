"""Candidate generation.

Scores one incoming record against a registry snapshot and returns a ranked,
capped list of candidates with confidence tiers. Matching signals:
1. Identifier: record's external id equals the entity's stored id -> exact
2. Canonical name: similarity of the normalized names
3. Alias: similarity against each alias, boosted but capped below exact

The generator never queries the registry; callers fetch one snapshot per run.
"""

from typing import Any

from pydantic import BaseModel, Field, model_validator

from ..config import Settings, get_settings
from ..logging import get_context_logger
from ..models.base import IncomingRecord, RegistryEntity, RegistrySnapshot
from ..models.decisions import Candidate, ConfidenceTier, DecisionAction, MatchType
from .similarity import SimilarityScorer

logger = get_context_logger(__name__)

# Among equal scores: canonical name, then alias, then identifier
_MATCH_TYPE_PRIORITY = {
    MatchType.NAME: 0,
    MatchType.ALIAS: 1,
    MatchType.IDENTIFIER: 2,
}


class MatchingOptions(BaseModel):
    """Per-run matching configuration."""

    confidence_threshold: float = Field(default=0.70, ge=0.0, le=1.0)
    medium_threshold: float = Field(default=0.80, ge=0.0, le=1.0)
    high_threshold: float = Field(default=0.90, ge=0.0, le=1.0)
    allow_fuzzy_matching: bool = True
    require_user_confirmation: bool = True
    top_k: int = Field(default=5, ge=1)
    include_aliases: bool = True
    alias_boost: float = Field(default=1.1, ge=1.0)
    alias_score_cap: float = Field(default=0.94, ge=0.0, lt=1.0)
    identifier_field: str | None = Field(
        default=None,
        description="Entity identifier compared with the record's external id",
    )
    unmatched_action: DecisionAction = Field(
        default=DecisionAction.PENDING,
        description="Action for records without any candidate",
    )

    @model_validator(mode="after")
    def _thresholds_ordered(self) -> "MatchingOptions":
        if not (
            self.confidence_threshold
            <= self.medium_threshold
            <= self.high_threshold
            < 1.0
        ):
            raise ValueError(
                "thresholds must satisfy confidence <= medium <= high < 1.0"
            )
        if self.unmatched_action == DecisionAction.USE_EXISTING:
            raise ValueError("unmatched records cannot default to use_existing")
        return self

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **overrides: Any) -> "MatchingOptions":
        """Build options from application settings, with per-call overrides."""
        settings = settings or get_settings()
        values: dict[str, Any] = {
            "confidence_threshold": settings.match_confidence_threshold,
            "medium_threshold": settings.match_medium_threshold,
            "high_threshold": settings.match_high_threshold,
            "allow_fuzzy_matching": settings.match_allow_fuzzy,
            "require_user_confirmation": settings.match_require_user_confirmation,
            "top_k": settings.match_top_k,
            "alias_boost": settings.match_alias_boost,
            "alias_score_cap": settings.match_alias_score_cap,
        }
        values.update(overrides)
        return cls(**values)

    def tier_for(self, score: float) -> ConfidenceTier | None:
        """Map a score to a tier; None means below the offer threshold."""
        if score >= 1.0:
            return ConfidenceTier.EXACT
        if score >= self.high_threshold:
            return ConfidenceTier.HIGH
        if score >= self.medium_threshold:
            return ConfidenceTier.MEDIUM
        if score >= self.confidence_threshold:
            return ConfidenceTier.LOW
        return None


class CandidateGenerator:
    """Produces ranked candidates for one record against a registry snapshot."""

    def __init__(
        self,
        options: MatchingOptions | None = None,
        scorer: SimilarityScorer | None = None,
    ):
        self.options = options or MatchingOptions()
        self.scorer = scorer or SimilarityScorer()

    def generate(
        self,
        record: IncomingRecord,
        snapshot: RegistrySnapshot,
    ) -> list[Candidate]:
        """Generate candidates for a record.

        Args:
            record: Incoming record to match
            snapshot: Registry snapshot (or pre-filtered subset)

        Returns:
            Candidates sorted by score (descending), at most ``top_k``,
            none below ``confidence_threshold``
        """
        if not self.scorer.normalize(record.name):
            return []

        if snapshot.kind != record.kind:
            logger.warning(
                f"Record {record.label!r} is a {record.kind.value} but the snapshot "
                f"holds {snapshot.kind.value} entities; no candidates generated"
            )
            return []

        candidates = []
        for entity in snapshot:
            best = self._best_signal(record, entity)
            if best is None:
                continue
            score, match_type, alias = best
            tier = self.options.tier_for(score)
            if tier is None:
                continue
            candidates.append(
                Candidate(
                    entity_id=entity.id,
                    name=entity.name,
                    score=score,
                    tier=tier,
                    match_type=match_type,
                    matched_alias=alias,
                )
            )

        candidates.sort(
            key=lambda c: (
                -c.score,
                _MATCH_TYPE_PRIORITY[c.match_type],
                c.name.casefold(),
                c.entity_id,
            )
        )
        return candidates[: self.options.top_k]

    def _best_signal(
        self,
        record: IncomingRecord,
        entity: RegistryEntity,
    ) -> tuple[float, MatchType, str | None] | None:
        """Best (score, match type, alias) for one entity, or None."""
        signals: list[tuple[float, MatchType, str | None]] = []

        field = self.options.identifier_field
        if field and record.external_id:
            stored = entity.identifiers.get(field)
            if stored and stored.strip() == record.external_id:
                signals.append((1.0, MatchType.IDENTIFIER, None))

        name_score = self._admissible(self.scorer.score(record.name, entity.name))
        if name_score is not None:
            signals.append((name_score, MatchType.NAME, None))

        if self.options.include_aliases and self.options.allow_fuzzy_matching:
            for alias in entity.aliases:
                raw = self._admissible(self.scorer.score(record.name, alias))
                if raw is None or raw == 0.0:
                    continue
                boosted = min(raw * self.options.alias_boost, self.options.alias_score_cap)
                signals.append((boosted, MatchType.ALIAS, alias))

        if not signals:
            return None
        return min(signals, key=lambda s: (-s[0], _MATCH_TYPE_PRIORITY[s[1]]))

    def _admissible(self, score: float) -> float | None:
        if not self.options.allow_fuzzy_matching and score < 1.0:
            return None
        return score


def generate_candidates(
    record: IncomingRecord,
    snapshot: RegistrySnapshot,
    options: MatchingOptions | None = None,
) -> list[Candidate]:
    """Convenience function to generate candidates with default scoring.

    Args:
        record: Incoming record to match
        snapshot: Registry snapshot
        options: Matching options (defaults apply when omitted)

    Returns:
        Ranked candidate list
    """
    return CandidateGenerator(options).generate(record, snapshot)
