"""Batch-level models: statistics, cardinality report and the BatchRun itself."""

from datetime import datetime
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from .base import EntityKind, RegistrySnapshot
from .decisions import ConfidenceTier, Decision, DecisionAction


class BatchStatistics(BaseModel):
    """Aggregate statistics for a set of decisions."""

    total: int = 0
    exact_matches: int = 0
    high_confidence: int = 0
    medium_confidence: int = 0
    low_confidence: int = 0
    no_matches: int = 0
    matched_total: int = 0
    match_rate: float = 0.0

    pending_review: int = 0
    use_existing: int = 0
    create_new: int = 0
    skipped: int = 0

    @classmethod
    def from_decisions(cls, decisions: list[Decision]) -> "BatchStatistics":
        """Count tiers (by best candidate) and actions across decisions."""
        stats = cls(total=len(decisions))
        for decision in decisions:
            match decision.tier:
                case ConfidenceTier.EXACT:
                    stats.exact_matches += 1
                case ConfidenceTier.HIGH:
                    stats.high_confidence += 1
                case ConfidenceTier.MEDIUM:
                    stats.medium_confidence += 1
                case ConfidenceTier.LOW:
                    stats.low_confidence += 1
                case _:
                    stats.no_matches += 1

            match decision.action:
                case DecisionAction.PENDING:
                    stats.pending_review += 1
                case DecisionAction.USE_EXISTING:
                    stats.use_existing += 1
                case DecisionAction.CREATE_NEW:
                    stats.create_new += 1
                case DecisionAction.SKIP:
                    stats.skipped += 1

        stats.matched_total = stats.total - stats.no_matches
        stats.match_rate = (
            stats.matched_total / stats.total * 100 if stats.total > 0 else 0.0
        )
        return stats


class OneToManyMapping(BaseModel):
    """One record mapped to several registry entities."""

    ordinal: int
    label: str
    entity_ids: list[str]
    entity_names: list[str]


class ManyToOneMapping(BaseModel):
    """Several records mapped to the same registry entity."""

    entity_id: str
    entity_name: str
    ordinals: list[int]
    labels: list[str]


class CardinalityReport(BaseModel):
    """Non-trivial mappings that must be confirmed before execution."""

    one_to_many: list[OneToManyMapping] = Field(default_factory=list)
    many_to_one: list[ManyToOneMapping] = Field(default_factory=list)

    @property
    def requires_confirmation(self) -> bool:
        return bool(self.one_to_many or self.many_to_one)


class DuplicateMergeGroup(BaseModel):
    """Registry entities flagged as duplicates of one primary entity."""

    primary_id: str
    duplicate_ids: list[str]
    ordinals: list[int]
    labels: list[str]


class BatchRun(BaseModel):
    """The decisions of one reconciliation session plus aggregate reporting.

    Created by the batch orchestrator, mutated only through the resolver's
    override operations, consumed once by the merge executor.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    run_id: str = Field(default_factory=lambda: uuid4().hex)
    kind: EntityKind
    snapshot: RegistrySnapshot
    decisions: list[Decision] = Field(default_factory=list)
    statistics: BatchStatistics = Field(default_factory=BatchStatistics)
    cardinality: CardinalityReport = Field(default_factory=CardinalityReport)
    cardinality_acknowledged: bool = False
    duplicate_groups: list[DuplicateMergeGroup] = Field(default_factory=list)
    duplicates_confirmed: bool = False
    cancelled: bool = False
    not_processed: list[int] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: datetime | None = None

    def decision_for(self, ordinal: int) -> Decision | None:
        """Look up the decision for a record ordinal."""
        for decision in self.decisions:
            if decision.ordinal == ordinal:
                return decision
        return None

    def refresh(self) -> None:
        """Recompute statistics, cardinality and duplicate groups after overrides."""
        from ..resolution.batch import refresh_batch

        refresh_batch(self)

    def acknowledge_cardinality(self) -> None:
        """Record the caller's explicit confirmation of the current mappings."""
        self.cardinality_acknowledged = True

    def confirm_duplicate_merges(self) -> None:
        """Record the caller's explicit confirmation of the flagged merges."""
        self.duplicates_confirmed = True
