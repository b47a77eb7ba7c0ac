"""Candidate and Decision models.

A Decision is the single source of truth for what happens to one incoming
record. Selection flags (``is_mapped``, ``can_clear``) and the geometry mode
are derived from its target-id list on every access rather than stored.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from .base import IncomingRecord

NEW_TARGET_PREFIX = "new:"


class ConfidenceTier(str, Enum):
    """Discrete confidence bucket derived from a similarity score."""

    EXACT = "exact"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NONE = "none"


class MatchType(str, Enum):
    """What a candidate was matched on."""

    NAME = "name"
    ALIAS = "alias"
    IDENTIFIER = "identifier"


class Candidate(BaseModel):
    """A scored, proposed match between an incoming record and a registry entity."""

    model_config = ConfigDict(frozen=True)

    entity_id: str
    name: str = Field(..., description="Entity's canonical name, for presentation")
    score: float = Field(..., ge=0.0, le=1.0)
    tier: ConfidenceTier
    match_type: MatchType = MatchType.NAME
    matched_alias: str | None = None

    @property
    def distance(self) -> float:
        return 1.0 - self.score


class DecisionAction(str, Enum):
    """Resolved action for one record."""

    PENDING = "pending"
    USE_EXISTING = "use_existing"
    CREATE_NEW = "create_new"
    SKIP = "skip"


class Provenance(str, Enum):
    """Who decided."""

    AUTOMATIC = "automatic"
    MANUAL = "manual"


class RecordState(str, Enum):
    """Lifecycle of one record through the pipeline."""

    NEW = "new"
    CANDIDATES_GENERATED = "candidates_generated"
    AUTO_RESOLVED = "auto_resolved"
    PENDING_REVIEW = "pending_review"
    RESOLVED = "resolved"
    EXECUTED_SUCCESS = "executed_success"
    EXECUTED_ERROR = "executed_error"


class GeometryMode(str, Enum):
    """How a patch record's geometry is applied."""

    MERGE_EXISTING = "merge_existing"
    SEED_NEW = "seed_new"


class Decision(BaseModel):
    """The resolved outcome for one IncomingRecord.

    Invariants (checked by ``check_invariants``):
    - ``use_existing`` has at least one target id
    - ``create_new`` has no target ids
    - duplicate ids may only be flagged against exactly one target
    """

    record: IncomingRecord
    action: DecisionAction = DecisionAction.PENDING
    target_ids: list[str] = Field(default_factory=list)
    provenance: Provenance | None = None
    state: RecordState = RecordState.NEW
    candidates: list[Candidate] = Field(default_factory=list)
    new_entity_name: str | None = None
    duplicate_ids: list[str] = Field(default_factory=list)
    overridden_at: datetime | None = None

    @property
    def ordinal(self) -> int:
        return self.record.ordinal

    @property
    def label(self) -> str:
        return self.record.label

    @property
    def is_pending(self) -> bool:
        return self.action == DecisionAction.PENDING

    @property
    def is_mapped(self) -> bool:
        """Whether at least one registry entity is attached."""
        return len(self.target_ids) > 0

    @property
    def can_clear(self) -> bool:
        return self.is_mapped

    @property
    def is_manual(self) -> bool:
        return self.provenance == Provenance.MANUAL

    @property
    def top_candidate(self) -> Candidate | None:
        return self.candidates[0] if self.candidates else None

    @property
    def tier(self) -> ConfidenceTier:
        """Tier of the best candidate, or NONE when nothing matched."""
        top = self.top_candidate
        return top.tier if top else ConfidenceTier.NONE

    @property
    def geometry_mode(self) -> GeometryMode | None:
        if self.action == DecisionAction.USE_EXISTING and self.target_ids:
            return GeometryMode.MERGE_EXISTING
        if self.action == DecisionAction.CREATE_NEW:
            return GeometryMode.SEED_NEW
        return None

    @property
    def effective_new_name(self) -> str:
        return (self.new_entity_name or self.record.name).strip()

    @property
    def new_target_key(self) -> str:
        """Synthetic grouping key for a record that seeds a new entity."""
        return f"{NEW_TARGET_PREFIX}{self.effective_new_name}"

    def check_invariants(self) -> None:
        """Raise ValueError if the decision is internally inconsistent."""
        if self.action == DecisionAction.USE_EXISTING and not self.target_ids:
            raise ValueError(f"{self.label}: use_existing requires at least one target")
        if self.action == DecisionAction.CREATE_NEW and self.target_ids:
            raise ValueError(f"{self.label}: create_new must not carry targets")
        if len(set(self.target_ids)) != len(self.target_ids):
            raise ValueError(f"{self.label}: duplicate target ids")
        if self.duplicate_ids and len(self.target_ids) != 1:
            raise ValueError(f"{self.label}: duplicates need exactly one primary target")
