"""Data models for erengine.

Exports records and registry entities, candidates and decisions, batch
reporting and execution results.
"""

from .base import (
    PAYLOAD_KEYS,
    EntityKind,
    IncomingRecord,
    RegistryEntity,
    RegistrySnapshot,
    build_records,
)
from .batch import (
    BatchRun,
    BatchStatistics,
    CardinalityReport,
    DuplicateMergeGroup,
    ManyToOneMapping,
    OneToManyMapping,
)
from .decisions import (
    NEW_TARGET_PREFIX,
    Candidate,
    ConfidenceTier,
    Decision,
    DecisionAction,
    GeometryMode,
    MatchType,
    Provenance,
    RecordState,
)
from .execution import (
    ExecutionError,
    ExecutionResult,
    OutcomeStatus,
    RecordOutcome,
)

__all__ = [
    # Base
    "PAYLOAD_KEYS",
    "EntityKind",
    "IncomingRecord",
    "RegistryEntity",
    "RegistrySnapshot",
    "build_records",
    # Decisions
    "NEW_TARGET_PREFIX",
    "Candidate",
    "ConfidenceTier",
    "Decision",
    "DecisionAction",
    "GeometryMode",
    "MatchType",
    "Provenance",
    "RecordState",
    # Batch
    "BatchRun",
    "BatchStatistics",
    "CardinalityReport",
    "DuplicateMergeGroup",
    "ManyToOneMapping",
    "OneToManyMapping",
    # Execution
    "ExecutionError",
    "ExecutionResult",
    "OutcomeStatus",
    "RecordOutcome",
]
