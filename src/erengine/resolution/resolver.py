"""Match resolution and human override.

Resolution policy:
1. Top candidate is exact -> use_existing, automatic
2. Confirmation disabled -> top candidate of any tier is accepted, automatic
3. No candidates -> the configured unmatched action (pending by default)
4. Otherwise -> pending, waiting for a human

Overrides are the only legal mutators of a Decision once it exists. Each one
re-derives action and state from the resulting target set, so the selection
flags exposed by the Decision never drift from its targets.
"""

from datetime import datetime

from ..errors import InvalidOverrideError
from ..logging import get_context_logger, log_override, log_resolution_event
from ..models.base import IncomingRecord, RegistrySnapshot
from ..models.batch import CardinalityReport, ManyToOneMapping, OneToManyMapping
from ..models.decisions import (
    Candidate,
    ConfidenceTier,
    Decision,
    DecisionAction,
    Provenance,
    RecordState,
)
from .candidates import MatchingOptions

logger = get_context_logger(__name__)


class MatchResolver:
    """Turns ranked candidates into a Decision per record."""

    def __init__(self, options: MatchingOptions | None = None):
        self.options = options or MatchingOptions()

    def resolve(
        self,
        record: IncomingRecord,
        candidates: list[Candidate],
        existing: Decision | None = None,
    ) -> Decision:
        """Resolve a record against its candidates.

        Args:
            record: The incoming record
            candidates: Ranked candidates from the generator
            existing: Decision from a previous pass; a manually overridden one
                is kept as-is, only its candidate list is refreshed

        Returns:
            A new Decision (never the ``existing`` instance)
        """
        if existing is not None and existing.is_manual:
            return existing.model_copy(deep=True, update={"candidates": list(candidates)})

        decision = Decision(
            record=record,
            candidates=list(candidates),
            state=RecordState.CANDIDATES_GENERATED,
        )
        top = decision.top_candidate

        if top is not None and (
            top.tier == ConfidenceTier.EXACT or not self.options.require_user_confirmation
        ):
            decision.action = DecisionAction.USE_EXISTING
            decision.target_ids = [top.entity_id]
            decision.provenance = Provenance.AUTOMATIC
            decision.state = RecordState.AUTO_RESOLVED
        elif top is None and self.options.unmatched_action != DecisionAction.PENDING:
            decision.action = self.options.unmatched_action
            decision.provenance = Provenance.AUTOMATIC
            decision.state = RecordState.AUTO_RESOLVED
        else:
            decision.state = RecordState.PENDING_REVIEW

        decision.check_invariants()
        log_resolution_event(
            label=decision.label,
            action=decision.action.value,
            target_ids=list(decision.target_ids),
            score=top.score if top else None,
            automatic=decision.provenance == Provenance.AUTOMATIC,
        )
        return decision

    def detect_cardinality(
        self,
        decisions: list[Decision],
        snapshot: RegistrySnapshot | None = None,
    ) -> CardinalityReport:
        """Convenience wrapper around :func:`detect_cardinality`."""
        return detect_cardinality(decisions, snapshot)


def detect_cardinality(
    decisions: list[Decision],
    snapshot: RegistrySnapshot | None = None,
) -> CardinalityReport:
    """Find one-to-many and many-to-one mappings among resolved decisions.

    Recomputed from scratch on every call; only ``use_existing`` decisions
    participate.

    Args:
        decisions: The full decision set of a batch
        snapshot: Registry snapshot used to resolve entity names for display

    Returns:
        Report of mappings that need explicit confirmation
    """

    def name_of(entity_id: str) -> str:
        return snapshot.name_of(entity_id) if snapshot is not None else entity_id

    report = CardinalityReport()
    by_entity: dict[str, list[Decision]] = {}

    for decision in decisions:
        if decision.action != DecisionAction.USE_EXISTING:
            continue
        if len(decision.target_ids) > 1:
            report.one_to_many.append(
                OneToManyMapping(
                    ordinal=decision.ordinal,
                    label=decision.label,
                    entity_ids=list(decision.target_ids),
                    entity_names=[name_of(t) for t in decision.target_ids],
                )
            )
        for entity_id in decision.target_ids:
            by_entity.setdefault(entity_id, []).append(decision)

    for entity_id, mapped in by_entity.items():
        if len(mapped) > 1:
            report.many_to_one.append(
                ManyToOneMapping(
                    entity_id=entity_id,
                    entity_name=name_of(entity_id),
                    ordinals=[d.ordinal for d in mapped],
                    labels=[d.label for d in mapped],
                )
            )

    return report


# =========================
# Overrides
# =========================


def _settle(decision: Decision, operation: str) -> Decision:
    """Re-derive action/state from the target set after an override."""
    if decision.target_ids:
        decision.action = DecisionAction.USE_EXISTING
        decision.state = RecordState.RESOLVED
    elif decision.action == DecisionAction.USE_EXISTING:
        decision.action = DecisionAction.PENDING
        decision.state = RecordState.CANDIDATES_GENERATED

    if len(decision.target_ids) != 1:
        decision.duplicate_ids = []
    else:
        decision.duplicate_ids = [d for d in decision.duplicate_ids if d not in decision.target_ids]

    decision.provenance = Provenance.MANUAL
    decision.overridden_at = datetime.utcnow()
    decision.check_invariants()
    log_override(decision.label, operation, decision.action.value, list(decision.target_ids))
    return decision


def _check_known(entity_id: str, snapshot: RegistrySnapshot | None) -> None:
    if snapshot is not None and entity_id not in snapshot:
        raise InvalidOverrideError(f"entity {entity_id!r} is not in the registry snapshot")


def select_target(
    decision: Decision,
    entity_id: str,
    snapshot: RegistrySnapshot | None = None,
) -> Decision:
    """Attach an entity to the decision's target set (one-to-many capable).

    Selecting an already-selected entity changes nothing.
    """
    _check_known(entity_id, snapshot)
    if decision.action != DecisionAction.USE_EXISTING:
        decision.new_entity_name = None
    if entity_id not in decision.target_ids:
        decision.target_ids.append(entity_id)
    return _settle(decision, "select_target")


def deselect_target(decision: Decision, entity_id: str) -> Decision:
    """Remove one entity from the target set; the last removal reverts to pending."""
    decision.target_ids = [t for t in decision.target_ids if t != entity_id]
    return _settle(decision, "deselect_target")


def toggle_target(
    decision: Decision,
    entity_id: str,
    snapshot: RegistrySnapshot | None = None,
) -> Decision:
    """Toggle membership of an entity in the target set."""
    if entity_id in decision.target_ids:
        return deselect_target(decision, entity_id)
    return select_target(decision, entity_id, snapshot)


def clear_match(decision: Decision) -> Decision:
    """Empty the target set and revert the decision to not-yet-decided."""
    decision.target_ids = []
    decision.duplicate_ids = []
    decision.new_entity_name = None
    decision.action = DecisionAction.PENDING
    decision.state = RecordState.CANDIDATES_GENERATED
    return _settle(decision, "clear_match")


def mark_create_new(decision: Decision, name: str | None = None) -> Decision:
    """Resolve the record to a new registry entity."""
    decision.target_ids = []
    decision.duplicate_ids = []
    decision.action = DecisionAction.CREATE_NEW
    decision.state = RecordState.RESOLVED
    if name is not None:
        _set_new_name(decision, name)
    return _settle(decision, "mark_create_new")


def mark_skip(decision: Decision) -> Decision:
    """Exclude the record from execution."""
    decision.target_ids = []
    decision.duplicate_ids = []
    decision.new_entity_name = None
    decision.action = DecisionAction.SKIP
    decision.state = RecordState.RESOLVED
    return _settle(decision, "mark_skip")


def rename_new(decision: Decision, name: str) -> Decision:
    """Set the name of the entity a create_new decision will create."""
    if decision.action != DecisionAction.CREATE_NEW:
        raise InvalidOverrideError(
            f"{decision.label}: only create_new decisions can be renamed"
        )
    _set_new_name(decision, name)
    return _settle(decision, "rename_new")


def _set_new_name(decision: Decision, name: str) -> None:
    if not name or not name.strip():
        raise InvalidOverrideError(f"{decision.label}: new entity name must not be blank")
    decision.new_entity_name = name.strip()


def flag_duplicates(
    decision: Decision,
    duplicate_ids: list[str],
    snapshot: RegistrySnapshot | None = None,
) -> Decision:
    """Flag registry entities as duplicates of the decision's single target.

    The merge itself only happens in the executor, after the batch's
    duplicate merges are explicitly confirmed.
    """
    if decision.action != DecisionAction.USE_EXISTING or len(decision.target_ids) != 1:
        raise InvalidOverrideError(
            f"{decision.label}: duplicates can only be flagged against exactly one target"
        )
    primary = decision.target_ids[0]
    flagged: list[str] = []
    for entity_id in duplicate_ids:
        _check_known(entity_id, snapshot)
        if entity_id != primary and entity_id not in flagged:
            flagged.append(entity_id)
    decision.duplicate_ids = flagged
    return _settle(decision, "flag_duplicates")


def unflag_duplicates(decision: Decision) -> Decision:
    """Drop all duplicate flags from the decision."""
    decision.duplicate_ids = []
    return _settle(decision, "unflag_duplicates")
