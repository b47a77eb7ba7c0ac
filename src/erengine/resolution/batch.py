"""Batch orchestration.

Runs candidate generation and resolution for every record of an import
against one registry snapshot, with bounded concurrency, per-record progress
reporting and cooperative cancellation. The cross-record cardinality check
runs once all records are resolved.
"""

import asyncio
import time
from collections.abc import Callable, Sequence
from datetime import datetime

from ..config import get_settings
from ..errors import InvalidRecordError
from ..logging import (
    get_context_logger,
    log_batch_complete,
    log_batch_progress,
    log_batch_start,
)
from ..models.base import IncomingRecord, RegistrySnapshot
from ..models.batch import BatchRun, BatchStatistics, DuplicateMergeGroup
from ..models.decisions import Decision, DecisionAction
from .candidates import CandidateGenerator, MatchingOptions
from .resolver import MatchResolver, detect_cardinality
from .similarity import SimilarityScorer

logger = get_context_logger(__name__)

ProgressCallback = Callable[[int, int, str], None]


class BatchOrchestrator:
    """Resolves a batch of records against a registry snapshot.

    Records are independent: each is scored and resolved on a worker thread,
    at most ``max_workers`` at a time. A run is re-enterable: passing the
    previous BatchRun keeps every decision a human has overridden.
    """

    def __init__(
        self,
        options: MatchingOptions | None = None,
        max_workers: int | None = None,
        scorer: SimilarityScorer | None = None,
    ):
        self.options = options or MatchingOptions.from_settings()
        self.max_workers = max_workers or get_settings().batch_max_workers
        self.generator = CandidateGenerator(self.options, scorer)
        self.resolver = MatchResolver(self.options)

    def resolve_record(
        self,
        record: IncomingRecord,
        snapshot: RegistrySnapshot,
        existing: Decision | None = None,
    ) -> Decision:
        """Generate candidates and resolve a single record."""
        candidates = self.generator.generate(record, snapshot)
        return self.resolver.resolve(record, candidates, existing)

    async def run_batch(
        self,
        records: Sequence[IncomingRecord],
        snapshot: RegistrySnapshot,
        progress: ProgressCallback | None = None,
        cancel_event: asyncio.Event | None = None,
        previous: BatchRun | None = None,
    ) -> BatchRun:
        """Resolve every record and aggregate statistics.

        Args:
            records: Records to reconcile (ordinals must be unique)
            snapshot: Registry snapshot, immutable for the whole run
            progress: Called as ``(processed, total, label)`` after each record
            cancel_event: Checked before each record starts; once set, no
                further records are started
            previous: Earlier run over the same records whose manual
                decisions must survive

        Returns:
            BatchRun with decisions in input order
        """
        self._check_ordinals(records)

        run = BatchRun(kind=snapshot.kind, snapshot=snapshot)
        total = len(records)
        previous_decisions = (
            {d.ordinal: d for d in previous.decisions} if previous is not None else {}
        )
        run_logger = get_context_logger(__name__, run_id=run.run_id)
        log_batch_start(run.run_id, snapshot.kind.value, total)
        started = time.monotonic()

        semaphore = asyncio.Semaphore(self.max_workers)
        results: dict[int, Decision] = {}
        processed = 0

        async def process(record: IncomingRecord) -> None:
            nonlocal processed
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    return
                decision = await asyncio.to_thread(
                    self.resolve_record,
                    record,
                    snapshot,
                    previous_decisions.get(record.ordinal),
                )
                results[record.ordinal] = decision
                processed += 1
                log_batch_progress(run.run_id, processed, total, record.label)
                if progress is not None:
                    progress(processed, total, record.label)

        await asyncio.gather(*(process(record) for record in records))

        run.not_processed = [r.ordinal for r in records if r.ordinal not in results]
        # Unreached records keep the previous pass's decision
        for ordinal in run.not_processed:
            if ordinal in previous_decisions:
                results[ordinal] = previous_decisions[ordinal].model_copy(deep=True)
        run.decisions = [results[r.ordinal] for r in records if r.ordinal in results]
        run.cancelled = bool(run.not_processed)
        if run.cancelled:
            run_logger.warning(
                f"Batch cancelled with {len(run.not_processed)} of {total} records not processed"
            )

        refresh_batch(run)
        if previous is not None:
            run.cardinality_acknowledged = (
                previous.cardinality_acknowledged and previous.cardinality == run.cardinality
            )
            run.duplicates_confirmed = (
                previous.duplicates_confirmed
                and previous.duplicate_groups == run.duplicate_groups
            )

        run.completed_at = datetime.utcnow()
        log_batch_complete(
            run.run_id,
            processed,
            total,
            run.statistics.match_rate,
            run.cancelled,
            time.monotonic() - started,
        )
        return run

    @staticmethod
    def _check_ordinals(records: Sequence[IncomingRecord]) -> None:
        seen: set[int] = set()
        for record in records:
            if record.ordinal in seen:
                raise InvalidRecordError(f"duplicate record ordinal {record.ordinal}")
            seen.add(record.ordinal)


def collect_duplicate_groups(decisions: list[Decision]) -> list[DuplicateMergeGroup]:
    """Group flagged duplicates by their primary entity, in decision order."""
    groups: dict[str, DuplicateMergeGroup] = {}
    for decision in decisions:
        if not decision.duplicate_ids:
            continue
        if decision.action != DecisionAction.USE_EXISTING or len(decision.target_ids) != 1:
            continue
        primary = decision.target_ids[0]
        group = groups.setdefault(
            primary,
            DuplicateMergeGroup(primary_id=primary, duplicate_ids=[], ordinals=[], labels=[]),
        )
        for entity_id in decision.duplicate_ids:
            if entity_id != primary and entity_id not in group.duplicate_ids:
                group.duplicate_ids.append(entity_id)
        group.ordinals.append(decision.ordinal)
        group.labels.append(decision.label)
    return list(groups.values())


def refresh_batch(run: BatchRun) -> None:
    """Recompute statistics, cardinality and duplicate groups of a run.

    Any change to the cardinality report or the duplicate groups withdraws
    the corresponding confirmation.
    """
    run.statistics = BatchStatistics.from_decisions(run.decisions)

    report = detect_cardinality(run.decisions, run.snapshot)
    if report != run.cardinality:
        run.cardinality_acknowledged = False
    run.cardinality = report

    groups = collect_duplicate_groups(run.decisions)
    if groups != run.duplicate_groups:
        run.duplicates_confirmed = False
    run.duplicate_groups = groups


async def run_batch(
    records: Sequence[IncomingRecord],
    snapshot: RegistrySnapshot,
    options: MatchingOptions | None = None,
    progress: ProgressCallback | None = None,
    cancel_event: asyncio.Event | None = None,
    previous: BatchRun | None = None,
) -> BatchRun:
    """Convenience function to run one batch with a fresh orchestrator."""
    orchestrator = BatchOrchestrator(options)
    return await orchestrator.run_batch(
        records,
        snapshot,
        progress=progress,
        cancel_event=cancel_event,
        previous=previous,
    )
