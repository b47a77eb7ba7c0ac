"""Merge executor.

The only component that mutates the registry. Turns the resolved decisions
of a BatchRun into create/update calls, then runs the confirmed duplicate
merges.

Operations are grouped by target entity: calls within a group run one after
another, different groups run concurrently up to ``max_workers``. Every
failure is attributed to the record (or merge group) that caused it and the
run carries on.
"""

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from pydantic import BaseModel, Field

from ..config import Settings, get_settings
from ..errors import CardinalityConfirmationRequired, IdentifierConflictError
from ..geometry.aggregator import (
    GeometryInput,
    aggregate,
    to_multipolygon_wkt,
    with_stored_geometries,
)
from ..logging import (
    get_context_logger,
    log_execution_complete,
    log_execution_record,
    log_merge_event,
)
from ..models.base import EntityKind
from ..models.batch import BatchRun
from ..models.decisions import Decision, DecisionAction, RecordState
from ..models.execution import ExecutionError, ExecutionResult, OutcomeStatus, RecordOutcome
from ..registry.ports import RegistryWriter
from ..resolution.batch import refresh_batch

logger = get_context_logger(__name__)


class ExecutionSettings(BaseModel):
    """What the executor is allowed to write."""

    allow_create_new: bool = True
    update_existing_records: bool = True
    identifier_field: str | None = Field(
        default=None,
        description="Attribute receiving the record's external id, e.g. incolink_id",
    )
    stamp_last_matched: bool = Field(
        default=True,
        description="Also write <identifier_field>_last_matched with today's date",
    )
    max_workers: int = Field(default=4, ge=1)

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **overrides: Any) -> "ExecutionSettings":
        settings = settings or get_settings()
        values: dict[str, Any] = {"max_workers": settings.executor_max_workers}
        values.update(overrides)
        return cls(**values)


@dataclass
class _Operation:
    """One registry call and the decisions it carries out."""

    key: str
    entity_id: str | None
    decisions: list[Decision] = field(default_factory=list)

    @property
    def is_create(self) -> bool:
        return self.entity_id is None


@dataclass
class _Partial:
    """Outcome of one operation for one record."""

    status: OutcomeStatus
    entity_ids: list[str] = field(default_factory=list)
    message: str | None = None


class MergeExecutor:
    """Applies a BatchRun's decisions to a registry."""

    def __init__(
        self,
        registry: RegistryWriter,
        settings: ExecutionSettings | None = None,
    ):
        self.registry = registry
        self.settings = settings or ExecutionSettings.from_settings()

    async def execute(
        self,
        batch_run: BatchRun,
        geometry_by_record: Mapping[int, GeometryInput] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ExecutionResult:
        """Execute the decisions of a batch run.

        Args:
            batch_run: Resolved batch; its cardinality report must have been
                acknowledged if it requires confirmation
            geometry_by_record: Polygon per record ordinal (patch imports)
            cancel_event: Checked before every registry call; once set, the
                remaining records are reported as not attempted

        Returns:
            ExecutionResult with counts, errors and one outcome per decision

        Raises:
            CardinalityConfirmationRequired: If one-to-many or many-to-one
                mappings have not been acknowledged
        """
        refresh_batch(batch_run)
        if batch_run.cardinality.requires_confirmation and not batch_run.cardinality_acknowledged:
            raise CardinalityConfirmationRequired(batch_run.cardinality)

        run_logger = get_context_logger(
            __name__, run_id=batch_run.run_id, entity_kind=batch_run.kind.value
        )
        result = ExecutionResult(run_id=batch_run.run_id)
        partials: dict[int, list[_Partial]] = {d.ordinal: [] for d in batch_run.decisions}
        error_ordinals: set[int] = set()

        groups = self._plan(batch_run, partials)
        geometry_wkt = self._geometry_by_key(batch_run, geometry_by_record or {})

        semaphore = asyncio.Semaphore(self.settings.max_workers)

        async def run_group(operations: list[_Operation]) -> None:
            async with semaphore:
                applied: dict[str, str] = {}
                for operation in operations:
                    if cancel_event is not None and cancel_event.is_set():
                        result.cancelled = True
                        for decision in operation.decisions:
                            partials[decision.ordinal].append(
                                _Partial(OutcomeStatus.NOT_ATTEMPTED, message="cancelled")
                            )
                        continue
                    await self._run_operation(
                        batch_run,
                        operation,
                        geometry_wkt,
                        applied,
                        result,
                        partials,
                        error_ordinals,
                    )

        await asyncio.gather(*(run_group(ops) for ops in groups.values()))

        if result.cancelled:
            run_logger.warning("Execution cancelled; duplicate merges not attempted")
        else:
            await self._run_merges(batch_run, result, run_logger)

        self._finish(batch_run, result, partials, error_ordinals)
        log_execution_complete(
            batch_run.run_id,
            result.created,
            result.updated,
            result.skipped,
            len(result.errors),
            result.merged_entities,
        )
        return result

    # =========================
    # Planning
    # =========================

    def _plan(
        self,
        batch_run: BatchRun,
        partials: dict[int, list[_Partial]],
    ) -> dict[str, list[_Operation]]:
        """Group the registry calls by target entity, in decision order.

        Employers get one call per record (a fresh ``new_<ordinal>`` group for
        each creation). Patches get one call per target group, so records that
        resolve to the same patch share a single create/update.
        """
        is_patch = batch_run.kind == EntityKind.PATCH
        groups: dict[str, list[_Operation]] = {}
        shared: dict[str, _Operation] = {}

        def skip(decision: Decision, message: str) -> None:
            partials[decision.ordinal].append(_Partial(OutcomeStatus.SKIPPED, message=message))

        for decision in batch_run.decisions:
            match decision.action:
                case DecisionAction.PENDING:
                    skip(decision, "no decision")
                case DecisionAction.SKIP:
                    skip(decision, "marked as skip")
                case DecisionAction.CREATE_NEW if not self.settings.allow_create_new:
                    skip(decision, "creating new entities is disabled")
                case DecisionAction.USE_EXISTING if not self.settings.update_existing_records:
                    skip(decision, "updating existing entities is disabled")
                case DecisionAction.CREATE_NEW if is_patch:
                    key = decision.new_target_key
                    if key not in shared:
                        shared[key] = _Operation(key=key, entity_id=None)
                        groups.setdefault(key, []).append(shared[key])
                    shared[key].decisions.append(decision)
                case DecisionAction.CREATE_NEW:
                    key = f"new_{decision.ordinal}"
                    groups[key] = [_Operation(key=key, entity_id=None, decisions=[decision])]
                case DecisionAction.USE_EXISTING if is_patch:
                    key = decision.target_ids[0]
                    if key not in shared:
                        shared[key] = _Operation(key=key, entity_id=key)
                        groups.setdefault(key, []).append(shared[key])
                    shared[key].decisions.append(decision)
                case DecisionAction.USE_EXISTING:
                    for entity_id in decision.target_ids:
                        groups.setdefault(entity_id, []).append(
                            _Operation(key=entity_id, entity_id=entity_id, decisions=[decision])
                        )

        return groups

    @staticmethod
    def _geometry_by_key(
        batch_run: BatchRun,
        geometry_by_record: Mapping[int, GeometryInput],
    ) -> dict[str, list[GeometryInput]]:
        if batch_run.kind != EntityKind.PATCH or not geometry_by_record:
            return {}
        groups = aggregate(batch_run.decisions, geometry_by_record)
        return with_stored_geometries(groups, batch_run.snapshot)

    def _identifier_attrs(self, decision: Decision) -> dict[str, Any]:
        identifier_field = self.settings.identifier_field
        if not identifier_field or not decision.record.external_id:
            return {}
        attrs: dict[str, Any] = {identifier_field: decision.record.external_id}
        if self.settings.stamp_last_matched:
            attrs[f"{identifier_field}_last_matched"] = date.today().isoformat()
        return attrs

    # =========================
    # Execution
    # =========================

    async def _run_operation(
        self,
        batch_run: BatchRun,
        operation: _Operation,
        geometry_wkt: dict[str, list[GeometryInput]],
        applied: dict[str, str],
        result: ExecutionResult,
        partials: dict[int, list[_Partial]],
        error_ordinals: set[int],
    ) -> None:
        """Issue one create/update call and record its outcome per record."""
        lead = operation.decisions[0]
        kind = batch_run.kind

        def fail(status: OutcomeStatus, message: str, entity_ids: list[str]) -> None:
            for decision in operation.decisions:
                partials[decision.ordinal].append(_Partial(status, list(entity_ids), message))
                result.errors.append(
                    ExecutionError(
                        label=decision.label,
                        message=message,
                        ordinal=decision.ordinal,
                        entity_ids=list(entity_ids),
                    )
                )
                error_ordinals.add(decision.ordinal)
                log_execution_record(decision.label, status.value, list(entity_ids), message)

        try:
            attrs = self._identifier_attrs(lead)
            geometries = geometry_wkt.get(operation.key)
            if geometries:
                attrs["geometry"] = to_multipolygon_wkt(geometries)

            if operation.is_create:
                attrs = {
                    "name": lead.effective_new_name,
                    **{k: v for k, v in lead.record.payload.items() if v not in (None, "")},
                    **attrs,
                }
                entity_id = await self.registry.create_entity(kind, attrs)
                result.created += 1
            else:
                entity_id = operation.entity_id
                self._check_conflict(batch_run, entity_id, attrs, applied)
                if attrs:
                    await self.registry.update_entity(kind, entity_id, attrs)
                    result.updated += 1

            identifier_field = self.settings.identifier_field
            if identifier_field and identifier_field in attrs:
                applied[entity_id] = attrs[identifier_field]

        except IdentifierConflictError as e:
            fail(OutcomeStatus.SKIPPED, str(e), [e.entity_id])
            return
        except Exception as e:
            entity_ids = [] if operation.is_create else [operation.entity_id]
            fail(OutcomeStatus.FAILED, str(e) or type(e).__name__, entity_ids)
            return

        for decision in operation.decisions:
            message = None
            ignored = [t for t in decision.target_ids if t != entity_id]
            if kind == EntityKind.PATCH and ignored:
                message = f"geometry written to {entity_id} only; ignored {', '.join(ignored)}"
            partials[decision.ordinal].append(
                _Partial(OutcomeStatus.SUCCEEDED, [entity_id], message)
            )
            log_execution_record(decision.label, OutcomeStatus.SUCCEEDED.value, [entity_id])

    def _check_conflict(
        self,
        batch_run: BatchRun,
        entity_id: str,
        attrs: dict[str, Any],
        applied: dict[str, str],
    ) -> None:
        """Refuse to overwrite a different identifying attribute.

        The current value is the one written earlier in this run, or else
        the one in the batch's registry snapshot.
        """
        identifier_field = self.settings.identifier_field
        if not identifier_field or identifier_field not in attrs:
            return
        incoming = attrs[identifier_field]
        existing = applied.get(entity_id)
        if existing is None:
            entity = batch_run.snapshot.get(entity_id)
            existing = entity.identifiers.get(identifier_field) if entity else None
        if existing and existing.strip() != incoming:
            raise IdentifierConflictError(entity_id, identifier_field, existing, incoming)

    async def _run_merges(self, batch_run: BatchRun, result: ExecutionResult, run_logger) -> None:
        """Merge confirmed duplicate groups; a failed merge never stops the run."""
        if not batch_run.duplicate_groups:
            return
        if not batch_run.duplicates_confirmed:
            run_logger.warning(
                f"{len(batch_run.duplicate_groups)} duplicate merge groups not confirmed; skipping merges"
            )
            return

        for group in batch_run.duplicate_groups:
            try:
                await self.registry.merge_entities(
                    batch_run.kind, group.primary_id, list(group.duplicate_ids)
                )
            except Exception as e:
                message = f"merge into {group.primary_id} failed: {e}"
                log_merge_event(group.primary_id, group.duplicate_ids, False, str(e))
                result.errors.append(
                    ExecutionError(
                        label=", ".join(group.labels),
                        message=message,
                        entity_ids=[group.primary_id, *group.duplicate_ids],
                    )
                )
                continue
            result.merged_entities += 1
            log_merge_event(group.primary_id, group.duplicate_ids, True)

    # =========================
    # Reporting
    # =========================

    @staticmethod
    def _finish(
        batch_run: BatchRun,
        result: ExecutionResult,
        partials: dict[int, list[_Partial]],
        error_ordinals: set[int],
    ) -> None:
        """Fold per-operation outcomes into one outcome per record."""
        for decision in batch_run.decisions:
            parts = partials[decision.ordinal]
            statuses = {p.status for p in parts}
            entity_ids = list(
                dict.fromkeys(
                    e for p in parts if p.status == OutcomeStatus.SUCCEEDED for e in p.entity_ids
                )
            )
            if not parts:
                status = OutcomeStatus.NOT_ATTEMPTED
            elif OutcomeStatus.FAILED in statuses:
                status = OutcomeStatus.FAILED
            elif OutcomeStatus.SKIPPED in statuses:
                status = OutcomeStatus.SKIPPED
            elif OutcomeStatus.NOT_ATTEMPTED in statuses:
                status = OutcomeStatus.NOT_ATTEMPTED
            else:
                status = OutcomeStatus.SUCCEEDED

            messages = [p.message for p in parts if p.message]
            result.outcomes.append(
                RecordOutcome(
                    ordinal=decision.ordinal,
                    label=decision.label,
                    status=status,
                    entity_ids=entity_ids,
                    message="; ".join(dict.fromkeys(messages)) or None,
                )
            )

            if status == OutcomeStatus.SKIPPED:
                result.skipped += 1
            if decision.ordinal in error_ordinals:
                decision.state = RecordState.EXECUTED_ERROR
            elif status == OutcomeStatus.SUCCEEDED:
                decision.state = RecordState.EXECUTED_SUCCESS


async def execute(
    batch_run: BatchRun,
    registry: RegistryWriter,
    settings: ExecutionSettings | None = None,
    geometry_by_record: Mapping[int, GeometryInput] | None = None,
    cancel_event: asyncio.Event | None = None,
) -> ExecutionResult:
    """Convenience function to execute a batch run against a registry."""
    executor = MergeExecutor(registry, settings)
    return await executor.execute(
        batch_run,
        geometry_by_record=geometry_by_record,
        cancel_event=cancel_event,
    )
