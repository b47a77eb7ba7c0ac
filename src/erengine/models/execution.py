"""Result models for the merge executor."""

from enum import Enum

from pydantic import BaseModel, Field


class OutcomeStatus(str, Enum):
    """What happened to one record during execution."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    NOT_ATTEMPTED = "not_attempted"


class RecordOutcome(BaseModel):
    """Per-record execution outcome."""

    ordinal: int
    label: str
    status: OutcomeStatus
    entity_ids: list[str] = Field(default_factory=list)
    message: str | None = None


class ExecutionError(BaseModel):
    """An error attributed to one record or merge group."""

    label: str
    message: str
    ordinal: int | None = None
    entity_ids: list[str] = Field(default_factory=list)

    def __str__(self) -> str:
        return f"{self.label}: {self.message}"


class ExecutionResult(BaseModel):
    """Summary of registry mutations issued for one batch run."""

    run_id: str
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[ExecutionError] = Field(default_factory=list)
    merged_entities: int = 0
    outcomes: list[RecordOutcome] = Field(default_factory=list)
    cancelled: bool = False

    @property
    def error_labels(self) -> list[str]:
        return [e.label for e in self.errors]

    def _with_status(self, status: OutcomeStatus) -> list[RecordOutcome]:
        return [o for o in self.outcomes if o.status == status]

    @property
    def succeeded(self) -> list[RecordOutcome]:
        return self._with_status(OutcomeStatus.SUCCEEDED)

    @property
    def failed(self) -> list[RecordOutcome]:
        return self._with_status(OutcomeStatus.FAILED)

    @property
    def not_attempted(self) -> list[RecordOutcome]:
        return self._with_status(OutcomeStatus.NOT_ATTEMPTED)
