"""Exception hierarchy for erengine.

Only precondition and gate failures are raised to callers. Failures that
happen while mutating the registry are caught by the merge executor and
reported per record in ``ExecutionResult.errors``.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models.batch import CardinalityReport


class ReconciliationError(Exception):
    """Base class for all erengine errors."""


class InvalidRecordError(ReconciliationError):
    """An incoming record cannot enter the pipeline (blank name, unknown payload key)."""


class InvalidOverrideError(ReconciliationError):
    """A human override cannot be applied to the decision."""


class CardinalityConfirmationRequired(ReconciliationError):
    """Execution attempted while one-to-many or many-to-one mappings are unacknowledged."""

    def __init__(self, report: "CardinalityReport"):
        self.report = report
        super().__init__(
            f"{len(report.one_to_many)} one-to-many and {len(report.many_to_one)} "
            "many-to-one mappings require confirmation before execution"
        )


class RegistryError(ReconciliationError):
    """A registry create/update/merge operation failed."""


class IdentifierConflictError(ReconciliationError):
    """The target entity already carries a different identifying attribute."""

    def __init__(self, entity_id: str, field: str, existing: str, incoming: str):
        self.entity_id = entity_id
        self.field = field
        self.existing = existing
        self.incoming = incoming
        super().__init__(
            f"entity {entity_id} already has a different {field} "
            f"({existing!r}, incoming {incoming!r})"
        )


class GeometryError(ReconciliationError):
    """A geometry is not a polygon or cannot be converted to a multi-polygon."""
