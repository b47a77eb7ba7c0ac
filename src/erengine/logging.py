"""Structured logging configuration for erengine.

Provides JSON-formatted logs for production and human-readable
logs for development.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from .config import get_settings

# Attributes every LogRecord carries; anything else came in through ``extra=``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime", "taskName"}


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as JSON."""
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in vars(record).items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                log_data[key] = value

        if record.funcName:
            log_data["function"] = record.funcName
        if record.lineno:
            log_data["line"] = record.lineno

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable log formatter for development."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def setup_logging() -> None:
    """Configure logging based on settings."""
    settings = get_settings()

    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    if settings.log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(TextFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    # Suppress noisy loggers
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("asyncpg").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)

    logger = get_logger(__name__)
    logger.info(
        "Logging initialized",
        extra={
            "environment": settings.environment,
            "log_level": settings.log_level,
            "log_format": settings.log_format,
        },
    )


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


class LoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds context to all log messages."""

    def process(
        self, msg: str, kwargs: dict[str, Any]
    ) -> tuple[str, dict[str, Any]]:
        """Process the logging message and add extra context."""
        extra = dict(self.extra)
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs


def get_context_logger(name: str, **context: Any) -> LoggerAdapter:
    """Get a logger with additional context.

    Args:
        name: Logger name
        **context: Context fields to add to all log messages

    Returns:
        Logger adapter with context

    Usage:
        logger = get_context_logger(__name__, run_id="abc123", entity_kind="employer")
        logger.info("Matching record")  # Includes run_id and entity_kind
    """
    return LoggerAdapter(get_logger(name), context)


# =========================
# Convenience functions
# =========================


def log_batch_start(run_id: str, entity_kind: str, total: int) -> None:
    """Log the start of a reconciliation batch."""
    logger = get_logger("erengine.batch")
    logger.info(
        f"Starting reconciliation batch for {total} {entity_kind} records",
        extra={
            "run_id": run_id,
            "entity_kind": entity_kind,
            "records_total": total,
            "event": "batch_start",
        },
    )


def log_batch_progress(run_id: str, processed: int, total: int, label: str) -> None:
    """Log per-record batch progress."""
    logger = get_logger("erengine.batch")
    logger.debug(
        f"Matched {processed}/{total}: {label}",
        extra={
            "run_id": run_id,
            "records_processed": processed,
            "records_total": total,
            "label": label,
            "event": "batch_progress",
        },
    )


def log_batch_complete(
    run_id: str,
    processed: int,
    total: int,
    match_rate: float,
    cancelled: bool,
    duration_seconds: float,
) -> None:
    """Log the completion (or cancellation) of a reconciliation batch."""
    logger = get_logger("erengine.batch")
    state = "cancelled" if cancelled else "completed"
    logger.info(
        f"Reconciliation batch {state}: {processed}/{total} records, "
        f"match rate {match_rate:.1f}%",
        extra={
            "run_id": run_id,
            "records_processed": processed,
            "records_total": total,
            "match_rate": match_rate,
            "cancelled": cancelled,
            "duration_seconds": duration_seconds,
            "event": "batch_complete",
        },
    )


def log_resolution_event(
    label: str,
    action: str,
    target_ids: list[str],
    score: float | None,
    automatic: bool,
) -> None:
    """Log the automatic resolution of one record.

    Args:
        label: Record label (source name)
        action: Resulting decision action
        target_ids: Selected registry entity ids
        score: Score of the top candidate, if any
        automatic: Whether the decision was reached without a human
    """
    logger = get_logger("erengine.resolution")
    logger.debug(
        f"Resolved {label} -> {action} {target_ids or ''}".rstrip(),
        extra={
            "label": label,
            "action": action,
            "target_ids": target_ids,
            "score": score,
            "automatic": automatic,
            "event": "record_resolution",
        },
    )


def log_override(label: str, operation: str, action: str, target_ids: list[str]) -> None:
    """Log a human override applied to a decision."""
    logger = get_logger("erengine.resolution")
    logger.debug(
        f"Override {operation} on {label}: now {action}",
        extra={
            "label": label,
            "operation": operation,
            "action": action,
            "target_ids": target_ids,
            "event": "decision_override",
        },
    )


def log_execution_record(
    label: str,
    status: str,
    entity_ids: list[str],
    error: str | None = None,
) -> None:
    """Log the execution outcome of one record.

    Args:
        label: Record label
        status: Outcome status (succeeded, failed, skipped)
        entity_ids: Registry entities touched
        error: Error message for failed/skipped records
    """
    logger = get_logger("erengine.execution")
    level = logging.WARNING if error else logging.DEBUG
    logger.log(
        level,
        f"Record {label}: {status}" + (f" ({error})" if error else ""),
        extra={
            "label": label,
            "status": status,
            "entity_ids": entity_ids,
            "error": error,
            "event": "record_executed",
        },
    )


def log_merge_event(
    primary_id: str,
    duplicate_ids: list[str],
    success: bool,
    error: str | None = None,
) -> None:
    """Log a duplicate-merge attempt."""
    logger = get_logger("erengine.execution")
    if success:
        logger.info(
            f"Merged {len(duplicate_ids)} duplicates into {primary_id}",
            extra={
                "primary_id": primary_id,
                "duplicate_ids": duplicate_ids,
                "event": "entities_merged",
            },
        )
    else:
        logger.error(
            f"Merge into {primary_id} failed: {error}",
            extra={
                "primary_id": primary_id,
                "duplicate_ids": duplicate_ids,
                "error": error,
                "event": "merge_failed",
            },
        )


def log_execution_complete(
    run_id: str,
    created: int,
    updated: int,
    skipped: int,
    errors: int,
    merged: int,
) -> None:
    """Log the summary of a merge-executor run."""
    logger = get_logger("erengine.execution")
    logger.info(
        f"Execution finished: {created} created, {updated} updated, "
        f"{skipped} skipped, {errors} errors, {merged} merged",
        extra={
            "run_id": run_id,
            "created": created,
            "updated": updated,
            "skipped": skipped,
            "errors": errors,
            "merged_entities": merged,
            "event": "execution_complete",
        },
    )
