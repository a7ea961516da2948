"""Interpretation report database operations.

One row per generation attempt, versioned per run. The table carries
UNIQUE (run_id, version) and a partial unique index on run_id WHERE
status = 'generating', so concurrent starts surface as a unique violation.
"""

from datetime import datetime, timedelta, timezone  # noqa: UP035
from typing import Any
from uuid import UUID

from postgrest.exceptions import APIError

from app.core.config import get_settings
from app.core.logging import get_logger
from app.core.schemas_interpretation import OrchestrationResult, ReportStatus
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)

TABLE = "interpretation_reports"
UNIQUE_VIOLATION = "23505"
GENERATION_TIMEOUT = "generation_timeout"


class ReportConflictError(Exception):
    """A generation is already in flight for the run."""

    def __init__(self, message: str, report_id: str | None = None):
        super().__init__(message)
        self.report_id = report_id


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)  # noqa: UP017


def get_latest_report(run_id: UUID) -> dict[str, Any] | None:
    """
    Get the highest version report for a run.

    Args:
        run_id: Diagnostic run UUID

    Returns:
        Report dict or None if the run has no reports

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()

    try:
        response = (
            supabase.table(TABLE)
            .select("*")
            .eq("run_id", str(run_id))
            .order("version", desc=True)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    except Exception as e:
        logger.error(f"Failed to get latest report: {e}", extra={"run_id": str(run_id)})
        raise


def get_generating_report(run_id: UUID) -> dict[str, Any] | None:
    """Get the in-flight report for a run, if any."""
    supabase = get_supabase()

    try:
        response = (
            supabase.table(TABLE)
            .select("id, version, deadline_at")
            .eq("run_id", str(run_id))
            .eq("status", ReportStatus.GENERATING.value)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    except Exception as e:
        logger.error(f"Failed to get generating report: {e}", extra={"run_id": str(run_id)})
        raise


def create_generating_report(run_id: UUID, version: int) -> dict[str, Any]:
    """
    Insert a new report version in generating status.

    Args:
        run_id: Diagnostic run UUID
        version: Version number to claim

    Returns:
        The inserted row

    Raises:
        ReportConflictError: If another generation claimed the run or version first
        Exception: If database operation fails
    """
    settings = get_settings()
    supabase = get_supabase()
    now = _utc_now()
    deadline = now + timedelta(seconds=settings.INTERPRETATION_GENERATION_TIMEOUT_SECONDS)

    try:
        response = (
            supabase.table(TABLE)
            .insert(
                {
                    "run_id": str(run_id),
                    "version": version,
                    "status": ReportStatus.GENERATING.value,
                    "schema_version": settings.INTERPRETATION_SCHEMA_VERSION,
                    "deadline_at": deadline.isoformat(),
                }
            )
            .execute()
        )
    except APIError as e:
        if e.code == UNIQUE_VIOLATION:
            logger.info(
                f"Report v{version} insert lost the race: {e.message}",
                extra={"run_id": str(run_id)},
            )
            raise ReportConflictError("Generation already in progress") from e
        logger.error(f"Failed to create report: {e}", extra={"run_id": str(run_id)})
        raise
    except Exception as e:
        logger.error(f"Failed to create report: {e}", extra={"run_id": str(run_id)})
        raise

    if not response.data:
        raise ValueError("No data returned from create_generating_report")

    row = response.data[0]
    logger.info(
        f"Created report v{version}",
        extra={"run_id": str(run_id), "report_id": row["id"]},
    )
    return row


def complete_report(report_id: UUID, result: OrchestrationResult, latency_ms: int) -> bool:
    """
    Write the orchestrator output and mark the report completed.

    Only a row still in generating status is updated.

    Returns:
        True if the row transitioned, False if it was already terminal

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()

    try:
        response = (
            supabase.table(TABLE)
            .update(
                {
                    "status": ReportStatus.COMPLETED.value,
                    "sections": [s.model_dump() for s in result.sections],
                    "input_hash": result.input_hash,
                    "heuristics_passed": result.heuristics.passed,
                    "heuristics_violations": [
                        v.model_dump() for v in result.heuristics.violations
                    ],
                    "used_fallback": result.used_fallback,
                    "fallback_reason": result.fallback_reason,
                    "generation_attempts": result.attempts,
                    "model_used": result.model,
                    "tokens_used": result.tokens,
                    "latency_ms": latency_ms,
                    "updated_at": _utc_now().isoformat(),
                }
            )
            .eq("id", str(report_id))
            .eq("status", ReportStatus.GENERATING.value)
            .execute()
        )
    except Exception as e:
        logger.error(f"Failed to complete report: {e}", extra={"report_id": str(report_id)})
        raise

    transitioned = bool(response.data)
    if not transitioned:
        logger.warning(
            "Report was no longer generating; result discarded",
            extra={"report_id": str(report_id)},
        )
    return transitioned


def fail_report(report_id: UUID, error_message: str, latency_ms: int | None = None) -> bool:
    """
    Mark a generating report as failed.

    Returns:
        True if the row transitioned, False if it was already terminal

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()

    update: dict[str, Any] = {
        "status": ReportStatus.FAILED.value,
        "error_message": error_message,
        "updated_at": _utc_now().isoformat(),
    }
    if latency_ms is not None:
        update["latency_ms"] = latency_ms

    try:
        response = (
            supabase.table(TABLE)
            .update(update)
            .eq("id", str(report_id))
            .eq("status", ReportStatus.GENERATING.value)
            .execute()
        )
    except Exception as e:
        logger.error(f"Failed to fail report: {e}", extra={"report_id": str(report_id)})
        raise

    return bool(response.data)


def expire_stale_reports(run_id: UUID | None = None) -> int:
    """
    Mark generating reports past their deadline as failed.

    Args:
        run_id: Restrict the sweep to one run (all runs when omitted)

    Returns:
        Number of reports expired

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()
    now = _utc_now().isoformat()

    try:
        query = (
            supabase.table(TABLE)
            .update(
                {
                    "status": ReportStatus.FAILED.value,
                    "error_message": GENERATION_TIMEOUT,
                    "updated_at": now,
                }
            )
            .eq("status", ReportStatus.GENERATING.value)
            .lt("deadline_at", now)
        )
        if run_id is not None:
            query = query.eq("run_id", str(run_id))
        response = query.execute()
    except Exception as e:
        logger.error(f"Failed to expire stale reports: {e}")
        raise

    expired = len(response.data or [])
    if expired:
        scope = f" for run {run_id}" if run_id else ""
        logger.warning(f"Expired {expired} stale generating reports{scope}")
    return expired
