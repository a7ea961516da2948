"""Interpretation report service.

Versioning and single-flight control for generation requests:
- start_generation claims the next version in generating status
- get_status returns the latest version plus can_regenerate
- run_generation_job is the detached worker that resolves the row

Generating rows past their deadline are reclaimed as failed before any
decision is made on them.
"""

import logging
import time
from typing import Any
from uuid import UUID

from app.core.interpretation_inputs import current_input_hash
from app.core.logging import get_logger, log_with_context
from app.core.schemas_interpretation import (
    GeneratedSection,
    HeuristicViolation,
    InterpretationReportView,
    InterpretationStatusResponse,
    ReportStatus,
)
from app.db import interpretation_reports as reports_db
from app.db.interpretation_reports import ReportConflictError
from app.graphs.interpretation_graph import run_interpretation_pipeline

logger = get_logger(__name__)

__all__ = [
    "ReportConflictError",
    "RegenerationNotAllowedError",
    "RunNotFoundError",
    "start_generation",
    "get_status",
    "run_generation_job",
]


class RunNotFoundError(LookupError):
    """The diagnostic run does not exist."""


class RegenerationNotAllowedError(Exception):
    """Answers and calibration are unchanged since the latest version."""

    def __init__(self, current_version: int):
        super().__init__("No changes detected. Regeneration requires answer or calibration changes.")
        self.current_version = current_version


def start_generation(run_id: UUID) -> tuple[UUID, int]:
    """
    Claim the next report version for a run.

    Args:
        run_id: Diagnostic run UUID

    Returns:
        Tuple of (report_id, version) for the new generating row

    Raises:
        ReportConflictError: If a generation is already in flight
        RunNotFoundError: If regenerating for a run that no longer exists
        RegenerationNotAllowedError: If the input hash is unchanged
    """
    reports_db.expire_stale_reports(run_id)

    in_flight = reports_db.get_generating_report(run_id)
    if in_flight:
        raise ReportConflictError("Generation already in progress", report_id=in_flight["id"])

    latest = reports_db.get_latest_report(run_id)
    if latest:
        current_hash = current_input_hash(run_id)
        if current_hash is None:
            raise RunNotFoundError(f"Run not found: {run_id}")
        if current_hash == latest.get("input_hash"):
            raise RegenerationNotAllowedError(latest["version"])

    version = (latest["version"] if latest else 0) + 1
    row = reports_db.create_generating_report(run_id, version)

    return UUID(str(row["id"])), version


def _to_view(report: dict[str, Any]) -> InterpretationReportView:
    sections = report.get("sections")
    violations = report.get("heuristics_violations")
    return InterpretationReportView(
        id=report["id"],
        run_id=report.get("run_id"),
        version=report["version"],
        status=report["status"],
        schema_version=report.get("schema_version"),
        sections=[GeneratedSection.model_validate(s) for s in sections] if sections else None,
        input_hash=report.get("input_hash"),
        used_fallback=report.get("used_fallback"),
        fallback_reason=report.get("fallback_reason"),
        heuristics_passed=report.get("heuristics_passed"),
        heuristics_violations=(
            [HeuristicViolation.model_validate(v) for v in violations] if violations is not None else None
        ),
        generation_attempts=report.get("generation_attempts"),
        model_used=report.get("model_used"),
        tokens_used=report.get("tokens_used"),
        latency_ms=report.get("latency_ms"),
        error_message=report.get("error_message"),
        created_at=report.get("created_at"),
        updated_at=report.get("updated_at"),
    )


def get_status(run_id: UUID) -> InterpretationStatusResponse:
    """
    Latest report version for a run and whether regeneration is allowed.

    Regeneration is never offered while a version is generating. For a
    terminal version it is offered when the current input hash differs
    from the stored one.
    """
    reports_db.expire_stale_reports(run_id)

    report = reports_db.get_latest_report(run_id)
    if not report:
        return InterpretationStatusResponse(status="none", can_regenerate=True, report=None)

    can_regenerate = False
    if report["status"] != ReportStatus.GENERATING.value:
        current_hash = current_input_hash(run_id)
        can_regenerate = current_hash is not None and current_hash != report.get("input_hash")

    return InterpretationStatusResponse(
        status=report["status"],
        can_regenerate=can_regenerate,
        report=_to_view(report),
    )


def run_generation_job(run_id: UUID, report_id: UUID) -> None:
    """
    Detached worker: run the pipeline and resolve the report row once.

    The pipeline absorbs input and generation failures; anything raised
    here is a store outage or an unexpected error and marks the row
    failed. If even that write fails, the deadline sweep reclaims the row.
    """
    start = time.time()
    log_with_context(
        logger, logging.INFO, "Interpretation job started", run_id=str(run_id), report_id=str(report_id)
    )

    try:
        result = run_interpretation_pipeline(run_id)
        latency_ms = int((time.time() - start) * 1000)
        reports_db.complete_report(report_id, result, latency_ms)

        log_with_context(
            logger,
            logging.INFO,
            "Interpretation job completed",
            run_id=str(run_id),
            report_id=str(report_id),
            latency_ms=latency_ms,
            used_fallback=result.used_fallback,
            attempts=result.attempts,
            tokens=result.tokens,
        )

    except Exception as e:
        latency_ms = int((time.time() - start) * 1000)
        logger.error(
            f"Interpretation job failed: {e}",
            extra={"run_id": str(run_id), "report_id": str(report_id)},
            exc_info=True,
        )
        try:
            reports_db.fail_report(report_id, str(e), latency_ms)
        except Exception as update_error:
            logger.error(
                f"Failed to mark report failed, leaving it to the deadline sweep: {update_error}",
                extra={"run_id": str(run_id), "report_id": str(report_id)},
            )
