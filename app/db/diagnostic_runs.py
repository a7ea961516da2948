"""Read access to diagnostic runs and their answers (upstream facts)."""

from typing import Any
from uuid import UUID

from app.core.logging import get_logger
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)


def get_diagnostic_run(run_id: UUID) -> dict[str, Any] | None:
    """
    Get a diagnostic run row.

    The row carries the run context (company, industry), the stakeholder
    calibration (importance map) and the scored assessment written by the
    scoring service.

    Args:
        run_id: Diagnostic run UUID

    Returns:
        Run dict or None if not found

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()

    try:
        response = (
            supabase.table("diagnostic_runs")
            .select("*")
            .eq("id", str(run_id))
            .limit(1)
            .execute()
        )
        if response.data:
            return response.data[0]

        logger.warning(f"Diagnostic run {run_id} not found", extra={"run_id": str(run_id)})
        return None

    except Exception as e:
        logger.error(f"Failed to get diagnostic run {run_id}: {e}", extra={"run_id": str(run_id)})
        raise


def list_diagnostic_inputs(run_id: UUID) -> list[dict[str, Any]]:
    """
    List answered questions for a run.

    Args:
        run_id: Diagnostic run UUID

    Returns:
        List of {question_id, value} dicts

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()

    try:
        response = (
            supabase.table("diagnostic_inputs")
            .select("question_id, value")
            .eq("run_id", str(run_id))
            .execute()
        )
        return response.data or []

    except Exception as e:
        logger.error(f"Failed to list inputs for run {run_id}: {e}", extra={"run_id": str(run_id)})
        raise
