"""API endpoints for diagnostic interpretation generation."""

from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, HTTPException

from app.core.logging import get_logger
from app.core.schemas_interpretation import InterpretationStatusResponse, StartInterpretationResponse
from app.services.interpretation_reports import (
    RegenerationNotAllowedError,
    ReportConflictError,
    RunNotFoundError,
    get_status,
    run_generation_job,
    start_generation,
)

logger = get_logger(__name__)

router = APIRouter()


@router.post(
    "/diagnostic-runs/{run_id}/interpret",
    response_model=StartInterpretationResponse,
    status_code=202,
)
async def start_interpretation(
    run_id: UUID,
    background_tasks: BackgroundTasks,
) -> StartInterpretationResponse:
    """
    Start or regenerate the interpretation for a diagnostic run.

    Creates a new report version in generating status and runs the
    pipeline in the background. Poll the status endpoint for the result.

    Raises:
        HTTPException 409: If a generation is already in progress
        HTTPException 400: If answers and calibration are unchanged
        HTTPException 404: If the run no longer exists
        HTTPException 500: If the report store is unavailable
    """
    try:
        report_id, version = start_generation(run_id)

    except ReportConflictError as e:
        raise HTTPException(
            status_code=409,
            detail={"error": "Generation in progress", "report_id": e.report_id},
        ) from e
    except RegenerationNotAllowedError as e:
        raise HTTPException(
            status_code=400,
            detail={"error": str(e), "current_version": e.current_version},
        ) from e
    except RunNotFoundError as e:
        raise HTTPException(status_code=404, detail="Run not found") from e
    except Exception as e:
        logger.exception(f"Failed to start interpretation for run {run_id}")
        raise HTTPException(status_code=500, detail="Failed to start interpretation") from e

    background_tasks.add_task(run_generation_job, run_id, report_id)

    logger.info(
        f"Queued interpretation v{version}",
        extra={"run_id": str(run_id), "report_id": str(report_id)},
    )

    return StartInterpretationResponse(report_id=report_id, version=version)


@router.get(
    "/diagnostic-runs/{run_id}/interpret/status",
    response_model=InterpretationStatusResponse,
)
async def get_interpretation_status(run_id: UUID) -> InterpretationStatusResponse:
    """
    Get the latest interpretation version for a run.

    Returns status "none" with can_regenerate true when the run has no
    report yet.
    """
    try:
        return get_status(run_id)

    except Exception as e:
        logger.exception(f"Failed to get interpretation status for run {run_id}")
        raise HTTPException(status_code=500, detail="Failed to retrieve interpretation status") from e
