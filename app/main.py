"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from app.api import router as api_router
from app.core.logging import get_logger
from app.db.interpretation_reports import expire_stale_reports

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Reclaim generating reports orphaned by a previous process."""
    try:
        expire_stale_reports()
    except Exception as e:
        logger.error(f"Startup sweep of stale reports failed: {e}")
    yield


app = FastAPI(
    title="Diagnostic Interpretation Engine",
    description="LangGraph-based narrative interpretation service for diagnostic runs",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "ok"}, status_code=200)


# Include v1 API router
app.include_router(api_router, prefix="/v1", tags=["v1"])
