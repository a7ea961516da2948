"""API router for v1 endpoints."""

from fastapi import APIRouter

from app.api import interpretation

router = APIRouter()

# Interpretation generation and status polling
router.include_router(interpretation.router, tags=["interpretation"])
