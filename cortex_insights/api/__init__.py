"""API router for v1 endpoints."""

from fastapi import APIRouter

from cortex_insights.api import insights

router = APIRouter()

# Context mirror routes
router.include_router(insights.router, tags=["insights"])
