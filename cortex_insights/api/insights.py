"""Context mirror API endpoint."""

import logging
from datetime import timedelta
from functools import lru_cache

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from cortex_insights.core.auth_middleware import AuthContext, require_auth
from cortex_insights.core.config import get_settings
from cortex_insights.core.context_templates import classify_archetype, fallback
from cortex_insights.core.incident import (
    error_response,
    generate_incident_id,
    insight_error_response,
)
from cortex_insights.core.insight_cache import InsightCache
from cortex_insights.core.insight_errors import InsightError, NotFoundError
from cortex_insights.core.insight_orchestrator import build_orchestrator
from cortex_insights.core.logging import get_logger, log_with_context
from cortex_insights.core.schemas_context_mirror import (
    AssessmentRecord,
    ContextMirrorRequest,
    ContextMirrorResponse,
    ContextProfile,
)
from cortex_insights.db.assessments import AssessmentStore

logger = get_logger(__name__)

router = APIRouter()


@lru_cache
def get_assessment_store() -> AssessmentStore:
    return AssessmentStore()


@lru_cache
def get_insight_cache() -> InsightCache:
    """Process-wide cache manager; the memory tier lives as long as the process."""
    settings = get_settings()
    return InsightCache(
        orchestrator=build_orchestrator(),
        store=get_assessment_store(),
        ttl=timedelta(hours=settings.CONTEXT_MIRROR_CACHE_TTL_HOURS),
    )


def _owned(assessment: AssessmentRecord | None, auth: AuthContext) -> bool:
    if assessment is None:
        return False
    return auth.is_admin or assessment.user_id == auth.user_id


def _recover_profile(
    store: AssessmentStore,
    assessment: AssessmentRecord | None,
    assessment_id: str,
    auth: AuthContext,
) -> ContextProfile | None:
    """Best-effort profile lookup for the degrade path. Never raises."""
    if assessment is None:
        try:
            assessment = store.get_assessment(assessment_id)
        except Exception as e:
            logger.warning(f"Could not re-read assessment {assessment_id}: {e}")
            return None
    if not _owned(assessment, auth):
        return None
    return assessment.context_profile


@router.post("/insights/context-mirror")
async def get_context_mirror(
    request: ContextMirrorRequest,
    debug: bool = Query(False, description="Include generation diagnostics (admin only)"),
    refresh: bool = Query(False, description="Force regeneration (admin only)"),
    auth: AuthContext = Depends(require_auth),
    store: AssessmentStore = Depends(get_assessment_store),
    cache: InsightCache = Depends(get_insight_cache),
) -> JSONResponse:
    """
    Return the context mirror brief for an assessment the caller owns.

    Served from the memory tier, then the persisted tier, then generated.
    Generation never fails the request: the fallback template covers it.

    Returns:
        Insight payload, plus ``debug`` diagnostics for admin callers that ask
    """
    assessment_id = str(request.assessment_id)
    assessment: AssessmentRecord | None = None

    try:
        assessment = store.get_assessment(assessment_id)
        if not _owned(assessment, auth):
            # Unowned and missing look the same to the caller
            raise NotFoundError(f"Assessment {assessment_id} not found for user {auth.user_id}")

        result = await cache.get(
            assessment.user_id,
            assessment_id,
            assessment=assessment,
            refresh=refresh and auth.is_admin,
        )

    except InsightError as e:
        return insight_error_response(logger, e, assessment_id=assessment_id)

    except Exception as e:
        profile = _recover_profile(store, assessment, assessment_id, auth)
        if profile is None:
            return error_response(
                logger,
                500,
                InsightError.user_message,
                f"Context mirror failed: {e}",
                level=logging.ERROR,
                exc_info=True,
                assessment_id=assessment_id,
            )

        incident_id = generate_incident_id()
        logger.error(
            f"Context mirror failed, serving fallback template: {e}",
            exc_info=True,
            extra={
                "incident_id": incident_id,
                "extra_data": {
                    "assessment_id": assessment_id,
                    "archetype": classify_archetype(profile).value,
                },
            },
        )
        return JSONResponse(content=fallback(profile).model_dump(mode="json"))

    response = ContextMirrorResponse(
        **result.payload.model_dump(),
        debug=result.diagnostics,
    )
    if debug and auth.is_admin:
        content = response.model_dump(mode="json")
    else:
        content = response.model_dump(mode="json", exclude={"debug"})

    log_with_context(
        logger,
        logging.INFO,
        "Context mirror served",
        assessment_id=assessment_id,
        source=result.source.value,
        debug=debug and auth.is_admin,
    )
    return JSONResponse(content=content)
