"""Incident ids and the user-facing error shape."""

import logging
import secrets
import string
from datetime import UTC, datetime

from fastapi.responses import JSONResponse

from cortex_insights.core.insight_errors import InsightError
from cortex_insights.core.logging import log_with_context
from cortex_insights.core.schemas_context_mirror import ErrorResponse

_INCIDENT_ALPHABET = string.ascii_uppercase + string.digits


def generate_incident_id(now: datetime | None = None) -> str:
    """Incident id of the form INC-YYYY-XXXXXXXX."""
    year = (now or datetime.now(UTC)).year
    suffix = "".join(secrets.choice(_INCIDENT_ALPHABET) for _ in range(8))
    return f"INC-{year}-{suffix}"


def error_response(
    logger: logging.Logger,
    http_status: int,
    user_message: str,
    detail: str,
    level: int = logging.WARNING,
    exc_info: bool = False,
    **context,
) -> JSONResponse:
    """
    Log a failure under a fresh incident id and build the error response.

    Args:
        logger: Logger of the module reporting the failure
        http_status: Status code for the response
        user_message: Safe message shown to the caller
        detail: Internal description, logged only
        **context: Extra structured log fields
    """
    incident_id = generate_incident_id()
    if exc_info:
        logger.log(
            level,
            detail,
            exc_info=True,
            extra={"incident_id": incident_id, "extra_data": {"http_status": http_status, **context}},
        )
    else:
        log_with_context(
            logger, level, detail, incident_id=incident_id, http_status=http_status, **context
        )

    body = ErrorResponse(
        user_message=user_message, incident_id=incident_id, http_status=http_status
    )
    return JSONResponse(status_code=http_status, content=body.model_dump(by_alias=True))


def insight_error_response(logger: logging.Logger, error: InsightError, **context) -> JSONResponse:
    """Error response for a request-level error, using its status and message."""
    return error_response(logger, error.http_status, error.user_message, str(error), **context)
