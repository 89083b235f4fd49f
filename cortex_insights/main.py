"""FastAPI application entry point."""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from cortex_insights.api import router as api_router
from cortex_insights.core.incident import error_response, insight_error_response
from cortex_insights.core.insight_errors import InvalidRequestError
from cortex_insights.core.logging import get_logger

logger = get_logger(__name__)

app = FastAPI(
    title="Cortex Insights",
    description="Context mirror insight generation service",
    version="0.1.0",
)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies (including a non-UUID assessmentId) use the standard error shape."""
    error = InvalidRequestError(f"Invalid request to {request.url.path}: {exc.errors()}")
    return insight_error_response(logger, error)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Auth and routing failures use the standard error shape."""
    user_message = (
        "Please sign in to continue" if exc.status_code == 401 else str(exc.detail)
    )
    response = error_response(
        logger,
        exc.status_code,
        user_message,
        f"HTTP {exc.status_code} on {request.url.path}: {exc.detail}",
    )
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "ok"}, status_code=200)


# Include v1 API router
app.include_router(api_router, prefix="/v1", tags=["v1"])
