"""Error taxonomy for the context insight pipeline.

Request-level errors (``InvalidRequestError``, ``NotFoundError``,
``MissingProfileError``) are surfaced to the caller. Generation errors stay
inside the orchestrator and only show up in diagnostics. ``PersistenceError``
is logged and never fails a request.
"""

from enum import Enum


class FailureReason(str, Enum):
    """Why a single generation attempt did not produce an accepted payload."""

    TIMEOUT = "timeout"
    TRANSPORT_ERROR = "transport_error"
    PARSE_ERROR = "parse_error"
    POLICY_VIOLATION = "policy_violation"


class InsightError(Exception):
    """Base class for request-level errors mapped to an HTTP status."""

    http_status: int = 500
    user_message: str = "We are experiencing technical difficulties. Please try again shortly"


class InvalidRequestError(InsightError):
    """Malformed request body or assessment id."""

    http_status = 400
    user_message = "Please check your input and try again"


class NotFoundError(InsightError):
    """Assessment does not exist or is not owned by the caller."""

    http_status = 404
    user_message = "The requested assessment could not be found"


class MissingProfileError(InsightError):
    """Assessment exists but has no context profile yet."""

    http_status = 400
    user_message = "Complete the context profile before requesting insights"


class GenerationError(Exception):
    """A generation attempt failed; the orchestrator decides what happens next."""

    reason: FailureReason

    def __init__(self, message: str, raw_response: str | None = None):
        super().__init__(message)
        self.raw_response = raw_response


class GenerationTimeout(GenerationError):
    reason = FailureReason.TIMEOUT


class GenerationTransportError(GenerationError):
    reason = FailureReason.TRANSPORT_ERROR


class GenerationParseError(GenerationError):
    reason = FailureReason.PARSE_ERROR


class PolicyViolation(GenerationError):
    reason = FailureReason.POLICY_VIOLATION

    def __init__(self, message: str, raw_response: str | None = None, terms: list[str] | None = None):
        super().__init__(message, raw_response)
        self.terms = terms or []


class PersistenceError(Exception):
    """Writing the durable cached payload failed."""
