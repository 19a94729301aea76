# copyflow/errors.py
"""Error taxonomy shared by the HTTP layer and the bulk pipeline."""

from typing import Any, Dict, Optional

E_AUTH = "E_AUTH"
E_FORBIDDEN = "E_FORBIDDEN"
E_RATE_LIMIT = "E_RATE_LIMIT"
E_VALIDATION = "E_VALIDATION"
E_NOT_FOUND = "E_NOT_FOUND"
E_FETCH = "E_FETCH"
E_GENERATION = "E_GENERATION"
E_PIPELINE = "E_PIPELINE"


class CopyFlowError(Exception):
    status_code = 500
    error_code = "E_INTERNAL"

    def __init__(self, message: str, details: Optional[Any] = None,
                 headers: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.message = message
        self.details = details
        self.headers = headers or {}

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message, "error_code": self.error_code}
        if self.details is not None:
            body["details"] = self.details
        return body


class AuthenticationError(CopyFlowError):
    status_code = 401
    error_code = E_AUTH


class AuthorizationError(CopyFlowError):
    status_code = 403
    error_code = E_FORBIDDEN


class RateLimitError(CopyFlowError):
    status_code = 429
    error_code = E_RATE_LIMIT


class ValidationError(CopyFlowError):
    status_code = 400
    error_code = E_VALIDATION


class NotFoundError(CopyFlowError):
    status_code = 404
    error_code = E_NOT_FOUND


class ExternalFetchError(CopyFlowError):
    """Competitor page could not be fetched (timeout, blocked, unsupported domain)."""
    status_code = 400
    error_code = E_FETCH


class GenerationError(CopyFlowError):
    """Upstream content generation produced no usable result."""
    status_code = 500
    error_code = E_GENERATION


class PipelineFault(CopyFlowError):
    status_code = 500
    error_code = E_PIPELINE


# Failures contained inside a single bulk item; anything else fails the job.
ITEM_FAILURES = (ValidationError, GenerationError, ExternalFetchError)
