"""HTTP mapping of orchestration failures."""

import math

from fastapi import HTTPException

from mealgen.gateway.types import OrchestrationError, OrchestrationErrorKind

ERROR_STATUS: dict[OrchestrationErrorKind, int] = {
    OrchestrationErrorKind.NO_CREDENTIALS: 503,
    OrchestrationErrorKind.ALL_RATE_LIMITED: 429,
    OrchestrationErrorKind.ALL_FAILED: 502,
    OrchestrationErrorKind.UNRECOVERABLE_RESPONSE: 502,
    OrchestrationErrorKind.CANCELLED: 499,
}


class OrchestrationHTTPError(HTTPException):
    """An ``OrchestrationError`` as an HTTP response (body = error dict)."""

    def __init__(self, error: OrchestrationError):
        headers = None
        if error.kind == OrchestrationErrorKind.ALL_RATE_LIMITED and error.retry_after_seconds:
            headers = {"Retry-After": str(math.ceil(error.retry_after_seconds))}
        super().__init__(status_code=ERROR_STATUS[error.kind], detail=error.to_dict(), headers=headers)
        self.error = error
