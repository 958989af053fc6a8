"""
Errors raised by the integration protection layer and their HTTP mapping.

Every error a client can see is an AppError subclass carrying a stable
``code``, a generic ``message`` and optional ``details``/``headers``.
Stack traces, key material and token values are NEVER returned to clients.

Status codes used by this layer:
- 400: Malformed partner request (missing OAuth params, bad webhook JSON)
- 401: Webhook / OAuth signature verification failed
- 404: Unknown integration
- 429: Rate limit exceeded (with Retry-After)
- 500: Vault or verifier misconfigured, stored credential undecryptable
- 503: Integration storage not wired into the app
"""

import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


class AppError(Exception):
    """
    Base class for client-visible errors.

    Subclasses set ``code``, ``status_code`` and ``default_message`` as
    class attributes.
    """

    code = "INTERNAL_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message or self.default_message
        super().__init__(self.message)
        self.details = details or {}
        self.headers = headers or {}

    def to_dict(self) -> dict:
        """API error body."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


class ConfigurationError(AppError):
    """
    Required secret material is missing.

    Raised by the vault when no valid key is configured and by the
    signature verifier when called with an empty secret.
    """

    code = "CONFIGURATION_ERROR"
    default_message = "Integration security is not configured"


class DecryptionError(AppError):
    """A stored secret is malformed or does not decrypt under the key."""

    code = "DECRYPTION_ERROR"
    default_message = "Failed to decrypt stored credential"


class ValidationError(AppError):
    code = "VALIDATION_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class AuthenticationError(AppError):
    """Partner signature could not be verified."""

    code = "AUTHENTICATION_ERROR"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid signature"


class NotFoundError(AppError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str, identifier: Optional[str] = None):
        if identifier:
            message = f"{resource} with id '{identifier}' not found"
        else:
            message = f"{resource} not found"
        super().__init__(message)


class RateLimitError(AppError):
    """
    Quota exhausted for the current window.

    ``retry_after`` (whole seconds) is echoed in ``details`` and in the
    ``Retry-After`` header.
    """

    code = "RATE_LIMIT_EXCEEDED"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Rate limit exceeded"

    def __init__(self, message: Optional[str] = None, retry_after: Optional[int] = None):
        details: Dict[str, Any] = {}
        headers: Dict[str, str] = {}
        if retry_after:
            details["retry_after_seconds"] = retry_after
            headers["Retry-After"] = str(retry_after)
        super().__init__(message, details=details, headers=headers)
        self.retry_after = retry_after


class ServiceUnavailableError(AppError):
    code = "SERVICE_UNAVAILABLE"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Service temporarily unavailable"


# ---------------------------------------------------------------------------
# Correlation IDs
# ---------------------------------------------------------------------------

def get_correlation_id(request: Request) -> str:
    """Reuse the caller's X-Correlation-ID, else the one assigned to this request, else a new one."""
    correlation_id = request.headers.get(CORRELATION_HEADER)
    if correlation_id:
        return correlation_id
    return getattr(request.state, "correlation_id", None) or str(uuid.uuid4())


def _log_request_failure(request: Request, correlation_id: str, **fields: Any) -> None:
    logger.warning(
        "Integration request rejected",
        extra={
            "correlation_id": correlation_id,
            "path": request.url.path,
            "method": request.method,
            **fields,
        },
    )


def _error_response(error: AppError, correlation_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=error.status_code,
        content=error.to_dict(),
        headers={CORRELATION_HEADER: correlation_id, **error.headers},
    )


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render an AppError raised by a route or dependency."""
    correlation_id = get_correlation_id(request)
    _log_request_failure(
        request, correlation_id, error_code=exc.code, status_code=exc.status_code
    )
    return _error_response(exc, correlation_id)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Assigns a correlation ID to every request and converts anything that
    escapes the route layer into a generic 500.

    IMPORTANT: Exception text is logged server-side only.
    """

    async def dispatch(self, request: Request, call_next):
        correlation_id = get_correlation_id(request)
        request.state.correlation_id = correlation_id

        try:
            response = await call_next(request)
        except AppError as e:
            _log_request_failure(
                request, correlation_id, error_code=e.code, status_code=e.status_code
            )
            return _error_response(e, correlation_id)
        except Exception as e:
            logger.exception(
                "Unhandled exception",
                extra={
                    "correlation_id": correlation_id,
                    "error_type": type(e).__name__,
                    "path": request.url.path,
                    "method": request.method,
                },
            )
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "error": {
                        "code": "INTERNAL_ERROR",
                        "message": "An unexpected error occurred",
                        "details": {"correlation_id": correlation_id},
                    }
                },
                headers={CORRELATION_HEADER: correlation_id},
            )

        response.headers[CORRELATION_HEADER] = correlation_id
        return response


def register_error_handlers(app: FastAPI) -> None:
    """Install the AppError handler and the catch-all middleware on ``app``."""
    app.add_exception_handler(AppError, app_error_handler)
    app.add_middleware(ErrorHandlerMiddleware)
