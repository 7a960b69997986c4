"""
Error taxonomy and exception handlers.

Every error the services raise derives from TrackerError and carries its
HTTP status. Messages of 4xx errors are returned to the caller verbatim;
anything else becomes a generic 500 and is only logged.
"""

from datetime import datetime, timezone

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError


class TrackerError(Exception):
    """Base exception for tracker errors."""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        status_code: int = 500,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        super().__init__(message)


class ValidationError(TrackerError):
    """Input validation failed."""

    def __init__(self, message: str):
        super().__init__(message, code="VALIDATION_ERROR", status_code=400)


class DecodeError(TrackerError):
    """
    An opaque identifier could not be decoded.

    Raised alike for malformed, truncated and tampered input so callers
    cannot tell them apart.
    """

    def __init__(self, message: str = "Invalid identifier"):
        super().__init__(message, code="INVALID_IDENTIFIER", status_code=400)


class AuthenticationError(TrackerError):
    """Request is not authenticated."""

    def __init__(self, message: str = "Invalid session", code: str = "UNAUTHENTICATED"):
        super().__init__(message, code=code, status_code=401)


class MissingCredentialError(AuthenticationError):
    def __init__(self):
        super().__init__("Authorization header required", code="MISSING_CREDENTIAL")


class MalformedCredentialError(AuthenticationError):
    def __init__(self):
        super().__init__("Bearer token required", code="MALFORMED_CREDENTIAL")


class InvalidSessionError(AuthenticationError):
    def __init__(self):
        super().__init__("Invalid session", code="INVALID_SESSION")


class InvalidCredentialsError(AuthenticationError):
    def __init__(self):
        super().__init__("Invalid username or password", code="INVALID_CREDENTIALS")


class CredentialFormatError(Exception):
    """Stored password hash is not in a supported format."""


class PermissionDeniedError(TrackerError):
    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, code="FORBIDDEN", status_code=403)


class NotFoundError(TrackerError):
    """Resource not found."""

    def __init__(self, resource: str):
        super().__init__(f"{resource} not found", code="NOT_FOUND", status_code=404)


class PartialUpdateError(TrackerError):
    """
    The tag step of an update committed and the field step did not.

    Carries the status of the field step's failure.
    """

    def __init__(self, status_code: int = 500):
        super().__init__(
            "Tags were updated but the other fields were not saved",
            code="PARTIAL_UPDATE",
            status_code=status_code,
        )


class PayloadTooLargeError(TrackerError):
    def __init__(self, limit: int):
        super().__init__(
            f"Payload exceeds {limit} bytes",
            code="PAYLOAD_TOO_LARGE",
            status_code=413,
        )


def create_error_response(error: str, code: str, status_code: int) -> JSONResponse:
    """Create standardized error response."""
    headers = {"WWW-Authenticate": "Bearer"} if status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "code": code,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
        headers=headers,
    )


def setup_exception_handlers(app):
    """Register exception handlers with FastAPI app."""

    @app.exception_handler(TrackerError)
    async def tracker_exception_handler(request: Request, exc: TrackerError):
        logger.info(
            "{} {} -> {} {}",
            request.method, request.url.path, exc.status_code, exc.code,
        )
        return create_error_response(exc.message, exc.code, exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        # Only the location and reason, never the submitted values
        details = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        return create_error_response(
            f"Invalid request body: {details}",
            "VALIDATION_ERROR",
            status.HTTP_400_BAD_REQUEST,
        )

    @app.exception_handler(SQLAlchemyError)
    async def database_exception_handler(request: Request, exc: SQLAlchemyError):
        logger.opt(exception=exc).error(
            "Database error on {} {}", request.method, request.url.path,
        )
        return create_error_response(
            "Internal Server Error",
            "INTERNAL_ERROR",
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.opt(exception=exc).error(
            "Unhandled exception on {} {}: {}", request.method, request.url.path, type(exc).__name__,
        )
        return create_error_response(
            "Internal Server Error",
            "INTERNAL_ERROR",
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
