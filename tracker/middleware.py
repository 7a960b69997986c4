"""
Upload size guard.

FastAPI parses a multipart body completely, spooling every part to disk,
before a route handler runs. This middleware turns oversized photo
uploads away from the declared Content-Length, before any of the body
is read.
"""

import re
from typing import Callable

from fastapi import Request, Response, status
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware

from tracker.errors import PayloadTooLargeError, create_error_response

# Boundaries and part headers around the file itself
MULTIPART_OVERHEAD = 16 * 1024

UPLOAD_PATH = re.compile(r"^/api/transaction/[^/]+/photo$")


class UploadLimitMiddleware(BaseHTTPMiddleware):
    """
    Refuse photo uploads that are too large, or do not say how large they are.

    The per-file limit is still enforced while the file is copied to
    storage; this check only stops the body from being buffered first.
    """

    def __init__(self, app, max_bytes: int):
        super().__init__(app)
        self.max_bytes = max_bytes
        self.max_body = max_bytes + MULTIPART_OVERHEAD

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.method != "POST" or not UPLOAD_PATH.match(request.url.path):
            return await call_next(request)

        declared = request.headers.get("content-length")
        if declared is None:
            return create_error_response(
                "Content-Length required for uploads",
                "LENGTH_REQUIRED",
                status.HTTP_411_LENGTH_REQUIRED,
            )
        if not declared.isdigit():
            return create_error_response(
                "Invalid Content-Length",
                "VALIDATION_ERROR",
                status.HTTP_400_BAD_REQUEST,
            )
        if int(declared) > self.max_body:
            logger.info("Refused {} byte upload to {}", declared, request.url.path)
            error = PayloadTooLargeError(self.max_bytes)
            return create_error_response(error.message, error.code, error.status_code)

        return await call_next(request)
