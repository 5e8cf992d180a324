"""
Mapping of core exceptions to HTTP responses.

Every error body has an `error` message; `detail` carries the underlying
cause when there is one. Some errors add fields clients act on:

- DraftValidationError: `errors`, the full checklist
- UploadTooLargeError:  `error` is the fixed code UPLOAD_TOO_LARGE, plus `limit`
- ChunkSequenceError:   `expected` / `received` chunk indices
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from releasedesk.core import (
    AccessError,
    AssetError,
    ChunkSequenceError,
    CoreError,
    DraftValidationError,
    InvalidTransitionError,
    NotFoundError,
    PayloadError,
    TranscodeError,
    TransportError,
    UploadTooLargeError,
)

logger = logging.getLogger(__name__)

UPLOAD_TOO_LARGE = "UPLOAD_TOO_LARGE"

# Most specific first; the first isinstance match wins.
_STATUS_CODES: tuple[tuple[type[CoreError], int], ...] = (
    (DraftValidationError, 422),
    (InvalidTransitionError, 422),
    (NotFoundError, 404),
    (AccessError, 403),
    (PayloadError, 400),
    (TranscodeError, 502),
    (AssetError, 422),
    (UploadTooLargeError, 413),
    (ChunkSequenceError, 409),
    (TransportError, 400),
)


def status_for(exc: CoreError) -> int:
    for cls, status in _STATUS_CODES:
        if isinstance(exc, cls):
            return status
    return 500


def error_body(exc: CoreError) -> dict[str, Any]:
    body: dict[str, Any] = {"error": str(exc), "detail": None}
    if exc.__cause__ is not None:
        body["detail"] = str(exc.__cause__)

    if isinstance(exc, DraftValidationError):
        body["error"] = "Release is incomplete"
        body["errors"] = list(exc.errors)
    elif isinstance(exc, UploadTooLargeError):
        body["error"] = UPLOAD_TOO_LARGE
        body["detail"] = str(exc)
        body["limit"] = exc.limit
    elif isinstance(exc, ChunkSequenceError):
        body["expected"] = exc.expected
        body["received"] = exc.received
    elif isinstance(exc, TranscodeError):
        lines = exc.stderr.strip().splitlines()
        if lines:
            body["detail"] = lines[-1]
    return body


def register_error_handlers(app: FastAPI) -> None:
    """Install JSON handlers for the core exception hierarchy."""

    @app.exception_handler(CoreError)
    async def core_error_handler(request: Request, exc: CoreError) -> JSONResponse:
        status = status_for(exc)
        if isinstance(exc, (DraftValidationError, PayloadError, InvalidTransitionError)):
            logger.info("%s %s -> %d: %s", request.method, request.url.path, status, exc)
        elif isinstance(exc, (AssetError, TransportError, AccessError, NotFoundError)):
            logger.warning("%s %s -> %d: %s", request.method, request.url.path, status, exc)
        else:
            logger.exception("Unhandled core error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=status, content=error_body(exc))
