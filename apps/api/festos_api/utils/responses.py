"""Response envelope: {success, data|error, metadata}."""

import logging
import time
from typing import Any, Optional

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from festos_api.errors import (
    EventNotFoundError,
    FestosError,
    InvalidEventStateError,
    StorageError,
    ValidationError,
)
from festos_api.utils.clock import utcnow

logger = logging.getLogger(__name__)


def _metadata(request: Optional[Request]) -> dict:
    started = getattr(request.state, "started_at", None) if request is not None else None
    elapsed_ms = (time.perf_counter() - started) * 1000 if started else 0.0
    metadata = {
        "response_time_ms": round(elapsed_ms, 2),
        "timestamp": utcnow().isoformat(),
    }
    correlation_id = getattr(request.state, "correlation_id", None) if request is not None else None
    if correlation_id:
        metadata["correlation_id"] = correlation_id
    return metadata


def success(request: Request, data: Any) -> dict:
    return {"success": True, "data": data, "metadata": _metadata(request)}


def error_response(request: Request, status_code: int, error: dict) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error, "metadata": _metadata(request)},
    )


def status_code_for(exc: FestosError) -> int:
    if isinstance(exc, InvalidEventStateError):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, EventNotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, StorageError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def festos_error_handler(request: Request, exc: FestosError) -> JSONResponse:
    if isinstance(exc, (ValidationError, StorageError)):
        error = exc.to_dict()
    elif isinstance(exc, EventNotFoundError):
        error = {"type": "not_found", "message": str(exc), "event_id": exc.event_id}
    else:
        error = {"type": "error", "message": str(exc)}

    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"Request failed: {exc}", extra={"path": request.url.path})
    return error_response(request, status_code, error)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
    return error_response(
        request,
        status.HTTP_400_BAD_REQUEST,
        {"type": "validation_error", "message": first.get("msg", "Invalid request"), "field": field or None},
    )
