import logging
from typing import Any, Optional

from fastapi import Request, HTTPException, status
from fastapi.responses import JSONResponse

from medisync.middleware.tracing import TRACE_ID_CTX_VAR

logger = logging.getLogger("medisync")


class MedisyncError(Exception):
    """Base class for errors that reach the invocation boundary.

    ``public_message`` is what the end user sees; the exception text may
    carry internals and is only logged.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    public_message = "Report analysis failed"

    def __init__(self, message: str = "", *, report_id: Optional[str] = None):
        super().__init__(message or self.public_message)
        self.report_id = report_id


class GatewayError(MedisyncError):
    """The text-generation endpoint was unreachable or returned no completion."""

    status_code = status.HTTP_502_BAD_GATEWAY
    public_message = "The analysis service is unavailable. Please try again later."

    def __init__(self, message: str = "", *, status_code: Optional[int] = None, report_id: Optional[str] = None):
        super().__init__(message, report_id=report_id)
        self.upstream_status = status_code


class AnalysisFailed(MedisyncError):
    """Mandatory extraction step could not complete; the record is marked failed."""

    status_code = status.HTTP_502_BAD_GATEWAY
    public_message = "Failed to analyze report. You can retry later."


class PersistenceError(MedisyncError):
    """A write to the report store was rejected."""

    public_message = "Failed to save analysis results"


class ReportNotFound(PersistenceError):
    status_code = status.HTTP_404_NOT_FOUND
    public_message = "Report not found"


def _trace_id(request: Request) -> str:
    # request.state survives into the outermost error middleware; the context var may not
    return getattr(request.state, "trace_id", None) or TRACE_ID_CTX_VAR.get()


def status_to_code(status_code: int) -> str:
    mapping = {
        400: "BAD_REQUEST",
        401: "UNAUTHORIZED",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        413: "PAYLOAD_TOO_LARGE",
        415: "UNSUPPORTED_MEDIA_TYPE",
        422: "UNPROCESSABLE_ENTITY",
        429: "TOO_MANY_REQUESTS",
        500: "INTERNAL_SERVER_ERROR",
        502: "BAD_GATEWAY",
    }
    return mapping.get(status_code, f"HTTP_{status_code}")


async def handle_http_exception(request: Request, exc: HTTPException):
    trace_id = _trace_id(request)
    detail: Any = exc.detail
    message = detail if isinstance(detail, str) else "HTTP error"
    body = {"code": status_to_code(exc.status_code), "message": message, "trace_id": trace_id}
    if detail is not None:
        body["details"] = detail
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))


async def handle_medisync_error(request: Request, exc: MedisyncError):
    trace_id = _trace_id(request)
    body = {
        "code": status_to_code(exc.status_code),
        "message": exc.public_message,
        "error": exc.public_message,
        "trace_id": trace_id,
    }
    if exc.report_id:
        body["report_id"] = exc.report_id
    return JSONResponse(status_code=exc.status_code, content=body)


async def handle_unhandled_exception(request: Request, exc: Exception):
    trace_id = _trace_id(request)
    logger.error({"function": "unhandled_exception", "path": str(request.url.path), "trace_id": trace_id}, exc_info=exc)
    body = {
        "code": "INTERNAL_SERVER_ERROR",
        "message": "An unexpected error occurred",
        "error": "An unexpected error occurred",
        "trace_id": trace_id,
    }
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body)
