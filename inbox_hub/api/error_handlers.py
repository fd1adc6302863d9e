"""
Exception handlers translating hub errors into JSON error responses.
"""

from datetime import datetime, timezone
from typing import Dict, Any, List, Tuple, Type

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from inbox_hub.core.exceptions import (
    HubError, VerificationFailedError, MalformedPayloadError, ContentValidationError,
    UnsupportedPlatformError, TokenExpiredError, TokenRevokedError, OutsideMessagingWindowError,
    PermanentRejectError, RateLimitedError, TimeoutUnresolvedError, GraphTransportError, PlatformError
)
from inbox_hub.services.exceptions import ValidationError, NotFoundError, UnauthorizedError, ConflictError
from inbox_hub.utils.logger import get_logger

logger = get_logger(__name__)

# first match wins, so subclasses precede their bases
STATUS_BY_ERROR: List[Tuple[Type[HubError], int]] = [
    (VerificationFailedError, status.HTTP_403_FORBIDDEN),
    (MalformedPayloadError, status.HTTP_400_BAD_REQUEST),
    (ContentValidationError, status.HTTP_400_BAD_REQUEST),
    (UnsupportedPlatformError, status.HTTP_400_BAD_REQUEST),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (UnauthorizedError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (TokenExpiredError, status.HTTP_409_CONFLICT),
    (TokenRevokedError, status.HTTP_409_CONFLICT),
    (OutsideMessagingWindowError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (PermanentRejectError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (RateLimitedError, status.HTTP_429_TOO_MANY_REQUESTS),
    (TimeoutUnresolvedError, status.HTTP_504_GATEWAY_TIMEOUT),
    (GraphTransportError, status.HTTP_502_BAD_GATEWAY),
]


def status_for(exc: HubError) -> int:
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def hub_exception_handler(request: Request, exc: HubError) -> JSONResponse:
    """
    Handler for hub exceptions.

    Errors raised during an outbound send carry the persisted message so the
    client can show its recorded status.
    """
    status_code = status_for(exc)
    error = exc.to_dict()

    if isinstance(exc, PlatformError) and exc.message_record is not None:
        error["details"] = {
            **error["details"],
            "message": exc.message_record.model_dump(mode="json", exclude={"raw_payload"}),
        }

    log = logger.error if status_code >= 500 else logger.warning
    log(
        "Request failed",
        path=request.url.path,
        method=request.method,
        status_code=status_code,
        error_code=exc.error_code,
        error=exc.message
    )

    headers: Dict[str, str] = {}
    if isinstance(exc, RateLimitedError) and exc.retry_after:
        headers["Retry-After"] = str(int(exc.retry_after))

    return JSONResponse(
        status_code=status_code,
        content={"status": "error", "error": error, "meta": _meta(request)},
        headers=headers or None
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unexpected exceptions."""
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        error=str(exc),
        exc_info=True
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "status": "error",
            "error": {"error_code": "INTERNAL_SERVER_ERROR", "message": "An unexpected error occurred"},
            "meta": _meta(request),
        }
    )


def _meta(request: Request) -> Dict[str, Any]:
    meta = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "path": request.url.path,
        "method": request.method,
    }
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        meta["request_id"] = request_id
    return meta


def setup_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(HubError, hub_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
    logger.info("Exception handlers configured")
