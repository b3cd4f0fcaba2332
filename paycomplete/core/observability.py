import json
import logging
import time
import traceback
from contextvars import ContextVar
from datetime import datetime, timezone
from http import HTTPStatus
from uuid import uuid4

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from paycomplete.core.errors import PaymentRelayError, RateLimited, UpstreamError

REQUEST_ID_HEADER = "X-Request-ID"

request_id_ctx: ContextVar[str] = ContextVar("request_id", default="-")
logger = logging.getLogger("paycomplete.api")


class JsonLineFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, then the event fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname.lower(),
        }
        fields = getattr(record, "fields", None)
        if isinstance(fields, dict):
            payload.update(fields)
        else:
            payload["message"] = record.getMessage()
        return json.dumps(payload, default=str)


def setup_observability() -> None:
    if logger.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(JsonLineFormatter())
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False


def get_request_id() -> str:
    return request_id_ctx.get()


def log_event(event: str, *, level: int = logging.INFO, **fields: object) -> None:
    logger.log(level, event, extra={"fields": {"event": event, "request_id": get_request_id(), **fields}})


def _request_id_for(request: Request) -> str:
    return getattr(request.state, "request_id", None) or get_request_id()


def _error_response(
    request: Request,
    status_code: int,
    code: str,
    message: str,
    *,
    details: list[dict] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    envelope = {
        "code": code,
        "message": message,
        "request_id": _request_id_for(request),
        "path": request.url.path,
        "details": details,
    }
    return JSONResponse(status_code=status_code, content={"error": envelope}, headers=headers)


async def request_logging_middleware(request: Request, call_next):
    request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid4())
    request.state.request_id = request_id
    token = request_id_ctx.set(request_id)
    started = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
    finally:
        log_event(
            "request",
            method=request.method,
            path=request.url.path,
            status_code=status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        request_id_ctx.reset(token)

    response.headers[REQUEST_ID_HEADER] = request_id
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    log_event(
        "unhandled_exception",
        level=logging.ERROR,
        request_id=_request_id_for(request),
        path=request.url.path,
        error=f"{type(exc).__name__}: {exc}",
        traceback=traceback.format_exc(limit=10),
    )
    return _error_response(request, 500, "internal_error", "Internal server error")


async def payment_relay_exception_handler(request: Request, exc: PaymentRelayError):
    headers = None
    fields: dict[str, object] = {"code": exc.code, "path": request.url.path, "error": exc.message}
    if isinstance(exc, RateLimited):
        headers = {"Retry-After": str(exc.retry_after)}
    if isinstance(exc, UpstreamError):
        fields.update(
            service=exc.service,
            response_status=exc.response_status,
            response_body=exc.response_body,
        )
    log_event(
        "request_failed",
        level=logging.ERROR if exc.status_code >= 500 else logging.WARNING,
        **fields,
    )
    return _error_response(
        request,
        exc.status_code,
        exc.code,
        exc.message,
        details=exc.details,
        headers=headers,
    )


def _status_code_name(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase.lower().replace(" ", "_").replace("-", "_")
    except ValueError:
        return "http_error"


async def http_exception_handler(request: Request, exc: HTTPException):
    if isinstance(exc.detail, str):
        message, details = exc.detail, None
    else:
        message, details = "HTTP error", exc.detail
    return _error_response(
        request,
        exc.status_code,
        _status_code_name(exc.status_code),
        message,
        details=details,
        headers=exc.headers,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Request-body problems are reported as 400 with one entry per field."""
    details = []
    for err in exc.errors():
        location = [str(part) for part in err.get("loc", ()) if part != "body"]
        details.append(
            {
                "field": ".".join(location) or "body",
                "message": err.get("msg", "Invalid value"),
                "type": err.get("type"),
            }
        )

    log_event(
        "validation_failed",
        level=logging.WARNING,
        path=request.url.path,
        fields=[item["field"] for item in details],
    )
    return _error_response(request, 400, "validation_error", "Validation failed", details=details)
