# sealdesk/utils/logger.py

"""
structlog configuration for the engine.

Records from structlog and from plain ``logging`` loggers go through the
same processor chain, so celery and uvicorn output carries the request
id and app context too. Signing tokens and verification codes never
reach a handler: they are redacted from event keys and from request
paths.
"""

import logging
import re
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any, Dict, List, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

REQUEST_ID_HEADER = "X-Request-ID"
REDACTED = "***"

# Event keys whose values are credentials
SENSITIVE_KEYS = frozenset({
    "token", "signing_token", "code", "email_code", "sms_code", "otp", "secret", "api_key", "password",
})

_SIGNING_PATH = re.compile(r"^(/sign/)[^/]+")

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

_app_context: Dict[str, str] = {"app": "sealdesk", "environment": "development"}


def add_request_id(logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    request_id = request_id_var.get()
    if request_id:
        event_dict["request_id"] = request_id
    return event_dict


def add_app_context(logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    event_dict.update(_app_context)
    return event_dict


def redact_sensitive(logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Blank out credential values wherever a caller logged them"""
    for key in SENSITIVE_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = REDACTED
    return event_dict


def mask_path(path: str) -> str:
    """'/sign/<token>/consent' -> '/sign/***/consent'"""
    return _SIGNING_PATH.sub(rf"\1{REDACTED}", path)


def _processors() -> List[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        add_request_id,
        add_app_context,
        redact_sensitive,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def _handler(handler: logging.Handler, renderer, level: int) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=_processors(),
    ))
    return handler


def setup_logging(
    log_level: str = "INFO",
    use_json: bool = True,
    log_file: Optional[str] = None,
    app_name: str = "sealdesk",
    environment: str = "development",
) -> None:
    """
    Route structlog and stdlib logging through one handler set.

    Args:
        log_level: Root level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_json: JSON lines on stdout instead of the console renderer
        log_file: Optional path that always receives JSON lines
        app_name: Value of the ``app`` key on every record
        environment: Value of the ``environment`` key on every record
    """
    _app_context.update(app=app_name, environment=environment)
    level = getattr(logging, log_level.upper(), logging.INFO)

    if use_json:
        console_renderer = structlog.processors.JSONRenderer()
    else:
        console_renderer = structlog.dev.ConsoleRenderer(
            colors=False, exception_formatter=structlog.dev.plain_traceback,
        )

    handlers = [_handler(logging.StreamHandler(sys.stdout), console_renderer, level)]
    if log_file:
        handlers.append(_handler(logging.FileHandler(log_file), structlog.processors.JSONRenderer(), level))

    root = logging.getLogger()
    root.handlers = handlers
    root.setLevel(level)

    structlog.configure(
        processors=_processors() + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Access log with a request id echoed back in ``X-Request-ID``"""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        reset_token = request_id_var.set(request_id)
        logger = get_logger("sealdesk.access")
        path = mask_path(request.url.path)
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:  # pylint: disable=broad-except
            logger.error(
                "Request failed",
                method=request.method, path=path,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
                error=str(e), exc_info=True,
            )
            return JSONResponse(
                status_code=500,
                content={"error": "Internal server error", "details": {"request_id": request_id}},
                headers={REQUEST_ID_HEADER: request_id},
            )
        else:
            logger.info(
                "Request handled",
                method=request.method, path=path, status_code=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            request_id_var.reset(reset_token)


def setup_app_logging(
    app: FastAPI,
    log_level: str = "INFO",
    use_json: bool = True,
    log_file: Optional[str] = None,
    app_name: Optional[str] = None,
    environment: str = "development",
) -> None:
    """Configure logging and install the access log middleware on ``app``"""
    setup_logging(
        log_level=log_level,
        use_json=use_json,
        log_file=log_file,
        app_name=app_name or app.title,
        environment=environment,
    )
    app.add_middleware(RequestLoggingMiddleware)
