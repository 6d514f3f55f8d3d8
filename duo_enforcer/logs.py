"""
Structured Logging
==================
structlog configured on top of stdlib logging, so module loggers
(``structlog.get_logger(__name__)``) and plain stdlib loggers (tenacity,
uvicorn, httpx) share one JSON stream.

Usage:
    from duo_enforcer.logs import setup_logging, RequestContextMiddleware

    setup_logging(service_name="duo-enforcer")
    app.add_middleware(RequestContextMiddleware)
"""

import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Optional

import structlog

request_id_var: ContextVar[str] = ContextVar("request_id", default="")
service_name_var: ContextVar[str] = ContextVar("service_name", default="duo-enforcer")


def _add_service(logger, method_name, event_dict):
    event_dict.setdefault("service", service_name_var.get())
    return event_dict


def setup_logging(
    service_name: str = "duo-enforcer",
    level: str = "INFO",
    json_output: bool = True,
) -> logging.Logger:
    """
    Configure logging for the enforcer.

    Args:
        service_name: Name stamped on every record
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: JSON lines for production, console rendering otherwise

    Returns:
        Configured root logger
    """
    service_name_var.set(service_name)
    log_level = getattr(logging, level.upper(), logging.INFO)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _add_service,
    ]

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if json_output:
        final = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        final = [structlog.dev.ConsoleRenderer()]

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta] + final,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    structlog.get_logger(__name__).info("Logging configured", event_type="logging.configured")
    return root_logger


def current_request_id() -> Optional[str]:
    return request_id_var.get() or None


class RequestContextMiddleware:
    """
    ASGI middleware binding a request id (``X-Request-ID`` or a fresh uuid)
    to the logging context for the lifetime of each HTTP request.
    """

    def __init__(self, app):
        self.app = app
        self.logger = structlog.get_logger("http")

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        req_id = headers.get(b"x-request-id", b"").decode() or str(uuid.uuid4())
        token = request_id_var.set(req_id)
        structlog.contextvars.bind_contextvars(request_id=req_id)

        method = scope.get("method", "")
        path = scope.get("path", "")
        start_time = time.time()
        status_code = 500

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message.get("status", 500)
                message.setdefault("headers", [])
                message["headers"] = list(message["headers"]) + [(b"x-request-id", req_id.encode())]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            self.logger.info(
                "Request handled",
                method=method,
                path=path,
                status_code=status_code,
                duration_ms=int((time.time() - start_time) * 1000),
            )
            structlog.contextvars.unbind_contextvars("request_id")
            request_id_var.reset(token)
