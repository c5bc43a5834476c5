from __future__ import annotations

import logging
import sys
import time
import uuid
from typing import Any

import structlog
from fastapi import Request

# Third-party loggers that would otherwise log every node request once per cycle.
_NOISY_LOGGERS = ("httpx", "httpcore")


def configure_logging(env: str = "development", debug: bool = False) -> None:
    """Route structlog through stdlib logging on stdout.

    Production emits one JSON object per line, anything else the colored
    console renderer.
    """
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level, force=True)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if debug else logging.WARNING)

    renderer: Any
    if env == "production":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


async def request_id_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Tag every log line of a request with its id and echo the id back."""
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
    started = time.perf_counter()
    status_code = 500

    with structlog.contextvars.bound_contextvars(
        request_id=request_id, path=request.url.path
    ):
        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            structlog.get_logger("http").info(
                "request.completed",
                method=request.method,
                status=status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )

    response.headers["x-request-id"] = request_id
    return response
