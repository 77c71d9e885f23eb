from __future__ import annotations

import logging
import sys
import time
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterator

import structlog
from fastapi import Request

# Probe endpoints are logged at debug level only
QUIET_PATHS = frozenset({"/", "/healthz"})


def _add_log_level(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    event_dict["level"] = method_name
    return event_dict


def configure_logging(env: str = "development", debug: bool = False) -> None:
    """Route stdlib logging and structlog to stdout.

    Production emits JSON lines; other environments use the colored console
    renderer. `debug` lowers the threshold to DEBUG.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=logging.DEBUG if debug else logging.INFO,
    )

    renderer: Any = (
        structlog.processors.JSONRenderer()
        if env == "production"
        else structlog.dev.ConsoleRenderer(colors=True)
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            _add_log_level,
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


@contextmanager
def bound_context(**values: Any) -> Iterator[None]:
    """Attach `values` to every log event emitted inside the block."""
    tokens = structlog.contextvars.bind_contextvars(**values)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)


async def request_id_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Tag every log event of a request with its request_id and log the outcome."""
    start = time.perf_counter()
    path = request.url.path
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id, method=request.method, path=path
    )

    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
    finally:
        logger = structlog.get_logger("request")
        log = logger.debug if path in QUIET_PATHS else logger.info
        log(
            "request.completed",
            status=status_code,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        structlog.contextvars.clear_contextvars()

    response.headers["x-request-id"] = request_id
    return response
