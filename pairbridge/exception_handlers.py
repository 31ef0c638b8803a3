"""Exception handlers for the HTTP layer and the event loop."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from typing import Any, Callable

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from pairbridge.adapters.shared import PairingError

logger = logging.getLogger(__name__)

# Transient protocol conditions that must not bring the process down.
BENIGN_ERRORS = (
    "conflict",
    "not-authorized",
    "Socket connection timeout",
    "rate-overlimit",
    "Connection Closed",
    "Timed Out",
    "Value not found",
)


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


async def pairing_error_handler(request: Request, exc: PairingError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": str(exc)})


async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error on %s: %s", request.url.path, exc, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def register_exception_handlers(app: FastAPI) -> None:
    """Register all custom exception handlers with the FastAPI app."""
    app.add_exception_handler(PairingError, pairing_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(ValueError, value_error_handler)
    app.add_exception_handler(Exception, generic_error_handler)


# ---------------------------------------------------------------------------
# Event loop
# ---------------------------------------------------------------------------


def is_benign(message: str) -> bool:
    """Whether an uncaught error message matches a known transient condition."""
    return any(pattern in message for pattern in BENIGN_ERRORS)


def _request_shutdown() -> None:
    os.kill(os.getpid(), signal.SIGTERM)


class UncaughtErrorFilter:
    """
    asyncio exception handler for errors nothing else caught.

    Benign protocol errors are logged and ignored. Anything else is logged
    as critical and the process is asked to shut down.
    """

    def __init__(self, on_fatal: Callable[[], None] = _request_shutdown):
        self._on_fatal = on_fatal
        self.ignored = 0

    def __call__(self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        exc = context.get("exception")
        message = str(exc) if exc is not None else context.get("message", "")

        if is_benign(message):
            self.ignored += 1
            logger.warning("Ignoring transient error: %s", message)
            return

        logger.critical("Uncaught exception: %s", message, exc_info=exc)
        self._on_fatal()

    def install(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        (loop or asyncio.get_running_loop()).set_exception_handler(self)
