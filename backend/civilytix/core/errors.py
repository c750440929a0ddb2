"""Error taxonomy shared by the gateway, the ledger and the HTTP layer.

Every failure the service reports carries a category and a message. The
exception handlers registered by the application factory render them as::

    {"status": "error", "error": "<category>", "message": "<message>"}

Denied and not-found outcomes are business results, not faults; they are
never retried. Anything unexpected is reported as ``system_error`` with the
underlying message.
"""

from __future__ import annotations

import logging
from typing import ClassVar

import fastapi
from fastapi import responses

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """Base class for failures with a defined HTTP status and category."""

    status_code: ClassVar[int] = 500
    category: ClassVar[str] = "system_error"


class Unauthenticated(LedgerError):
    """No resolvable caller identity."""

    status_code = 401
    category = "unauthenticated"


class EntitlementDenied(LedgerError):
    """The caller is known but not entitled to extraction."""

    status_code = 402
    category = "denied"


class RecordNotFound(LedgerError):
    """A user or a request id is absent on a read path."""

    status_code = 404
    category = "not_found"


class StorageError(LedgerError):
    """The backing store failed or rejected an operation."""


def _error_body(category: str, message: str) -> dict[str, str]:
    return {"status": "error", "error": category, "message": message}


async def ledger_error_handler(
    _request: fastapi.Request,
    exc: LedgerError,
) -> responses.JSONResponse:
    """Render a LedgerError with its own status code and category."""
    if exc.status_code >= 500:
        logger.error("request failed: %s", exc)
    return responses.JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.category, str(exc)),
    )


async def unhandled_error_handler(
    _request: fastapi.Request,
    exc: Exception,
) -> responses.JSONResponse:
    """Render any other exception as a system error."""
    logger.exception("unhandled error", exc_info=exc)
    return responses.JSONResponse(
        status_code=500,
        content=_error_body("system_error", str(exc) or type(exc).__name__),
    )


def register_exception_handlers(app: fastapi.FastAPI) -> None:
    """Attach the ledger error handlers to an application."""
    app.add_exception_handler(
        LedgerError,
        ledger_error_handler,  # type: ignore[arg-type]
    )
    app.add_exception_handler(Exception, unhandled_error_handler)
