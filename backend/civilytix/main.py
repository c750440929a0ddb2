"""FastAPI application entrypoint and configuration.

This module provides the main FastAPI application factory that sets up
logging, CORS middleware, the error handlers, the API routers for
extraction, history and administration, and a health check endpoint.

The storage handle is owned by the application: it is opened when the
application starts, shared by all requests through ``app.state`` and closed
at shutdown.

Example:
    The application can be run with uvicorn:
        $ uvicorn civilytix.main:app --reload

    Or imported and used programmatically:
        >>> from civilytix.main import create_app
        >>> app = create_app()
"""

from __future__ import annotations

import contextlib
import logging
from typing import TYPE_CHECKING

import fastapi
from fastapi.middleware import cors

from civilytix.api import admin, extract, history
from civilytix.core import config, errors
from civilytix.core import logging as log_config
from civilytix.db import database

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


@contextlib.asynccontextmanager
async def lifespan(app: fastapi.FastAPI) -> AsyncIterator[None]:
    """Open the repository at startup and close it at shutdown."""
    settings = config.get_settings()
    app.state.repository = database.open_repository(settings)
    logger.info("civilytix ledger started (%s backend, %s policy)",
                settings.storage_backend, settings.result_policy)
    try:
        yield
    finally:
        app.state.repository.close()
        logger.info("civilytix ledger stopped")


def create_app() -> fastapi.FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance ready for ASGI server.
    """
    settings = config.get_settings()
    log_config.configure_logging(settings.log_level)

    app = fastapi.FastAPI(title="Civilytix", version="0.1.0", lifespan=lifespan)

    app.include_router(extract.router)
    app.include_router(history.router)
    if settings.enable_admin_routes:
        app.include_router(admin.router)

    errors.register_exception_handlers(app)

    app.add_middleware(
        cors.CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health() -> dict[str, str]:  # type: ignore[misc]
        """Health check endpoint for monitoring and load balancers."""
        return {"status": "ok"}

    return app


app = create_app()
