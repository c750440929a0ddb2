"""Caller identity and shared storage dependencies.

Identity is verified upstream; requests arrive with the verified user id in
a header (``user-id`` by default). A request without it is rejected with 401
before any other work is done.
"""

from __future__ import annotations

import fastapi

from civilytix.core import config, errors
from civilytix.db import database


def get_user_id(
    request: fastapi.Request,
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> str:
    """Resolve the caller's user id from the identity header.

    Raises:
        Unauthenticated: If the header is missing or blank.
    """
    user_id = request.headers.get(settings.identity_header, "").strip()
    if not user_id:
        raise errors.Unauthenticated("Authentication required")
    return user_id


def get_repo(request: fastapi.Request) -> database.UserRepositoryProtocol:
    """Return the repository opened by the application lifespan."""
    return request.app.state.repository
