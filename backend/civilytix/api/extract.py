"""Extraction request API endpoints.

This module provides the two paid extraction endpoints. Both accept the
request parameters as any JSON value (normally an object), store it
verbatim in the caller's history and answer with the request id and the
URL the artifact will be available at. Geometry is not validated here;
that belongs to the extraction pipeline.

Example:
    Request potholes around a point:
        >>> response = client.post(
        ...     "/api/data/region",
        ...     headers={"user-id": "u1"},
        ...     json={"center": [1, 2], "radius_km": 5, "dataType": "potholes"},
        ... )
        >>> response.json()
        >>> # Returns: {"status": "success",
        >>> #           "message": "...",
        >>> #           "requestId": "req_...",
        >>> #           "downloadUrl": "https://.../u1/req_....geojson"}

    Request road surface imagery along a path:
        >>> response = client.post(
        ...     "/api/data/path",
        ...     headers={"user-id": "u1"},
        ...     json={"start_coords": [1, 2], "end_coords": [3, 4],
        ...           "buffer_meters": 50, "dataType": "surface"},
        ... )
        >>> # downloadUrl ends with ".tif"

    A caller without a paid plan gets 402 and nothing is recorded.
"""

from typing import Any

import fastapi

from civilytix.api import identity
from civilytix.core import config
from civilytix.db import database
from civilytix.db import models as db_models
from civilytix.services import gateway, producer

router = fastapi.APIRouter(prefix="/api/data", tags=["extraction"])


def _get_repo(request: fastapi.Request) -> database.UserRepositoryProtocol:
    """Resolve the user repository dependency."""
    return identity.get_repo(request)


def _get_gateway(
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
    repo: database.UserRepositoryProtocol = fastapi.Depends(_get_repo),  # noqa: B008
    artifact_producer: producer.ArtifactProducerProtocol = fastapi.Depends(  # noqa: B008
        producer.get_producer
    ),
) -> gateway.ExtractionGateway:
    """Build the extraction gateway for one request.

    Args:
        settings: Application settings (injected via FastAPI Depends).
        repo: User repository, used as entitlement store and ledger.
        artifact_producer: Receives accepted jobs.

    Returns:
        ExtractionGateway configured from settings.
    """
    return gateway.ExtractionGateway.from_settings(
        settings, repo, artifact_producer
    )


def _submit(
    gw: gateway.ExtractionGateway,
    user_id: str,
    endpoint: str,
    params: Any,
    background_tasks: fastapi.BackgroundTasks,
) -> dict[str, str]:
    confirmation = gw.submit(
        user_id,
        endpoint,
        params,
        defer=background_tasks.add_task,
    )
    return {
        "status": "success",
        "message": confirmation.message,
        "requestId": confirmation.request_id,
        "downloadUrl": confirmation.result_url,
    }


@router.post("/region")
def submit_region(
    background_tasks: fastapi.BackgroundTasks,
    user_id: str = fastapi.Depends(identity.get_user_id),  # noqa: B008
    params: Any = fastapi.Body(default_factory=dict),  # noqa: B008
    gw: gateway.ExtractionGateway = fastapi.Depends(_get_gateway),  # noqa: B008
) -> dict[str, str]:
    """Submit a region extraction (``center``, ``radius_km``, ``dataType``).

    Raises:
        Unauthenticated: Without a user id header (401).
        EntitlementDenied: If the caller has not paid (402).
    """
    return _submit(
        gw, user_id, db_models.REGION_ENDPOINT, params, background_tasks
    )


@router.post("/path")
def submit_path(
    background_tasks: fastapi.BackgroundTasks,
    user_id: str = fastapi.Depends(identity.get_user_id),  # noqa: B008
    params: Any = fastapi.Body(default_factory=dict),  # noqa: B008
    gw: gateway.ExtractionGateway = fastapi.Depends(_get_gateway),  # noqa: B008
) -> dict[str, str]:
    """Submit a path extraction.

    The body carries ``start_coords``, ``end_coords``, ``buffer_meters`` and
    ``dataType``.

    Raises:
        Unauthenticated: Without a user id header (401).
        EntitlementDenied: If the caller has not paid (402).
    """
    return _submit(
        gw, user_id, db_models.PATH_ENDPOINT, params, background_tasks
    )
