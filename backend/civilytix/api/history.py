"""Request history API endpoints.

Example:
    List everything the caller has requested, oldest first:
        >>> client.get("/api/user/history", headers={"user-id": "u1"}).json()
        >>> # Returns: {"history": [{"requestId": "req_...",
        >>> #                        "timestamp": "2026-...+00:00",
        >>> #                        "endpoint": "/api/data/region",
        >>> #                        "requestParams": {...},
        >>> #                        "resultUrl": "https://..."}]}

    Look up one request:
        >>> client.get("/api/user/history/req_...",
        ...            headers={"user-id": "u1"}).json()
        >>> # Returns: {"requestId": "req_...", "downloadUrl": "https://..."}
"""

from typing import Any

import fastapi

from civilytix.api import identity
from civilytix.core import errors
from civilytix.db import database

router = fastapi.APIRouter(prefix="/api/user/history", tags=["history"])


def _get_repo(request: fastapi.Request) -> database.UserRepositoryProtocol:
    """Resolve the user repository dependency."""
    return identity.get_repo(request)


@router.get("")
def get_history(
    user_id: str = fastapi.Depends(identity.get_user_id),  # noqa: B008
    repo: database.UserRepositoryProtocol = fastapi.Depends(_get_repo),  # noqa: B008
) -> dict[str, list[dict[str, Any]]]:
    """Return the caller's full request history in submission order.

    Raises:
        RecordNotFound: If the caller has no account (404).
    """
    history = repo.read_all(user_id)
    if history is None:
        raise errors.RecordNotFound("User not found")
    return {"history": [record.to_response() for record in history]}


@router.get("/{request_id}")
def get_history_entry(
    request_id: str,
    user_id: str = fastapi.Depends(identity.get_user_id),  # noqa: B008
    repo: database.UserRepositoryProtocol = fastapi.Depends(_get_repo),  # noqa: B008
) -> dict[str, str]:
    """Return the result URL of one of the caller's requests.

    An unknown user and an unknown request id produce the same 404, so the
    endpoint does not reveal which user ids exist.

    Raises:
        RecordNotFound: If the request is not in the caller's history.
    """
    record = repo.read_one(user_id, request_id)
    if record is None:
        raise errors.RecordNotFound("Request not found")
    return {"requestId": record.request_id, "downloadUrl": record.result_url}
