"""Administrative user provisioning endpoints.

These stand in for the billing system during development and testing: they
create users and flip their payment entitlement. They are mounted only when
``Settings.enable_admin_routes`` is true.
"""

from __future__ import annotations

import logging
from typing import Any

import fastapi
import pydantic

from civilytix.api import identity
from civilytix.db import database
from civilytix.db import models as db_models

logger = logging.getLogger(__name__)

router = fastapi.APIRouter(prefix="/api/test", tags=["admin"])


class CreateUserRequest(pydantic.BaseModel):
    userId: str = pydantic.Field(min_length=1)
    email: str | None = None
    paymentStatus: db_models.Entitlement = db_models.DEFAULT_ENTITLEMENT


class UpdatePaymentRequest(pydantic.BaseModel):
    userId: str = pydantic.Field(min_length=1)
    paymentStatus: db_models.Entitlement


def _get_repo(request: fastapi.Request) -> database.UserRepositoryProtocol:
    """Resolve the user repository dependency."""
    return identity.get_repo(request)


@router.post("/create-user")
def create_user(
    body: CreateUserRequest,
    repo: database.UserRepositoryProtocol = fastapi.Depends(_get_repo),  # noqa: B008
) -> dict[str, Any]:
    """Provision a user with an email and an entitlement.

    Raises:
        StorageError: If the user already exists (500).
    """
    user = repo.provision_user(body.userId, body.email, body.paymentStatus)
    logger.info("provisioned user %s (%s)", user.id, user.entitlement)
    return {"message": "User created successfully", "user": user.to_response()}


@router.post("/update-payment")
def update_payment(
    body: UpdatePaymentRequest,
    repo: database.UserRepositoryProtocol = fastapi.Depends(_get_repo),  # noqa: B008
) -> dict[str, Any]:
    """Set a user's entitlement; ``user`` is null for an unknown user."""
    user = repo.set_entitlement(body.userId, body.paymentStatus)
    if user is not None:
        logger.info("user %s entitlement set to %s", user.id,
                    user.entitlement)
    return {
        "message": "Payment status updated successfully",
        "user": user.to_response() if user else None,
    }
