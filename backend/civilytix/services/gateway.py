"""Entitlement-gated submission of extraction requests.

The gateway runs one request end to end: it checks the caller's
entitlement, mints a ticket, derives the result URL, hands the job to the
artifact producer and appends the request to the caller's history.

The result URL is built deterministically from the user id, the ticket and
a file extension chosen by data type, so it can be returned before the
artifact exists. Whether the producer is awaited before confirming is set
by ``Settings.result_policy``:

* ``"promise"``: record the request, confirm, and hand the job to the
  producer afterwards (via ``defer`` when given).
* ``"await"``: run the producer first and record the request only once it
  returns.

Example:
    Submit a region extraction for an entitled user:
        >>> repo = database.InMemoryUserRepository()
        >>> repo.provision_user("u1", "u1@example.com", "paid")
        >>> gateway = ExtractionGateway(repo, repo, LoggingArtifactProducer())
        >>> confirmation = gateway.submit(
        ...     "u1",
        ...     "/api/data/region",
        ...     {"center": [1, 2], "radius_km": 5, "dataType": "potholes"},
        ... )
        >>> confirmation.result_url.endswith(".geojson")
        True
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from civilytix.core import config, errors
from civilytix.db import models as db_models
from civilytix.services import tickets

if TYPE_CHECKING:
    import datetime
    from collections.abc import Callable

    from civilytix.db import database
    from civilytix.services import producer as artifact_producer

logger = logging.getLogger(__name__)

VECTOR_EXTENSION = "geojson"
RASTER_EXTENSION = "tif"
VECTOR_DATA_TYPES = frozenset({"potholes"})

DENIED_MESSAGE = "Access denied. Please complete payment to use this feature."
READY_MESSAGE = "Your data is ready for download."
ACCEPTED_MESSAGE = (
    "Your request was accepted. The data will be available at the "
    "download URL."
)


def file_extension_for(data_type: object) -> str:
    """Map a requested data type to the artifact's file extension.

    Vector data types get GeoJSON; every other value, including missing or
    non-string ones, gets GeoTIFF.
    """
    if isinstance(data_type, str) and data_type in VECTOR_DATA_TYPES:
        return VECTOR_EXTENSION
    return RASTER_EXTENSION


def build_result_url(
    base_url: str,
    user_id: str,
    request_id: str,
    extension: str,
) -> str:
    """Return ``<base_url>/<user_id>/<request_id>.<extension>``."""
    return f"{base_url.rstrip('/')}/{user_id}/{request_id}.{extension}"


class ExtractionGateway:
    """Gate, record and dispatch extraction requests.

    Args:
        entitlements: Source of the caller's payment entitlement.
        ledger: Append-only request history.
        producer: Receives the job for each accepted request.
        result_base_url: Prefix for result URLs.
        result_policy: "promise" or "await", see the module docstring.
        mint: Ticket factory.
        clock: Source of acceptance timestamps.
    """

    def __init__(
        self,
        entitlements: database.EntitlementStoreProtocol,
        ledger: database.RequestLedgerProtocol,
        producer: artifact_producer.ArtifactProducerProtocol,
        result_base_url: str = config.DEFAULT_RESULT_BASE_URL,
        result_policy: config.ResultPolicy = "promise",
        mint: Callable[[], str] = tickets.mint_request_id,
        clock: Callable[[], datetime.datetime] = db_models.utcnow,
    ) -> None:
        self._entitlements = entitlements
        self._ledger = ledger
        self._producer = producer
        self._result_base_url = result_base_url
        self._result_policy = result_policy
        self._mint = mint
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: config.Settings,
        repo: database.UserRepositoryProtocol,
        producer: artifact_producer.ArtifactProducerProtocol,
    ) -> ExtractionGateway:
        """Build a gateway whose entitlement store and ledger are one repo."""
        return cls(
            entitlements=repo,
            ledger=repo,
            producer=producer,
            result_base_url=settings.result_base_url,
            result_policy=settings.result_policy,
        )

    def submit(
        self,
        user_id: str,
        endpoint: str,
        params: Any,
        defer: Callable[..., Any] | None = None,
    ) -> db_models.Confirmation:
        """Accept an extraction request for an entitled user.

        Args:
            user_id: Verified caller id.
            endpoint: Extraction endpoint invoked, recorded verbatim.
            params: Caller payload, recorded verbatim. Only a JSON object
                is consulted for ``dataType``.
            defer: Scheduler used under the "promise" policy to run the
                producer after the response, called as
                ``defer(producer.produce, job)``. The producer runs inline
                when omitted.

        Returns:
            Confirmation with the new request id and its result URL.

        Raises:
            EntitlementDenied: If the user is not on a paid plan. Nothing is
                recorded in that case.
            StorageError: If the entitlement read or the append fails.
        """
        entitlement = self._entitlements.get_entitlement(user_id)
        if entitlement != "paid":
            logger.info("denied %s for user %s (%s)", endpoint, user_id,
                        entitlement)
            raise errors.EntitlementDenied(DENIED_MESSAGE)

        request_id = self._mint()
        data_type = params.get("dataType") if isinstance(params, dict) else None
        extension = file_extension_for(data_type)
        result_url = build_result_url(
            self._result_base_url, user_id, request_id, extension
        )
        job = db_models.ExtractionJob(
            user_id=user_id,
            request_id=request_id,
            endpoint=endpoint,
            params=params,
            result_url=result_url,
        )

        if self._result_policy == "await":
            self._producer.produce(job)

        self._ledger.append(
            user_id,
            db_models.RequestRecord(
                request_id=request_id,
                timestamp=self._clock(),
                endpoint=endpoint,
                params=params,
                result_url=result_url,
            ),
        )
        logger.info("accepted %s as %s for user %s", endpoint, request_id,
                    user_id)

        if self._result_policy == "await":
            return db_models.Confirmation(request_id, result_url, READY_MESSAGE)

        if defer is None:
            self._producer.produce(job)
        else:
            defer(self._producer.produce, job)
        return db_models.Confirmation(request_id, result_url, ACCEPTED_MESSAGE)
