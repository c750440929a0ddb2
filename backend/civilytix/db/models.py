"""Data models for user accounts and their request history.

This module defines the core data structures used throughout the application
to represent a paying user and the extraction requests they have made. A
RequestRecord is immutable: it is created once, when it is appended to the
owning user's history, and is never updated afterwards.

Example:
    Creating a record for an accepted region extraction:
        >>> from civilytix.db.models import RequestRecord
        >>> record = RequestRecord(
        ...     request_id="req_0b6f1f5e-3c1c-4f43-9d0c-5a0f0f3f8c11",
        ...     timestamp=datetime.datetime.now(datetime.UTC),
        ...     endpoint="/api/data/region",
        ...     params={"center": [1, 2], "radius_km": 5,
        ...             "dataType": "potholes"},
        ...     result_url="https://storage.cloud.com/results/u1/"
        ...                "req_0b6f1f5e-3c1c-4f43-9d0c-5a0f0f3f8c11.geojson",
        ... )
"""

from __future__ import annotations

import dataclasses
import datetime
from typing import Any, Literal

Entitlement = Literal["paid", "unpaid"]
DEFAULT_ENTITLEMENT: Entitlement = "unpaid"

REGION_ENDPOINT = "/api/data/region"
PATH_ENDPOINT = "/api/data/path"


def utcnow() -> datetime.datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.datetime.now(tz=datetime.UTC)


@dataclasses.dataclass(frozen=True)
class RequestRecord:
    """One accepted extraction request and where its result will appear.

    Attributes:
        request_id: Ticket of the form ``req_<uuid4>``.
        timestamp: UTC time the request was accepted.
        endpoint: Extraction endpoint that was invoked, kept verbatim.
        params: Caller payload (any JSON value), stored as received and
            never interpreted.
        result_url: Location where the artifact is expected to appear.
    """

    request_id: str
    timestamp: datetime.datetime
    endpoint: str
    params: Any
    result_url: str

    def to_response(self) -> dict[str, Any]:
        """Serialize with the field names the history API exposes."""
        return {
            "requestId": self.request_id,
            "timestamp": self.timestamp.isoformat(),
            "endpoint": self.endpoint,
            "requestParams": self.params,
            "resultUrl": self.result_url,
        }


@dataclasses.dataclass
class UserAccount:
    """A user known to the ledger, with entitlement and ordered history.

    Attributes:
        id: Externally assigned, opaque identifier.
        email: Contact address recorded at provisioning, if any.
        entitlement: "paid" users may submit extractions.
        history: Request records in submission order.
    """

    id: str
    email: str | None = None
    entitlement: Entitlement = DEFAULT_ENTITLEMENT
    history: tuple[RequestRecord, ...] = ()

    def to_response(self) -> dict[str, Any]:
        return {
            "userId": self.id,
            "email": self.email,
            "paymentStatus": self.entitlement,
            "requestHistory": [r.to_response() for r in self.history],
        }


@dataclasses.dataclass(frozen=True)
class ExtractionJob:
    """Work item handed to the artifact producer."""

    user_id: str
    request_id: str
    endpoint: str
    params: Any
    result_url: str


@dataclasses.dataclass(frozen=True)
class Confirmation:
    """Result of an accepted submission."""

    request_id: str
    result_url: str
    message: str
