"""Request ticket minting."""

from __future__ import annotations

import uuid

TICKET_PREFIX = "req_"


def mint_request_id() -> str:
    """Return a fresh request id, ``req_`` followed by a random UUID4."""
    return f"{TICKET_PREFIX}{uuid.uuid4()}"
