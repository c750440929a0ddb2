"""Tests for request ticket minting."""

from __future__ import annotations

import uuid

from civilytix.services import tickets


def test_mint_request_id_format() -> None:
    """Test that tickets are req_ followed by a version 4 UUID."""
    request_id = tickets.mint_request_id()
    assert request_id.startswith("req_")
    parsed = uuid.UUID(request_id.removeprefix("req_"))
    assert parsed.version == 4


def test_mint_request_id_unique() -> None:
    """Test that repeated minting never repeats a ticket."""
    ids = {tickets.mint_request_id() for _ in range(1000)}
    assert len(ids) == 1000
