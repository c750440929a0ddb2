"""Tests for the user repositories.

This module covers the in-memory repository end to end (entitlement
defaults, append-only history, lookups, provisioning) and the row
conversion helpers of the PostgreSQL repository. No running database is
required.
"""

from __future__ import annotations

import concurrent.futures
import datetime

import psycopg2.extras
import pytest

from civilytix.core import config, errors
from civilytix.db import database
from civilytix.db import models as db_models

T0 = datetime.datetime(2024, 1, 1, tzinfo=datetime.UTC)


def _record(
    request_id: str,
    timestamp: datetime.datetime = T0,
) -> db_models.RequestRecord:
    return db_models.RequestRecord(
        request_id=request_id,
        timestamp=timestamp,
        endpoint=db_models.PATH_ENDPOINT,
        params={"dataType": "roads"},
        result_url=f"https://storage.cloud.com/results/u1/{request_id}.tif",
    )


def test_unknown_user_is_unpaid() -> None:
    """Test that a missing user reads as unpaid rather than failing."""
    repo = database.InMemoryUserRepository()
    assert repo.get_entitlement("nobody") == "unpaid"


def test_provision_and_entitlement() -> None:
    """Test that a provisioned entitlement is read back."""
    repo = database.InMemoryUserRepository()
    user = repo.provision_user("u1", "u1@example.com", "paid")
    assert user.entitlement == "paid"
    assert repo.get_entitlement("u1") == "paid"


def test_provision_duplicate_user_fails() -> None:
    """Test that provisioning an existing id is a storage error."""
    repo = database.InMemoryUserRepository()
    repo.provision_user("u1", None, "unpaid")
    with pytest.raises(errors.StorageError, match="already exists"):
        repo.provision_user("u1", None, "paid")


def test_set_entitlement() -> None:
    """Test changing the entitlement of an existing user."""
    repo = database.InMemoryUserRepository()
    repo.provision_user("u1", None, "paid")
    updated = repo.set_entitlement("u1", "unpaid")
    assert updated is not None
    assert updated.entitlement == "unpaid"
    assert repo.get_entitlement("u1") == "unpaid"


def test_set_entitlement_unknown_user() -> None:
    """Test that updating a missing user returns None and creates nothing."""
    repo = database.InMemoryUserRepository()
    assert repo.set_entitlement("ghost", "paid") is None
    assert repo.get_user("ghost") is None


def test_append_creates_user() -> None:
    """Test that appending for an unknown user creates an unpaid account."""
    repo = database.InMemoryUserRepository()
    repo.append("u1", _record("req_a"))
    user = repo.get_user("u1")
    assert user is not None
    assert user.entitlement == "unpaid"
    assert [r.request_id for r in user.history] == ["req_a"]


def test_read_all_keeps_insertion_order() -> None:
    """Test that history comes back in append order on every read."""
    repo = database.InMemoryUserRepository()
    for request_id in ("req_a", "req_b", "req_c"):
        repo.append("u1", _record(request_id))
    history = repo.read_all("u1")
    assert history is not None
    assert [r.request_id for r in history] == ["req_a", "req_b", "req_c"]
    assert repo.read_all("u1") == history


def test_read_all_unknown_and_empty() -> None:
    """Test None for unknown users and an empty history for new ones."""
    repo = database.InMemoryUserRepository()
    assert repo.read_all("nobody") is None
    repo.provision_user("u1", None, "paid")
    assert repo.read_all("u1") == ()


def test_read_one() -> None:
    """Test lookup of a single entry by user and request id."""
    repo = database.InMemoryUserRepository()
    repo.append("u1", _record("req_a"))
    repo.append("u1", _record("req_b"))
    found = repo.read_one("u1", "req_b")
    assert found is not None
    assert found.result_url.endswith("/req_b.tif")
    assert repo.read_one("u1", "req_missing") is None
    assert repo.read_one("nobody", "req_a") is None


def test_histories_are_per_user() -> None:
    """Test that one user cannot see another user's entries."""
    repo = database.InMemoryUserRepository()
    repo.append("u1", _record("req_a"))
    repo.append("u2", _record("req_b"))
    assert repo.read_one("u2", "req_a") is None
    assert [r.request_id for r in repo.read_all("u2") or ()] == ["req_b"]


def test_append_never_moves_time_backwards() -> None:
    """Test that a late-arriving older timestamp is raised to the last one."""
    repo = database.InMemoryUserRepository()
    later = T0 + datetime.timedelta(seconds=5)
    repo.append("u1", _record("req_a", later))
    stored = repo.append("u1", _record("req_b", T0))
    assert stored.timestamp == later
    history = repo.read_all("u1") or ()
    assert [r.timestamp for r in history] == [later, later]


def test_concurrent_appends_are_not_lost() -> None:
    """Test that parallel appends for one user are all kept."""
    repo = database.InMemoryUserRepository()
    ids = [f"req_{i}" for i in range(100)]
    with concurrent.futures.ThreadPoolExecutor(max_workers=16) as pool:
        list(pool.map(lambda rid: repo.append("u1", _record(rid)), ids))
    history = repo.read_all("u1") or ()
    assert sorted(r.request_id for r in history) == sorted(ids)


def test_postgres_repository_to_row() -> None:
    """Test converting a RequestRecord to INSERT parameters."""
    record = _record("req_a")
    row = database.PostgresUserRepository._to_row("u1", record)
    assert row["user_id"] == "u1"
    assert row["request_id"] == "req_a"
    assert row["timestamp"] == T0
    assert isinstance(row["params"], psycopg2.extras.Json)
    assert row["params"].adapted == {"dataType": "roads"}


def test_postgres_repository_from_row() -> None:
    """Test converting a history row, assuming UTC for naive timestamps."""
    row = {
        "request_id": "req_a",
        "submitted_at": datetime.datetime(2024, 1, 1),
        "endpoint": "/api/data/path",
        "params": {"dataType": "roads"},
        "result_url": "https://storage.cloud.com/results/u1/req_a.tif",
    }
    record = database.PostgresUserRepository._from_row(row)
    assert record == _record("req_a")


def test_open_repository_memory() -> None:
    """Test factory function returns InMemoryUserRepository."""
    settings = config.Settings(storage_backend="memory")
    repo = database.open_repository(settings)
    assert isinstance(repo, database.InMemoryUserRepository)
    repo.close()


def test_open_repository_postgres(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test factory function returns PostgresUserRepository."""

    class FakeRepo(database.PostgresUserRepository):
        def __init__(self, settings: config.Settings):
            self.settings = settings

    monkeypatch.setattr(database, "PostgresUserRepository", FakeRepo)
    settings = config.Settings(storage_backend="postgres")
    repo = database.open_repository(settings)
    assert isinstance(repo, FakeRepo)
    assert repo.settings is settings


def test_postgres_connection_failure_is_storage_error(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Test that an unreachable database surfaces as StorageError."""

    def refuse(*_args: object, **_kwargs: object) -> None:
        raise psycopg2.OperationalError("connection refused")

    monkeypatch.setattr(
        database.psycopg2.pool, "ThreadedConnectionPool", refuse
    )
    with pytest.raises(errors.StorageError, match="connection refused"):
        database.PostgresUserRepository(config.Settings())


def test_postgres_repository_from_row_non_object_params() -> None:
    """Test that a JSONB array comes back unchanged."""
    row = {
        "request_id": "req_a",
        "submitted_at": T0,
        "endpoint": "/api/data/region",
        "params": [1, 2],
        "result_url": "https://storage.cloud.com/results/u1/req_a.tif",
    }
    assert database.PostgresUserRepository._from_row(row).params == [1, 2]
