"""Storage protocols and repositories for entitlements and request history.

Two read/write contracts live here:

* the entitlement store, read-only from the gateway's point of view, and
* the request ledger, an append-only per-user history.

Both are implemented by one repository per backend, since a user's
entitlement and history are one persisted aggregate. The in-memory
repository backs tests and local development; the PostgreSQL repository is
the durable one and owns a connection pool that is opened when the
application starts and closed when it stops.
"""

from __future__ import annotations

import contextlib
import dataclasses
import datetime
import logging
import threading
from typing import TYPE_CHECKING, Any, Protocol, cast

import psycopg2
import psycopg2.errors
import psycopg2.extensions
import psycopg2.extras
import psycopg2.pool

from civilytix.core import errors
from civilytix.db import models as db_models

if TYPE_CHECKING:
    from collections.abc import Iterator

    from civilytix.core import config

logger = logging.getLogger(__name__)


class EntitlementStoreProtocol(Protocol):
    """Read access to a user's payment entitlement."""

    def get_entitlement(self, user_id: str) -> db_models.Entitlement: ...


class RequestLedgerProtocol(Protocol):
    """Append-only, per-user ordered log of request records."""

    def append(
        self,
        user_id: str,
        record: db_models.RequestRecord,
    ) -> db_models.RequestRecord: ...

    def read_all(
        self,
        user_id: str,
    ) -> tuple[db_models.RequestRecord, ...] | None: ...

    def read_one(
        self,
        user_id: str,
        request_id: str,
    ) -> db_models.RequestRecord | None: ...


class UserRepositoryProtocol(
    EntitlementStoreProtocol,
    RequestLedgerProtocol,
    Protocol,
):
    """Full storage surface: entitlement, ledger and user administration."""

    def provision_user(
        self,
        user_id: str,
        email: str | None,
        entitlement: db_models.Entitlement,
    ) -> db_models.UserAccount: ...

    def set_entitlement(
        self,
        user_id: str,
        entitlement: db_models.Entitlement,
    ) -> db_models.UserAccount | None: ...

    def get_user(self, user_id: str) -> db_models.UserAccount | None: ...

    def close(self) -> None: ...


def _not_before(
    timestamp: datetime.datetime,
    previous: datetime.datetime | None,
) -> datetime.datetime:
    """Clamp a timestamp so a history never goes backwards."""
    if previous is not None and timestamp < previous:
        return previous
    return timestamp


class InMemoryUserRepository(UserRepositoryProtocol):
    """Simple in-memory store for tests and local development.

    Appends for all users are serialized by one lock, so concurrent
    submissions never lose a record. Data is lost when the process exits.
    """

    def __init__(self) -> None:
        """Initialize an empty in-memory repository."""
        self._users: dict[str, db_models.UserAccount] = {}
        self._lock = threading.Lock()

    def get_entitlement(self, user_id: str) -> db_models.Entitlement:
        """Return the user's entitlement, "unpaid" for unknown users."""
        user = self._users.get(user_id)
        return user.entitlement if user else db_models.DEFAULT_ENTITLEMENT

    def append(
        self,
        user_id: str,
        record: db_models.RequestRecord,
    ) -> db_models.RequestRecord:
        """Create the user if absent and add a record to the end of history.

        Args:
            user_id: Owner of the history.
            record: Record to append.

        Returns:
            The record as stored. Its timestamp is raised to the previous
            entry's when a concurrent append got there first.
        """
        with self._lock:
            user = self._users.setdefault(
                user_id, db_models.UserAccount(id=user_id)
            )
            previous = user.history[-1].timestamp if user.history else None
            timestamp = _not_before(record.timestamp, previous)
            if timestamp is not record.timestamp:
                record = dataclasses.replace(record, timestamp=timestamp)
            user.history = (*user.history, record)
        return record

    def read_all(
        self,
        user_id: str,
    ) -> tuple[db_models.RequestRecord, ...] | None:
        user = self._users.get(user_id)
        return user.history if user else None

    def read_one(
        self,
        user_id: str,
        request_id: str,
    ) -> db_models.RequestRecord | None:
        history = self.read_all(user_id) or ()
        return next(
            (r for r in history if r.request_id == request_id),
            None,
        )

    def provision_user(
        self,
        user_id: str,
        email: str | None,
        entitlement: db_models.Entitlement,
    ) -> db_models.UserAccount:
        """Register a new user.

        Raises:
            StorageError: If a user with this id already exists.
        """
        with self._lock:
            if user_id in self._users:
                raise errors.StorageError("User already exists")
            user = db_models.UserAccount(
                id=user_id, email=email, entitlement=entitlement
            )
            self._users[user_id] = user
        return dataclasses.replace(user)

    def set_entitlement(
        self,
        user_id: str,
        entitlement: db_models.Entitlement,
    ) -> db_models.UserAccount | None:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            user.entitlement = entitlement
        return dataclasses.replace(user)

    def get_user(self, user_id: str) -> db_models.UserAccount | None:
        user = self._users.get(user_id)
        return dataclasses.replace(user) if user else None

    def close(self) -> None:
        """Nothing to release."""


class PostgresUserRepository(UserRepositoryProtocol):
    """PostgreSQL-backed repository for users and their request history.

    History rows live in their own table keyed by a serial column, so an
    append is a single INSERT and never rewrites earlier entries. The user
    row is created with ``ON CONFLICT DO NOTHING`` and locked for the rest
    of the append transaction, which serializes concurrent appends for the
    same user while leaving other users unaffected.
    """

    CREATE_TABLES_SQL = """
    CREATE TABLE IF NOT EXISTS users (
      id TEXT PRIMARY KEY,
      email TEXT,
      entitlement TEXT NOT NULL DEFAULT 'unpaid'
        CHECK (entitlement IN ('paid', 'unpaid')),
      created_at TIMESTAMPTZ DEFAULT now()
    );
    CREATE TABLE IF NOT EXISTS request_history (
      seq BIGSERIAL PRIMARY KEY,
      user_id TEXT NOT NULL REFERENCES users (id),
      request_id TEXT NOT NULL UNIQUE,
      submitted_at TIMESTAMPTZ NOT NULL,
      endpoint TEXT NOT NULL,
      params JSONB NOT NULL,
      result_url TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS request_history_user_seq
      ON request_history (user_id, seq);
    """

    HISTORY_COLUMNS = "request_id, submitted_at, endpoint, params, result_url"

    def __init__(self, settings: config.Settings) -> None:
        """Open the connection pool and ensure the schema exists.

        Args:
            settings: Application settings containing the database URL and
                pool bounds.

        Raises:
            StorageError: If the database cannot be reached.
        """
        self.settings = settings
        self._slots = threading.BoundedSemaphore(settings.db_pool_max_size)
        try:
            self._pool = psycopg2.pool.ThreadedConnectionPool(
                settings.db_pool_min_size,
                settings.db_pool_max_size,
                settings.database_url,
            )
        except psycopg2.Error as exc:
            raise errors.StorageError(str(exc)) from exc
        self._ensure_schema()

    @contextlib.contextmanager
    def _cursor(self) -> Iterator[psycopg2.extras.RealDictCursor]:
        """Borrow a pooled connection for one transaction.

        Callers wait while every pooled connection is in use. The
        transaction is committed when the block exits normally and
        rolled back otherwise. Driver errors are reported as StorageError.
        """
        with self._slots:
            try:
                conn = self._pool.getconn()
            except psycopg2.Error as exc:
                logger.error("no database connection available: %s", exc)
                raise errors.StorageError(str(exc).strip()) from exc
            try:
                with conn, conn.cursor(
                    cursor_factory=psycopg2.extras.RealDictCursor
                ) as cur:
                    yield cast(psycopg2.extras.RealDictCursor, cur)
            except psycopg2.Error as exc:
                logger.error("database operation failed: %s", exc)
                raise errors.StorageError(str(exc).strip()) from exc
            finally:
                self._pool.putconn(conn)

    def _ensure_schema(self) -> None:
        with self._cursor() as cur:
            cur.execute(self.CREATE_TABLES_SQL)

    def get_entitlement(self, user_id: str) -> db_models.Entitlement:
        with self._cursor() as cur:
            cur.execute(
                "SELECT entitlement FROM users WHERE id = %s",
                (user_id,),
            )
            row = cur.fetchone()
        if row is None:
            return db_models.DEFAULT_ENTITLEMENT
        return cast(db_models.Entitlement, row["entitlement"])

    def append(
        self,
        user_id: str,
        record: db_models.RequestRecord,
    ) -> db_models.RequestRecord:
        with self._cursor() as cur:
            cur.execute(
                "INSERT INTO users (id) VALUES (%s) ON CONFLICT (id) DO NOTHING",
                (user_id,),
            )
            cur.execute(
                "SELECT id FROM users WHERE id = %s FOR UPDATE",
                (user_id,),
            )
            cur.execute(
                """
                INSERT INTO request_history (
                    user_id, request_id, submitted_at, endpoint, params,
                    result_url
                )
                SELECT %(user_id)s, %(request_id)s,
                    GREATEST(%(timestamp)s,
                             COALESCE(MAX(submitted_at), %(timestamp)s)),
                    %(endpoint)s, %(params)s, %(result_url)s
                FROM request_history WHERE user_id = %(user_id)s
                RETURNING submitted_at;
                """,
                self._to_row(user_id, record),
            )
            row = cur.fetchone()
        stored_at = cast(dict[str, Any], row)["submitted_at"]
        if stored_at != record.timestamp:
            record = dataclasses.replace(record, timestamp=stored_at)
        return record

    def read_all(
        self,
        user_id: str,
    ) -> tuple[db_models.RequestRecord, ...] | None:
        with self._cursor() as cur:
            return self._read_history(cur, user_id)

    def read_one(
        self,
        user_id: str,
        request_id: str,
    ) -> db_models.RequestRecord | None:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {self.HISTORY_COLUMNS} FROM request_history "
                "WHERE user_id = %s AND request_id = %s",
                (user_id, request_id),
            )
            row = cur.fetchone()
        if row is None:
            return None
        return self._from_row(cast(dict[str, Any], row))

    def provision_user(
        self,
        user_id: str,
        email: str | None,
        entitlement: db_models.Entitlement,
    ) -> db_models.UserAccount:
        try:
            with self._cursor() as cur:
                cur.execute(
                    "INSERT INTO users (id, email, entitlement) "
                    "VALUES (%s, %s, %s)",
                    (user_id, email, entitlement),
                )
        except errors.StorageError as exc:
            if isinstance(exc.__cause__, psycopg2.errors.UniqueViolation):
                raise errors.StorageError("User already exists") from exc
            raise
        return db_models.UserAccount(
            id=user_id, email=email, entitlement=entitlement
        )

    def set_entitlement(
        self,
        user_id: str,
        entitlement: db_models.Entitlement,
    ) -> db_models.UserAccount | None:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE users SET entitlement = %s WHERE id = %s",
                (entitlement, user_id),
            )
            if cur.rowcount == 0:
                return None
            return self._read_user(cur, user_id)

    def get_user(self, user_id: str) -> db_models.UserAccount | None:
        with self._cursor() as cur:
            return self._read_user(cur, user_id)

    def close(self) -> None:
        """Close every pooled connection."""
        self._pool.closeall()

    def _read_user(
        self,
        cur: psycopg2.extensions.cursor,
        user_id: str,
    ) -> db_models.UserAccount | None:
        cur.execute(
            "SELECT id, email, entitlement FROM users WHERE id = %s",
            (user_id,),
        )
        row = cast(dict[str, Any] | None, cur.fetchone())
        if row is None:
            return None
        history = self._read_history(cur, user_id) or ()
        return db_models.UserAccount(
            id=str(row["id"]),
            email=row["email"],
            entitlement=cast(db_models.Entitlement, row["entitlement"]),
            history=history,
        )

    def _read_history(
        self,
        cur: psycopg2.extensions.cursor,
        user_id: str,
    ) -> tuple[db_models.RequestRecord, ...] | None:
        cur.execute("SELECT 1 FROM users WHERE id = %s", (user_id,))
        if cur.fetchone() is None:
            return None
        cur.execute(
            f"SELECT {self.HISTORY_COLUMNS} FROM request_history "
            "WHERE user_id = %s ORDER BY seq",
            (user_id,),
        )
        return tuple(
            self._from_row(cast(dict[str, Any], row))
            for row in cur.fetchall()
        )

    @staticmethod
    def _to_row(
        user_id: str,
        record: db_models.RequestRecord,
    ) -> dict[str, object]:
        """Convert a RequestRecord to parameters for the history INSERT.

        Args:
            user_id: Owner of the record.
            record: Record to convert.

        Returns:
            Dictionary suitable for parameterized SQL insertion, with the
            request parameters wrapped for a JSONB column.
        """
        return {
            "user_id": user_id,
            "request_id": record.request_id,
            "timestamp": record.timestamp,
            "endpoint": record.endpoint,
            "params": psycopg2.extras.Json(record.params),
            "result_url": record.result_url,
        }

    @staticmethod
    def _from_row(row: dict[str, Any]) -> db_models.RequestRecord:
        """Convert a history row to a RequestRecord.

        Args:
            row: Dictionary from a history query.

        Returns:
            RequestRecord with a timezone-aware timestamp.
        """
        timestamp = cast(datetime.datetime, row["submitted_at"])
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=datetime.UTC)
        return db_models.RequestRecord(
            request_id=str(row["request_id"]),
            timestamp=timestamp,
            endpoint=str(row["endpoint"]),
            params=row["params"],
            result_url=str(row["result_url"]),
        )


def open_repository(settings: config.Settings) -> UserRepositoryProtocol:
    """Create the repository selected by ``settings.storage_backend``.

    Called once at application startup; the caller owns the result and must
    ``close()`` it at shutdown.

    Args:
        settings: Application settings.

    Returns:
        InMemoryUserRepository or PostgresUserRepository.
    """
    if settings.storage_backend == "postgres":
        logger.info("opening PostgreSQL ledger")
        return PostgresUserRepository(settings)
    logger.info("using in-memory ledger")
    return InMemoryUserRepository()
