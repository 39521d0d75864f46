"""Shared SQLite plumbing for the account and token stores."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from gatekeeper.core.errors import StorageUnavailableError
from gatekeeper.utils.time import Clock, ensure_utc, utcnow

logger = logging.getLogger(__name__)


def to_db_timestamp(value: datetime) -> str:
    """Fixed-width ISO-8601 UTC string so SQL string comparison orders by time."""
    return ensure_utc(value).isoformat(timespec="microseconds")


def from_db_timestamp(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return ensure_utc(datetime.fromisoformat(value))


class SQLiteStore:
    """Base class owning the database file, connections and transactions.

    Every public store method runs in exactly one transaction. Writers take the
    database write lock up front (``BEGIN IMMEDIATE``) so a conditional update
    and the read that follows it observe the same state.
    """

    _SCHEMA: tuple[str, ...] = ()

    def __init__(
        self,
        db_path: str,
        *,
        clock: Clock = utcnow,
        busy_timeout_seconds: float = 5.0,
    ) -> None:
        self._db_path = Path(db_path)
        self._clock = clock
        self._busy_timeout = busy_timeout_seconds
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self._db_path,
            timeout=self._busy_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._open()
        except sqlite3.Error as exc:
            raise StorageUnavailableError(str(exc)) from exc
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            logger.error("SQLite transaction failed: %s", exc)
            raise StorageUnavailableError(str(exc)) from exc
        finally:
            conn.close()

    @contextmanager
    def _reader(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._open()
        except sqlite3.Error as exc:
            raise StorageUnavailableError(str(exc)) from exc
        try:
            yield conn
        except sqlite3.Error as exc:
            logger.error("SQLite read failed: %s", exc)
            raise StorageUnavailableError(str(exc)) from exc
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self._transaction() as conn:
            for statement in self._SCHEMA:
                conn.execute(statement)

    def _now(self) -> datetime:
        return ensure_utc(self._clock())


__all__ = ["SQLiteStore", "from_db_timestamp", "to_db_timestamp"]
