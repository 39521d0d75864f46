"""SQLite-backed storage for per-identity link and subscription state."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Optional

from gatekeeper.clients.sqlite_store import (
    SQLiteStore,
    from_db_timestamp,
    to_db_timestamp,
)
from gatekeeper.models.accounts import AccountRecord, AccountStatus

logger = logging.getLogger(__name__)

_RESOLVES_ISSUE = (
    "(status = 'payment_issue' AND (issue_since IS NULL OR issue_since < :occurred_at))"
)


class SQLiteAccountStore(SQLiteStore):
    """One row per external identity.

    Each mutation below is a single transaction that writes ``status``,
    ``deadline`` and ``billing_ref`` together, so concurrent writers (the
    linking flow and the webhook reconciler) can only interleave whole
    transitions.
    """

    _SCHEMA = (
        """
        CREATE TABLE IF NOT EXISTS accounts (
            external_id TEXT PRIMARY KEY,
            billing_ref TEXT UNIQUE,
            status TEXT NOT NULL DEFAULT 'unlinked',
            deadline TEXT,
            issue_since TEXT,
            last_paid_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_accounts_status_deadline ON accounts (status, deadline)",
    )

    def get(self, external_id: str) -> Optional[AccountRecord]:
        with self._reader() as conn:
            row = conn.execute(
                "SELECT * FROM accounts WHERE external_id = ?",
                (external_id,),
            ).fetchone()
        return self._row_to_record(row) if row else None

    def get_by_billing_ref(self, billing_ref: str) -> Optional[AccountRecord]:
        with self._reader() as conn:
            row = conn.execute(
                "SELECT * FROM accounts WHERE billing_ref = ?",
                (billing_ref,),
            ).fetchone()
        return self._row_to_record(row) if row else None

    def upsert_unlinked(self, external_id: str, *, deadline: datetime) -> AccountRecord:
        """Create the record on first contact; afterwards only touch bookkeeping.

        An existing record keeps its status and billing reference. Its deadline
        is kept too, except that an unlinked record without one receives
        ``deadline``.
        """
        now = to_db_timestamp(self._now())
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO accounts
                    (external_id, billing_ref, status, deadline, created_at, updated_at)
                VALUES (?, NULL, 'unlinked', ?, ?, ?)
                ON CONFLICT (external_id) DO UPDATE SET
                    deadline = CASE
                        WHEN accounts.status = 'unlinked'
                            THEN COALESCE(accounts.deadline, excluded.deadline)
                        ELSE accounts.deadline
                    END,
                    updated_at = excluded.updated_at
                """,
                (external_id, to_db_timestamp(deadline), now, now),
            )
            row = self._select(conn, external_id)
        return self._row_to_record(row)

    def activate(self, external_id: str, billing_ref: str) -> Optional[AccountRecord]:
        """Bind ``billing_ref`` to ``external_id`` and grant access.

        This is the only write path to ``active`` from a linking outcome. A
        billing reference maps to at most one identity, so any other record
        holding it is released (unlinked, deadline now) in the same
        transaction. Returns ``None`` without writing anything when the
        identity has no record.
        """
        now = to_db_timestamp(self._now())
        with self._transaction() as conn:
            if self._select(conn, external_id) is None:
                return None
            released = conn.execute(
                """
                UPDATE accounts
                SET billing_ref = NULL, status = 'unlinked', deadline = ?, issue_since = NULL,
                    last_paid_at = NULL, updated_at = ?
                WHERE billing_ref = ? AND external_id != ?
                """,
                (now, now, billing_ref, external_id),
            ).rowcount
            conn.execute(
                """
                UPDATE accounts
                SET billing_ref = ?, status = 'active', deadline = NULL, issue_since = NULL,
                    last_paid_at = NULL, updated_at = ?
                WHERE external_id = ?
                """,
                (billing_ref, now, external_id),
            )
            row = self._select(conn, external_id)
        if released:
            logger.warning(
                "Billing reference %s moved to %s; previous holder unlinked",
                billing_ref,
                external_id,
            )
        return self._row_to_record(row)

    def mark_payment_failed(
        self, billing_ref: str, *, deadline: datetime, occurred_at: datetime
    ) -> Optional[AccountRecord]:
        """Flag a payment issue. An existing later payment_issue deadline is kept.

        A failure older than the last recorded successful payment is stale and
        leaves the record untouched.
        """
        return self._transition(
            """
            UPDATE accounts
            SET status = 'payment_issue',
                deadline = CASE
                    WHEN status = 'payment_issue' AND deadline IS NOT NULL AND deadline > :deadline
                        THEN deadline
                    ELSE :deadline
                END,
                issue_since = CASE
                    WHEN status = 'payment_issue' AND issue_since IS NOT NULL
                        AND issue_since > :occurred_at
                        THEN issue_since
                    ELSE :occurred_at
                END,
                updated_at = :now
            WHERE billing_ref = :billing_ref
              AND (last_paid_at IS NULL OR last_paid_at < :occurred_at)
            """,
            billing_ref,
            deadline,
            occurred_at,
        )

    def mark_subscription_ended(
        self, billing_ref: str, *, deadline: datetime, occurred_at: datetime
    ) -> Optional[AccountRecord]:
        """Flag an ended subscription; the provider's end instant is authoritative."""
        return self._transition(
            """
            UPDATE accounts
            SET status = 'payment_issue',
                deadline = :deadline,
                issue_since = CASE
                    WHEN status = 'payment_issue' AND issue_since IS NOT NULL
                        AND issue_since > :occurred_at
                        THEN issue_since
                    ELSE :occurred_at
                END,
                updated_at = :now
            WHERE billing_ref = :billing_ref
            """,
            billing_ref,
            deadline,
            occurred_at,
        )

    def restore_active(
        self, billing_ref: str, *, occurred_at: datetime
    ) -> Optional[AccountRecord]:
        """Record a successful payment and clear the payment issue it resolves.

        Only a ``payment_issue`` record whose issue started before
        ``occurred_at`` returns to ``active``; a payment that predates the
        failure or the end of the subscription changes nothing but
        ``last_paid_at``.
        """
        return self._transition(
            """
            UPDATE accounts
            SET status = CASE WHEN {resolves} THEN 'active' ELSE status END,
                deadline = CASE WHEN {resolves} THEN NULL ELSE deadline END,
                issue_since = CASE WHEN {resolves} THEN NULL ELSE issue_since END,
                last_paid_at = CASE
                    WHEN last_paid_at IS NOT NULL AND last_paid_at > :occurred_at
                        THEN last_paid_at
                    ELSE :occurred_at
                END,
                updated_at = :now
            WHERE billing_ref = :billing_ref
            """.format(resolves=_RESOLVES_ISSUE),
            billing_ref,
            None,
            occurred_at,
        )

    def _transition(
        self,
        statement: str,
        billing_ref: str,
        deadline: Optional[datetime],
        occurred_at: datetime,
    ) -> Optional[AccountRecord]:
        """Run one guarded transition; returns the record as it stands afterwards."""
        params = {
            "billing_ref": billing_ref,
            "deadline": to_db_timestamp(deadline) if deadline else None,
            "occurred_at": to_db_timestamp(occurred_at),
            "now": to_db_timestamp(self._now()),
        }
        with self._transaction() as conn:
            conn.execute(statement, params)
            row = conn.execute(
                "SELECT * FROM accounts WHERE billing_ref = ?",
                (billing_ref,),
            ).fetchone()
        return self._row_to_record(row) if row else None

    @staticmethod
    def _select(conn: sqlite3.Connection, external_id: str) -> Optional[sqlite3.Row]:
        return conn.execute(
            "SELECT * FROM accounts WHERE external_id = ?",
            (external_id,),
        ).fetchone()

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> AccountRecord:
        return AccountRecord(
            external_id=row["external_id"],
            billing_ref=row["billing_ref"],
            status=AccountStatus(row["status"]),
            deadline=from_db_timestamp(row["deadline"]),
            issue_since=from_db_timestamp(row["issue_since"]),
            last_paid_at=from_db_timestamp(row["last_paid_at"]),
            created_at=from_db_timestamp(row["created_at"]),
            updated_at=from_db_timestamp(row["updated_at"]),
        )


__all__ = ["SQLiteAccountStore"]
