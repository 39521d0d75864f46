"""SQLite-backed store for single-use, typed, expiring link tokens."""

from __future__ import annotations

import hashlib
import logging
import secrets
import sqlite3
from datetime import timedelta
from typing import Optional

from gatekeeper.clients.sqlite_store import (
    SQLiteStore,
    from_db_timestamp,
    to_db_timestamp,
)
from gatekeeper.core.errors import (
    TokenAlreadyUsedError,
    TokenExpiredError,
    TokenNotFoundError,
)
from gatekeeper.models.tokens import (
    HandshakePayload,
    LinkToken,
    TokenKind,
    VerificationPayload,
    load_payload,
)

logger = logging.getLogger(__name__)

_SECRET_BYTES = 32


def hash_secret(secret: str) -> str:
    """Digest under which a token is stored; the raw secret is never persisted."""
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


class SQLiteTokenStore(SQLiteStore):
    """Issue, inspect and atomically redeem link tokens."""

    _SCHEMA = (
        """
        CREATE TABLE IF NOT EXISTS link_tokens (
            secret_hash TEXT PRIMARY KEY,
            owner_id TEXT NOT NULL,
            kind TEXT NOT NULL,
            payload TEXT NOT NULL,
            expires_at TEXT NOT NULL,
            used_at TEXT,
            created_at TEXT NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_link_tokens_owner ON link_tokens (owner_id, kind)",
        "CREATE INDEX IF NOT EXISTS idx_link_tokens_expires ON link_tokens (expires_at)",
        "CREATE INDEX IF NOT EXISTS idx_link_tokens_used ON link_tokens (used_at)",
    )

    def issue(
        self,
        *,
        owner_id: str,
        kind: TokenKind,
        payload: HandshakePayload | VerificationPayload,
        ttl: timedelta,
    ) -> str:
        """Persist a new token and return its secret. The secret is shown once."""
        if payload.kind != kind.value:
            raise ValueError(f"Payload of kind {payload.kind!r} cannot back a {kind.value} token")
        secret = secrets.token_urlsafe(_SECRET_BYTES)
        now = self._now()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO link_tokens
                    (secret_hash, owner_id, kind, payload, expires_at, used_at, created_at)
                VALUES (?, ?, ?, ?, ?, NULL, ?)
                """,
                (
                    hash_secret(secret),
                    owner_id,
                    kind.value,
                    payload.model_dump_json(),
                    to_db_timestamp(now + ttl),
                    to_db_timestamp(now),
                ),
            )
        logger.info("Issued %s token for %s", kind.value, owner_id)
        return secret

    def peek(self, secret: str, *, kind: Optional[TokenKind] = None) -> Optional[LinkToken]:
        """Return the token if it is still live, without consuming it."""
        with self._reader() as conn:
            row = conn.execute(
                "SELECT * FROM link_tokens WHERE secret_hash = ?",
                (hash_secret(secret),),
            ).fetchone()
        if not row or (kind is not None and row["kind"] != kind.value):
            return None
        token = self._row_to_token(row)
        if not token.is_live(self._now()):
            return None
        return token

    def redeem(self, secret: str, *, kind: Optional[TokenKind] = None) -> LinkToken:
        """Consume a live token exactly once.

        The expiry check, the unused check and the write of ``used_at`` form a
        single conditional UPDATE; concurrent callers racing on one secret see
        exactly one success and ``TokenAlreadyUsedError`` everywhere else.
        When ``kind`` is given, a token of another kind is reported as not
        found and left untouched.
        """
        secret_hash = hash_secret(secret)
        now = to_db_timestamp(self._now())
        kind_value = kind.value if kind is not None else None
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE link_tokens
                SET used_at = :now
                WHERE secret_hash = :secret_hash
                  AND used_at IS NULL
                  AND expires_at > :now
                  AND (:kind IS NULL OR kind = :kind)
                """,
                {"now": now, "secret_hash": secret_hash, "kind": kind_value},
            )
            claimed = cursor.rowcount == 1
            row = conn.execute(
                "SELECT * FROM link_tokens WHERE secret_hash = ?",
                (secret_hash,),
            ).fetchone()

        if claimed:
            token = self._row_to_token(row)
            logger.info("Redeemed %s token for %s", token.kind.value, token.owner_id)
            return token
        if row is None or (kind_value is not None and row["kind"] != kind_value):
            raise TokenNotFoundError("No token matches the presented secret.")
        if row["used_at"] is not None:
            raise TokenAlreadyUsedError("Token has already been redeemed.")
        raise TokenExpiredError("Token has expired.")

    @staticmethod
    def _row_to_token(row: sqlite3.Row) -> LinkToken:
        return LinkToken(
            secret_hash=row["secret_hash"],
            owner_id=row["owner_id"],
            kind=TokenKind(row["kind"]),
            payload=load_payload(row["payload"]),
            expires_at=from_db_timestamp(row["expires_at"]),
            used_at=from_db_timestamp(row["used_at"]),
            created_at=from_db_timestamp(row["created_at"]),
        )


__all__ = ["SQLiteTokenStore", "hash_secret"]
