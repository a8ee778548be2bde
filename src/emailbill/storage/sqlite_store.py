"""Summary: SQLite storage for session-scoped identity payloads and OAuth state nonces.

Importance: Keeps provider tokens server-side while the browser only holds a signed session id.
Alternatives: Put the whole identity in the signed session cookie, or use Redis.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator


@dataclass(frozen=True)
class StoredSession:
    """Summary: Identity payload record keyed by session id.

    Importance: Lets the token store check record age against the session lifetime.
    Alternatives: Return the bare payload string.
    """

    session_id: str
    payload: str
    updated_at: datetime


class SqliteStore:
    """Summary: SQLite-backed key/value storage of serialized identities.

    Importance: Provides durable session storage with no extra services.
    Alternatives: Use Postgres and SQLAlchemy from day one.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = Path(db_path)

    def initialize(self) -> None:
        """Summary: Create tables if they do not exist.

        Importance: Ensures the database is ready before the first OAuth redirect.
        Alternatives: Run migrations using a dedicated migration tool.
        """

        with self._connection() as connection:
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS session_identities (
                    session_id TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS oauth_states (
                    session_id TEXT NOT NULL,
                    provider TEXT NOT NULL,
                    state TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (session_id, provider)
                )
                """
            )
            connection.commit()

    def get_session(self, session_id: str) -> StoredSession | None:
        with self._connection() as connection:
            row = connection.execute(
                "SELECT session_id, payload, updated_at FROM session_identities WHERE session_id = ?",
                (session_id,),
            ).fetchone()
        if not row:
            return None
        return StoredSession(
            session_id=row[0],
            payload=row[1],
            updated_at=datetime.fromisoformat(row[2]),
        )

    def upsert_session(self, session_id: str, payload: str) -> None:
        """Summary: Insert or replace the payload for a session.

        Importance: One write per refresh or callback; last writer wins.
        Alternatives: Version rows and reject stale writes.
        """

        now = datetime.now(timezone.utc).isoformat()
        with self._connection() as connection:
            connection.execute(
                """
                INSERT INTO session_identities (session_id, payload, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(session_id) DO UPDATE SET
                    payload = excluded.payload,
                    updated_at = excluded.updated_at
                """,
                (session_id, payload, now),
            )
            connection.commit()

    def touch_session(self, session_id: str) -> None:
        """Summary: Mark a session identity as used now.

        Importance: Keeps the identity alive as long as the rolling session cookie.
        Alternatives: Sign an expiry into the cookie.
        """

        now = datetime.now(timezone.utc).isoformat()
        with self._connection() as connection:
            connection.execute(
                "UPDATE session_identities SET updated_at = ? WHERE session_id = ?",
                (now, session_id),
            )
            connection.commit()

    def delete_session(self, session_id: str) -> None:
        with self._connection() as connection:
            connection.execute(
                "DELETE FROM session_identities WHERE session_id = ?",
                (session_id,),
            )
            connection.execute("DELETE FROM oauth_states WHERE session_id = ?", (session_id,))
            connection.commit()

    def purge_expired(self, max_age_seconds: int) -> int:
        """Summary: Delete identities and state nonces older than the session lifetime.

        Importance: Identity must not outlive the session cookie that references it.
        Alternatives: Rely on cookie expiry alone and let rows accumulate.
        """

        cutoff = (datetime.now(timezone.utc) - timedelta(seconds=max_age_seconds)).isoformat()
        with self._connection() as connection:
            cursor = connection.execute(
                "DELETE FROM session_identities WHERE updated_at < ?",
                (cutoff,),
            )
            connection.execute("DELETE FROM oauth_states WHERE created_at < ?", (cutoff,))
            connection.commit()
            return cursor.rowcount

    def put_state(self, session_id: str, provider: str, state: str) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with self._connection() as connection:
            connection.execute(
                """
                INSERT INTO oauth_states (session_id, provider, state, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(session_id, provider) DO UPDATE SET
                    state = excluded.state,
                    created_at = excluded.created_at
                """,
                (session_id, provider, state, now),
            )
            connection.commit()

    def pop_state(self, session_id: str, provider: str, max_age_seconds: int) -> str | None:
        """Summary: Remove and return the pending state nonce for a provider.

        Importance: Only the caller whose delete removed the row gets the nonce back, so it
        is usable once even across concurrent callbacks or replayed cookies.
        Alternatives: Mark rows as used instead of deleting them.
        """

        with self._connection() as connection:
            row = connection.execute(
                "SELECT state, created_at FROM oauth_states WHERE session_id = ? AND provider = ?",
                (session_id, provider),
            ).fetchone()
            if not row:
                return None
            cursor = connection.execute(
                "DELETE FROM oauth_states WHERE session_id = ? AND provider = ? AND state = ?",
                (session_id, provider, row[0]),
            )
            connection.commit()
        if cursor.rowcount != 1:
            return None
        created_at = datetime.fromisoformat(row[1])
        if created_at + timedelta(seconds=max_age_seconds) < datetime.now(timezone.utc):
            return None
        return row[0]

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Summary: Context manager for SQLite connections.

        Importance: Ensures connections are closed cleanly after use.
        Alternatives: Keep a single long-lived connection.
        """

        connection = sqlite3.connect(self._db_path)
        try:
            yield connection
        finally:
            connection.close()
