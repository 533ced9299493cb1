"""SQLite ledger store for PokerPot."""

import logging
import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from .identifiers import utcnow
from .mapping import (
    BUY_INS,
    MANUAL_ADJUSTMENTS,
    MEMBERS,
    RESULTS,
    SESSION_MEMBERS,
    SESSIONS,
    SETTLEMENTS,
    EntitySpec,
    RecordT,
    entity_for,
)
from .models import (
    BuyIn,
    ManualAdjustment,
    Member,
    Result,
    Session,
    SessionHistoryEntry,
    SessionMember,
    Settlement,
    SyncedRecord,
)

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY NOT NULL,
    name TEXT NOT NULL,
    join_code TEXT NOT NULL UNIQUE,
    date TEXT NOT NULL,
    note TEXT,
    status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'completed')),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    pending_sync INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_sessions_pending_sync ON sessions(pending_sync);

CREATE TABLE IF NOT EXISTS session_members (
    id TEXT PRIMARY KEY NOT NULL,
    session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
    user_id TEXT NOT NULL,
    role TEXT NOT NULL CHECK (role IN ('admin', 'member')),
    joined_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    pending_sync INTEGER NOT NULL DEFAULT 0,
    UNIQUE (session_id, user_id)
);
CREATE INDEX IF NOT EXISTS idx_session_members_user_id ON session_members(user_id);

CREATE TABLE IF NOT EXISTS members (
    id TEXT PRIMARY KEY NOT NULL,
    session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
    user_id TEXT,
    name TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    pending_sync INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_members_session_id ON members(session_id);
CREATE INDEX IF NOT EXISTS idx_members_user_id ON members(user_id);

CREATE TABLE IF NOT EXISTS buy_ins (
    id TEXT PRIMARY KEY NOT NULL,
    session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
    member_id TEXT NOT NULL REFERENCES members(id) ON DELETE CASCADE,
    amount_cents INTEGER NOT NULL CHECK (amount_cents > 0),
    approved INTEGER NOT NULL DEFAULT 0,
    approved_by TEXT,
    approved_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    pending_sync INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_buy_ins_session_id ON buy_ins(session_id);
CREATE INDEX IF NOT EXISTS idx_buy_ins_member_id ON buy_ins(member_id);

CREATE TABLE IF NOT EXISTS results (
    id TEXT PRIMARY KEY NOT NULL,
    session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
    member_id TEXT NOT NULL REFERENCES members(id) ON DELETE CASCADE,
    net_cents INTEGER NOT NULL,
    cashout_cents INTEGER NOT NULL DEFAULT 0 CHECK (cashout_cents >= 0),
    updated_at TEXT NOT NULL,
    pending_sync INTEGER NOT NULL DEFAULT 0,
    UNIQUE (session_id, member_id)
);
CREATE INDEX IF NOT EXISTS idx_results_member_id ON results(member_id);

CREATE TABLE IF NOT EXISTS settlements (
    id TEXT PRIMARY KEY NOT NULL,
    session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
    from_member_id TEXT NOT NULL REFERENCES members(id) ON DELETE CASCADE,
    to_member_id TEXT NOT NULL REFERENCES members(id) ON DELETE CASCADE,
    amount_cents INTEGER NOT NULL CHECK (amount_cents > 0),
    settled_at TEXT NOT NULL,
    note TEXT,
    paid INTEGER NOT NULL DEFAULT 0,
    paid_at TEXT,
    paid_by TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    pending_sync INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_settlements_session_id ON settlements(session_id);

CREATE TABLE IF NOT EXISTS manual_adjustments (
    id TEXT PRIMARY KEY NOT NULL,
    user_id TEXT NOT NULL,
    amount_cents INTEGER NOT NULL,
    note TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    pending_sync INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_manual_adjustments_user_id ON manual_adjustments(user_id);

CREATE TABLE IF NOT EXISTS app_metadata (
    key TEXT PRIMARY KEY NOT NULL,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS pending_deletes (
    entity TEXT NOT NULL,
    record_id TEXT NOT NULL,
    deleted_at TEXT NOT NULL,
    PRIMARY KEY (entity, record_id)
);
"""


class Database:
    """SQLite database manager."""

    def __init__(self, db_path: Path):
        """Initialize database connection."""
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self._transaction_depth = 0
        self._init_schema()

    def _init_schema(self):
        """Initialize database schema."""
        self.conn.executescript(SCHEMA)
        self.conn.commit()

    def close(self):
        """Close database connection."""
        self.conn.close()

    # ========================================================================
    # Generic statement operations
    # ========================================================================

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        """Run a SELECT and return all rows."""
        return self.conn.execute(sql, tuple(params)).fetchall()

    def query_one(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Row | None:
        """Run a SELECT and return the first row, if any."""
        row: sqlite3.Row | None = self.conn.execute(sql, tuple(params)).fetchone()
        return row

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run a write statement; commits unless inside transaction()."""
        cursor = self.conn.execute(sql, tuple(params))
        if self._transaction_depth == 0:
            self.conn.commit()
        return cursor.rowcount

    @contextmanager
    def transaction(self) -> Iterator["Database"]:
        """
        Group several writes into one atomic transaction.

        Nested use joins the outermost transaction. Any exception rolls
        everything back and is re-raised.
        """
        if self._transaction_depth > 0:
            self._transaction_depth += 1
            try:
                yield self
            finally:
                self._transaction_depth -= 1
            return

        self._transaction_depth = 1
        try:
            yield self
            self.conn.commit()
        except BaseException:
            self.conn.rollback()
            raise
        finally:
            self._transaction_depth = 0

    # ========================================================================
    # Entity operations (shared by every synced table)
    # ========================================================================

    def get(self, spec: EntitySpec[RecordT], record_id: str) -> RecordT | None:
        """Get a record by primary key."""
        row = self.query_one(f"SELECT * FROM {spec.table} WHERE id = ?", (record_id,))
        return spec.from_row(row) if row else None

    def upsert(self, record: SyncedRecord) -> None:
        """Insert or update a record exactly as given (no timestamp changes)."""
        spec = entity_for(record)
        row = spec.to_row(record)
        columns = list(row)
        placeholders = ", ".join("?" for _ in columns)
        updates = ", ".join(f"{c} = excluded.{c}" for c in columns if c != "id")
        self.execute(
            f"INSERT INTO {spec.table} ({', '.join(columns)}) "
            f"VALUES ({placeholders}) "
            f"ON CONFLICT(id) DO UPDATE SET {updates}",
            [row[c] for c in columns],
        )

    def save(self, record: SyncedRecord) -> None:
        """Record a local change: bump updated_at, flag for push, upsert."""
        record.updated_at = utcnow()
        record.pending_sync = True
        self.upsert(record)

    def delete(self, spec: EntitySpec, record_id: str) -> bool:
        """
        Delete a record locally and queue the deletion for the remote store.

        Dependent rows go with it through ON DELETE CASCADE.

        Returns:
            True if a row was deleted
        """
        with self.transaction():
            deleted = self.execute(
                f"DELETE FROM {spec.table} WHERE id = ?", (record_id,)
            )
            if deleted:
                self.execute(
                    """
                    INSERT INTO pending_deletes (entity, record_id, deleted_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(entity, record_id) DO NOTHING
                    """,
                    (spec.name, record_id, utcnow().isoformat()),
                )
        return deleted > 0

    def list_pending_sync(self, spec: EntitySpec[RecordT]) -> list[RecordT]:
        """Get all records with unpushed local changes."""
        rows = self.query(f"SELECT * FROM {spec.table} WHERE pending_sync = 1")
        return [spec.from_row(row) for row in rows]

    def mark_synced(self, spec: EntitySpec, record_ids: Sequence[str]) -> None:
        """Clear the pending-sync flag after a successful push."""
        with self.transaction():
            for record_id in record_ids:
                self.execute(
                    f"UPDATE {spec.table} SET pending_sync = 0 WHERE id = ?",
                    (record_id,),
                )

    def list_pending_deletes(self) -> list[tuple[str, str]]:
        """Get queued remote deletions as (entity, record_id) pairs."""
        rows = self.query(
            "SELECT entity, record_id FROM pending_deletes ORDER BY deleted_at"
        )
        return [(row["entity"], row["record_id"]) for row in rows]

    def clear_pending_deletes(self, entity_name: str, record_ids: Sequence[str]):
        """Drop deletions that reached the remote store."""
        with self.transaction():
            for record_id in record_ids:
                self.execute(
                    "DELETE FROM pending_deletes WHERE entity = ? AND record_id = ?",
                    (entity_name, record_id),
                )

    # ========================================================================
    # Metadata operations
    # ========================================================================

    def get_metadata(self, key: str) -> str | None:
        """Get a metadata value by key."""
        row = self.query_one("SELECT value FROM app_metadata WHERE key = ?", (key,))
        return str(row["value"]) if row else None

    def set_metadata(self, key: str, value: str):
        """Set a metadata value."""
        self.execute(
            """
            INSERT INTO app_metadata (key, value, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                updated_at = excluded.updated_at
            """,
            (key, value, utcnow().isoformat()),
        )

    def get_last_sync_at(self) -> datetime | None:
        """Get the sync watermark."""
        value = self.get_metadata("last_sync_at")
        return datetime.fromisoformat(value) if value else None

    def set_last_sync_at(self, timestamp: datetime):
        """Advance the sync watermark."""
        self.set_metadata("last_sync_at", timestamp.isoformat())

    # ========================================================================
    # Session operations
    # ========================================================================

    def get_session(self, session_id: str) -> Session | None:
        return self.get(SESSIONS, session_id)

    def get_session_by_join_code(self, join_code: str) -> Session | None:
        """Get a session by its (already normalized) join code."""
        row = self.query_one(
            "SELECT * FROM sessions WHERE join_code = ?", (join_code,)
        )
        return SESSIONS.from_row(row) if row else None

    def join_code_exists(self, join_code: str) -> bool:
        return (
            self.query_one("SELECT 1 FROM sessions WHERE join_code = ?", (join_code,))
            is not None
        )

    def list_sessions(self, user_id: str | None = None) -> list[Session]:
        """List sessions newest first, optionally only those a user belongs to."""
        if user_id is None:
            rows = self.query("SELECT * FROM sessions ORDER BY date DESC, created_at DESC")
        else:
            rows = self.query(
                """
                SELECT s.* FROM sessions s
                JOIN session_members sm ON sm.session_id = s.id
                WHERE sm.user_id = ?
                ORDER BY s.date DESC, s.created_at DESC
                """,
                (user_id,),
            )
        return [SESSIONS.from_row(row) for row in rows]

    def get_session_member(
        self, session_id: str, user_id: str
    ) -> SessionMember | None:
        """Get a user's role record within a session."""
        row = self.query_one(
            "SELECT * FROM session_members WHERE session_id = ? AND user_id = ?",
            (session_id, user_id),
        )
        return SESSION_MEMBERS.from_row(row) if row else None

    # ========================================================================
    # Member operations
    # ========================================================================

    def get_member(self, member_id: str) -> Member | None:
        return self.get(MEMBERS, member_id)

    def list_members(self, session_id: str) -> list[Member]:
        """List a session's members ordered by name."""
        rows = self.query(
            "SELECT * FROM members WHERE session_id = ? ORDER BY name, created_at",
            (session_id,),
        )
        return [MEMBERS.from_row(row) for row in rows]

    def get_member_for_user(self, session_id: str, user_id: str) -> Member | None:
        """Get the member record linked to a user in a session."""
        row = self.query_one(
            "SELECT * FROM members WHERE session_id = ? AND user_id = ?",
            (session_id, user_id),
        )
        return MEMBERS.from_row(row) if row else None

    # ========================================================================
    # Buy-in operations
    # ========================================================================

    def get_buy_in(self, buy_in_id: str) -> BuyIn | None:
        return self.get(BUY_INS, buy_in_id)

    def list_buy_ins(
        self,
        session_id: str,
        approved: bool | None = None,
        member_id: str | None = None,
    ) -> list[BuyIn]:
        """List buy-ins newest first, optionally filtered by state and member."""
        sql = "SELECT * FROM buy_ins WHERE session_id = ?"
        params: list[Any] = [session_id]
        if approved is not None:
            sql += " AND approved = ?"
            params.append(int(approved))
        if member_id is not None:
            sql += " AND member_id = ?"
            params.append(member_id)
        sql += " ORDER BY created_at DESC"
        return [BUY_INS.from_row(row) for row in self.query(sql, params)]

    def sum_approved_buy_ins(self, session_id: str, member_id: str | None = None) -> int:
        """Total approved buy-ins for a session, or for one member of it."""
        sql = (
            "SELECT COALESCE(SUM(amount_cents), 0) AS total FROM buy_ins "
            "WHERE session_id = ? AND approved = 1"
        )
        params: list[Any] = [session_id]
        if member_id is not None:
            sql += " AND member_id = ?"
            params.append(member_id)
        row = self.query_one(sql, params)
        return int(row["total"]) if row else 0

    # ========================================================================
    # Result operations
    # ========================================================================

    def get_result(self, session_id: str, member_id: str) -> Result | None:
        """Get the result for a (session, member) pair."""
        row = self.query_one(
            "SELECT * FROM results WHERE session_id = ? AND member_id = ?",
            (session_id, member_id),
        )
        return RESULTS.from_row(row) if row else None

    def list_results(self, session_id: str) -> list[Result]:
        rows = self.query("SELECT * FROM results WHERE session_id = ?", (session_id,))
        return [RESULTS.from_row(row) for row in rows]

    def list_user_history(self, user_id: str) -> list[SessionHistoryEntry]:
        """
        Get a user's own per-session results, newest session first.

        Only results of members linked to ``user_id`` are returned; other
        members' results never leave this query.
        """
        rows = self.query(
            """
            SELECT s.id AS session_id, s.name AS session_name, s.date, s.note,
                   r.net_cents
            FROM results r
            JOIN members m ON m.id = r.member_id
            JOIN sessions s ON s.id = r.session_id
            WHERE m.user_id = ?
            ORDER BY s.date DESC, s.created_at DESC
            """,
            (user_id,),
        )
        return [SessionHistoryEntry.model_validate(dict(row)) for row in rows]

    # ========================================================================
    # Settlement operations
    # ========================================================================

    def get_settlement(self, settlement_id: str) -> Settlement | None:
        return self.get(SETTLEMENTS, settlement_id)

    def list_settlements(
        self, session_id: str, paid: bool | None = None
    ) -> list[Settlement]:
        """List a session's settlements in the order they were produced."""
        sql = "SELECT * FROM settlements WHERE session_id = ?"
        params: list[Any] = [session_id]
        if paid is not None:
            sql += " AND paid = ?"
            params.append(int(paid))
        sql += " ORDER BY settled_at, rowid"
        return [SETTLEMENTS.from_row(row) for row in self.query(sql, params)]

    # ========================================================================
    # Manual adjustment operations
    # ========================================================================

    def get_adjustment(self, adjustment_id: str) -> ManualAdjustment | None:
        return self.get(MANUAL_ADJUSTMENTS, adjustment_id)

    def list_adjustments(self, user_id: str) -> list[ManualAdjustment]:
        """List a user's manual adjustments newest first."""
        rows = self.query(
            "SELECT * FROM manual_adjustments WHERE user_id = ? ORDER BY created_at DESC",
            (user_id,),
        )
        return [MANUAL_ADJUSTMENTS.from_row(row) for row in rows]
