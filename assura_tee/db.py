"""
Database module for the Assura attestation service.

SQLite storage for the attestation ledger and username registrations.
One connection per thread, WAL journal.
"""

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, List, Optional

from assura import (
    LedgerRecord,
    LedgerStats,
    LedgerStore,
    Registration,
    UsernameRegistry,
    from_hex,
    normalize_address,
    to_hex,
)

from .config import DB_PATH as _CONFIGURED_DB_PATH

DB_PATH = Path(_CONFIGURED_DB_PATH)

# Thread-local storage for connection pooling
_local = threading.local()


def _get_connection() -> sqlite3.Connection:
    """
    Get a thread-local database connection.
    Connections are reused within the same thread.
    """
    if getattr(_local, 'conn', None) is None:
        DB_PATH.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(DB_PATH), check_same_thread=False, timeout=10)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute("PRAGMA temp_store=MEMORY;")
        conn.row_factory = sqlite3.Row
        _local.conn = conn
    return _local.conn


@contextmanager
def _transaction():
    """
    Context manager for database transactions.
    Commits on success, rolls back on failure.
    """
    conn = _get_connection()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def init_db() -> None:
    """
    Initialize database schema.
    Safe to call multiple times.
    """
    with _transaction() as conn:
        # chain_id and policy_key are uint256/bytes32 values, kept as text
        conn.execute("""
        CREATE TABLE IF NOT EXISTS attestations (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            user_address TEXT NOT NULL,
            score INTEGER NOT NULL,
            issued_at INTEGER NOT NULL,
            chain_id TEXT NOT NULL,
            signature TEXT NOT NULL,
            tee_address TEXT NOT NULL,
            policy_key TEXT NOT NULL,
            created_at INTEGER DEFAULT (strftime('%s', 'now'))
        );""")
        conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_attestations_user
        ON attestations(user_address, seq);""")

        conn.execute("""
        CREATE TABLE IF NOT EXISTS users (
            user_address TEXT PRIMARY KEY,
            username TEXT NOT NULL UNIQUE,
            created_at INTEGER DEFAULT (strftime('%s', 'now'))
        );""")


def _row_to_record(row: sqlite3.Row) -> LedgerRecord:
    return LedgerRecord(
        subject=row["user_address"],
        score=row["score"],
        issued_at=row["issued_at"],
        context_id=int(row["chain_id"]),
        signature=from_hex(row["signature"]),
        signer_address=row["tee_address"],
        policy_key=from_hex(row["policy_key"]),
    )


class SqliteLedgerStore(LedgerStore):
    """Ledger store on the ``attestations`` table; ``seq`` gives chronological order."""

    def append(self, record: LedgerRecord) -> None:
        with _transaction() as conn:
            conn.execute(
                "INSERT INTO attestations(user_address, score, issued_at, chain_id, "
                "signature, tee_address, policy_key) VALUES(?,?,?,?,?,?,?)",
                (
                    record.subject,
                    record.score,
                    record.issued_at,
                    str(record.context_id),
                    to_hex(record.signature),
                    record.signer_address,
                    to_hex(record.policy_key),
                )
            )

    def records(self, subject: str) -> List[LedgerRecord]:
        conn = _get_connection()
        cur = conn.execute(
            "SELECT * FROM attestations WHERE user_address=? ORDER BY seq ASC",
            (subject,)
        )
        return [_row_to_record(row) for row in cur.fetchall()]

    def latest(self, subject: str) -> Optional[LedgerRecord]:
        conn = _get_connection()
        cur = conn.execute(
            "SELECT * FROM attestations WHERE user_address=? ORDER BY seq DESC LIMIT 1",
            (subject,)
        )
        row = cur.fetchone()
        return _row_to_record(row) if row else None

    def counts(self) -> LedgerStats:
        conn = _get_connection()
        row = conn.execute(
            "SELECT COUNT(DISTINCT user_address) AS subjects, COUNT(*) AS total FROM attestations"
        ).fetchone()
        return LedgerStats(total_subjects=row["subjects"], total_records=row["total"])


class SqliteUsernameRegistry(UsernameRegistry):
    """Username registry on the ``users`` table. First writer wins."""

    def register(self, subject: str, username: str) -> Registration:
        subject = normalize_address(subject)
        with _transaction() as conn:
            row = conn.execute(
                "SELECT username FROM users WHERE user_address=?", (subject,)
            ).fetchone()
            if row is not None:
                return Registration(subject, username, created=False, existing_username=row["username"])
            cur = conn.execute(
                "INSERT OR IGNORE INTO users(user_address, username) VALUES(?,?)",
                (subject, username)
            )
            return Registration(subject, username, created=cur.rowcount == 1)

    def lookup(self, subject: str) -> Optional[str]:
        conn = _get_connection()
        row = conn.execute(
            "SELECT username FROM users WHERE user_address=?", (normalize_address(subject),)
        ).fetchone()
        return row["username"] if row else None


# ============================================================
# Metrics and Health
# ============================================================

def get_db_stats() -> Dict[str, int]:
    """Get database statistics for monitoring."""
    conn = _get_connection()
    stats = {}
    for table in ['attestations', 'users']:
        cur = conn.execute(f"SELECT COUNT(*) as cnt FROM {table}")
        stats[f"{table}_count"] = cur.fetchone()['cnt']
    return stats


# ============================================================
# Test Support: Database Reset
# ============================================================

def reset_db() -> None:
    """
    Reset the database for test isolation.
    Clears all tables but preserves schema.
    """
    with _transaction() as conn:
        conn.execute("DELETE FROM attestations")
        conn.execute("DELETE FROM users")


def close_connection() -> None:
    """Close the thread-local connection."""
    if getattr(_local, 'conn', None) is not None:
        _local.conn.close()
        _local.conn = None
