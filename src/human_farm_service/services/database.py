"""SQLite connection and schema shared by the task and user stores."""

from __future__ import annotations

import contextlib
import sqlite3
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    type TEXT NOT NULL CHECK (type IN ('human', 'agent')),
    email TEXT UNIQUE,
    password_hash TEXT,
    email_verified INTEGER NOT NULL DEFAULT 0,
    email_verified_at TEXT,
    wallet_address TEXT,
    twitter_username TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS human_profiles (
    user_id TEXT PRIMARY KEY REFERENCES users(id),
    display_name TEXT NOT NULL,
    bio TEXT NOT NULL DEFAULT '',
    avatar_url TEXT,
    hourly_rate_usd REAL NOT NULL,
    location_city TEXT NOT NULL,
    location_country TEXT NOT NULL,
    skills TEXT NOT NULL DEFAULT '[]',
    verification_level INTEGER NOT NULL DEFAULT 0,
    total_tasks INTEGER NOT NULL DEFAULT 0,
    avg_rating REAL,
    is_active INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS agent_profiles (
    user_id TEXT PRIMARY KEY REFERENCES users(id),
    name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    api_key TEXT NOT NULL UNIQUE,
    total_tasks INTEGER NOT NULL DEFAULT 0,
    total_spent_usd REAL NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS user_points (
    user_id TEXT PRIMARY KEY REFERENCES users(id),
    total_points REAL NOT NULL DEFAULT 0,
    submissions_count INTEGER NOT NULL DEFAULT 0,
    referral_points REAL NOT NULL DEFAULT 0,
    referral_count INTEGER NOT NULL DEFAULT 0,
    referred_by TEXT,
    referral_code TEXT NOT NULL UNIQUE,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS referrals (
    id TEXT PRIMARY KEY,
    referrer_id TEXT NOT NULL REFERENCES users(id),
    referred_id TEXT NOT NULL UNIQUE REFERENCES users(id),
    referral_code TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL REFERENCES users(id),
    human_id TEXT REFERENCES users(id),
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    category TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'open',
    budget_usd REAL NOT NULL,
    platform_fee_usd REAL NOT NULL,
    deadline TEXT NOT NULL,
    location_required INTEGER NOT NULL DEFAULT 0,
    location_lat REAL,
    location_lng REAL,
    location_address TEXT,
    proof_requirements TEXT NOT NULL DEFAULT '[]',
    payment_status TEXT NOT NULL DEFAULT 'pending_deposit',
    escrow_contract_address TEXT,
    escrow_task_id TEXT,
    payment_token TEXT,
    payment_amount_wei TEXT,
    payment_chain_id INTEGER,
    deposit_tx_hash TEXT,
    release_tx_hash TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    assigned_at TEXT,
    completed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_tasks_created ON tasks (created_at DESC, id DESC);

CREATE TABLE IF NOT EXISTS task_applications (
    id TEXT PRIMARY KEY,
    task_id TEXT NOT NULL REFERENCES tasks(id),
    human_id TEXT NOT NULL REFERENCES users(id),
    message TEXT,
    proposed_rate REAL,
    status TEXT NOT NULL DEFAULT 'pending',
    created_at TEXT NOT NULL,
    UNIQUE(task_id, human_id)
);

CREATE TABLE IF NOT EXISTS task_completions (
    id TEXT PRIMARY KEY,
    task_id TEXT NOT NULL REFERENCES tasks(id),
    human_id TEXT NOT NULL REFERENCES users(id),
    proof_data TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    submitted_at TEXT NOT NULL,
    review_note TEXT
);

CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    task_id TEXT NOT NULL REFERENCES tasks(id),
    sender_id TEXT NOT NULL REFERENCES users(id),
    content TEXT NOT NULL,
    attachments TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_messages_task ON messages (task_id, created_at);

CREATE TABLE IF NOT EXISTS reviews (
    id TEXT PRIMARY KEY,
    task_id TEXT NOT NULL REFERENCES tasks(id),
    reviewer_id TEXT NOT NULL REFERENCES users(id),
    reviewee_id TEXT NOT NULL REFERENCES users(id),
    rating INTEGER NOT NULL,
    content TEXT,
    created_at TEXT NOT NULL
);
"""


class Database:
    """
    Single SQLite connection guarded by a re-entrant lock.

    Stores share one Database so that multi-table writes can run
    inside one transaction.
    """

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA foreign_keys=ON")
        self._db.execute("PRAGMA busy_timeout=5000")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._db.executescript(_SCHEMA)

    @contextlib.contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block of statements atomically.

        Commits when the block exits normally and rolls back on any exception.
        """
        with self._lock:
            self._db.execute("BEGIN IMMEDIATE")
            try:
                yield self._db
            except BaseException:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise
            self._db.execute("COMMIT")

    def execute(self, sql: str, params: tuple[object, ...] | list[object] = ()) -> int:
        """Run a single autocommitted write and return the affected row count."""
        with self._lock:
            cursor = self._db.execute(sql, params)
        return int(cursor.rowcount)

    def fetchone(
        self, sql: str, params: tuple[object, ...] | list[object] = ()
    ) -> sqlite3.Row | None:
        """Execute a query and return the first row."""
        with self._lock:
            row: sqlite3.Row | None = self._db.execute(sql, params).fetchone()
        return row

    def fetchall(
        self, sql: str, params: tuple[object, ...] | list[object] = ()
    ) -> list[sqlite3.Row]:
        """Execute a query and return all rows."""
        with self._lock:
            rows: list[sqlite3.Row] = self._db.execute(sql, params).fetchall()
        return rows

    def scalar(self, sql: str, params: tuple[object, ...] | list[object] = ()) -> object:
        """Execute a query and return the first column of the first row."""
        row = self.fetchone(sql, params)
        if row is None:
            return None
        return row[0]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
