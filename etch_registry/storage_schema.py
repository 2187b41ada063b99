from __future__ import annotations

import sqlite3
from datetime import datetime, timezone

SCHEMA_VERSION = 1


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def initialize_sqlite(conn: sqlite3.Connection) -> None:
    """
    Initialize the SQLite database with a small migration system.

    This function is idempotent: it can be called on every startup.
    """
    _configure_connection(conn)
    _apply_migrations(conn)


def _configure_connection(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA busy_timeout = 5000")

    # WAL is best-effort (e.g., in-memory DBs won't use it).
    try:
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
    except sqlite3.DatabaseError:
        pass


_MIGRATIONS: dict[int, str] = {
    1: """
CREATE TABLE IF NOT EXISTS registry_meta (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL
);

-- Token ids, quantities and event integers are uint256-sized; they are stored
-- as canonical decimal TEXT because SQLite INTEGER is 64-bit.
CREATE TABLE IF NOT EXISTS posts (
  token_id TEXT PRIMARY KEY,
  uri TEXT NOT NULL,
  total_issued TEXT NOT NULL,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS balances (
  owner TEXT NOT NULL,
  token_id TEXT NOT NULL,
  quantity TEXT NOT NULL,
  PRIMARY KEY (owner, token_id),
  FOREIGN KEY (token_id) REFERENCES posts(token_id)
);

CREATE INDEX IF NOT EXISTS idx_balances_token_id
  ON balances(token_id);

CREATE TABLE IF NOT EXISTS roles (
  role TEXT NOT NULL,
  principal TEXT NOT NULL,
  granted_at TEXT NOT NULL,
  PRIMARY KEY (role, principal)
);

-- Append-only audit log; event fields are stored exactly as supplied.
CREATE TABLE IF NOT EXISTS pub_events (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  action TEXT NOT NULL,
  variant TEXT NOT NULL,
  token_id TEXT NOT NULL,
  uri TEXT NOT NULL,
  caller TEXT NOT NULL,
  event_id TEXT NOT NULL,
  pubkey TEXT NOT NULL,
  created_at TEXT NOT NULL,
  kind TEXT NOT NULL,
  content TEXT NOT NULL,
  tags_json TEXT NOT NULL,
  signature TEXT NOT NULL,
  recorded_at TEXT NOT NULL,
  FOREIGN KEY (token_id) REFERENCES posts(token_id)
);

CREATE INDEX IF NOT EXISTS idx_pub_events_token_id
  ON pub_events(token_id);
""".strip()
}


def _apply_migrations(conn: sqlite3.Connection) -> None:
    with conn:
        conn.execute(
            "CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)"
        )

    rows = conn.execute("SELECT version FROM schema_migrations").fetchall()
    applied: set[int] = {int(r[0]) for r in rows}

    for version in range(1, SCHEMA_VERSION + 1):
        if version in applied:
            continue

        script = _MIGRATIONS.get(version)
        if not script:
            raise RuntimeError(f"Missing migration script for version={version}")

        with conn:
            conn.executescript(script)
            conn.execute(
                "INSERT INTO schema_migrations(version, applied_at) VALUES (?, ?)",
                (version, _utc_now_iso()),
            )
