from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from .errors import StorageError
from .event import PubEvent, signed_event_from_dict
from .post import ABSENT, PostState
from .storage_schema import initialize_sqlite


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _as_path(value: str | Path) -> str:
    return str(value)


def _num(value: int) -> str:
    """Canonical decimal text for an arbitrary-size integer column."""
    return str(int(value))


class SQLiteRegistryStore:
    """
    Durable registry state in SQLite.

    Mutating methods run inside transaction(); outside one, each call commits on
    its own. A database remembers the variant it was created for and refuses to
    open as the other one.
    """

    def __init__(self, conn: sqlite3.Connection, variant: str) -> None:
        self._conn = conn
        self._conn.row_factory = sqlite3.Row
        self._variant = variant
        self._depth = 0

    @classmethod
    def open(cls, path: str | Path, *, variant: str = "multi") -> "SQLiteRegistryStore":
        db_path = _as_path(path)
        if db_path != ":memory:":
            p = Path(db_path)
            p.parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = sqlite3.connect(db_path, check_same_thread=False)
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to open sqlite database: {db_path}: {e}") from e

        try:
            initialize_sqlite(conn)
        except Exception as e:
            conn.close()
            raise StorageError(f"Failed to initialize sqlite schema: {e}") from e

        store = cls(conn, variant)
        try:
            store._bind_variant()
        except StorageError:
            conn.close()
            raise
        return store

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "SQLiteRegistryStore":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    @property
    def variant(self) -> str:
        return self._variant

    def _bind_variant(self) -> None:
        stored = self._meta("variant")
        if stored is None:
            self._set_meta("variant", self._variant)
            return
        if stored != self._variant:
            raise StorageError(
                f"Database was created for the {stored!r} variant, not {self._variant!r}"
            )

    def _meta(self, key: str) -> str | None:
        row = self._conn.execute(
            "SELECT value FROM registry_meta WHERE key = ?", (key,)
        ).fetchone()
        return str(row["value"]) if row is not None else None

    def _set_meta(self, key: str, value: str) -> None:
        self._execute(
            "INSERT INTO registry_meta(key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, value),
        )

    def mark_initialized(self) -> bool:
        """Return True only the first time this database is initialized."""
        if self._meta("initialized_at") is not None:
            return False
        self._set_meta("initialized_at", _utc_now_iso())
        return True

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if self._depth:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            return

        self._depth = 1
        try:
            with self._conn:
                yield
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Registry transaction failed: {e}") from e
        finally:
            self._depth = 0

    def _execute(self, sql: str, params: tuple[Any, ...]) -> None:
        try:
            if self._depth:
                self._conn.execute(sql, params)
                return
            with self._conn:
                self._conn.execute(sql, params)
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to write registry state: {e}") from e

    # posts

    def get_post(self, token_id: int) -> PostState:
        row = self._conn.execute(
            "SELECT uri, total_issued FROM posts WHERE token_id = ?",
            (_num(token_id),),
        ).fetchone()
        if row is None:
            return ABSENT
        return PostState(
            uri=str(row["uri"]),
            exists=True,
            total_issued=int(row["total_issued"]),
        )

    def put_post(self, token_id: int, state: PostState) -> None:
        ts = _utc_now_iso()
        self._execute(
            """
            INSERT INTO posts(token_id, uri, total_issued, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(token_id) DO UPDATE SET
              uri = excluded.uri,
              total_issued = excluded.total_issued,
              updated_at = excluded.updated_at
            """.strip(),
            (_num(token_id), state.uri, _num(state.total_issued), ts, ts),
        )

    def post_count(self) -> int:
        row = self._conn.execute("SELECT COUNT(1) AS n FROM posts").fetchone()
        return int(row["n"]) if row is not None else 0

    # balances

    def balance_of(self, owner: str, token_id: int) -> int:
        row = self._conn.execute(
            "SELECT quantity FROM balances WHERE owner = ? AND token_id = ?",
            (owner, _num(token_id)),
        ).fetchone()
        return int(row["quantity"]) if row is not None else 0

    def add_balance(self, owner: str, token_id: int, quantity: int) -> None:
        # Summed in Python: the column holds decimal text, not a SQLite INTEGER.
        total = self.balance_of(owner, token_id) + int(quantity)
        self._execute(
            """
            INSERT INTO balances(owner, token_id, quantity) VALUES (?, ?, ?)
            ON CONFLICT(owner, token_id) DO UPDATE SET
              quantity = excluded.quantity
            """.strip(),
            (owner, _num(token_id), _num(total)),
        )

    def holders(self, token_id: int) -> dict[str, int]:
        rows = self._conn.execute(
            "SELECT owner, quantity FROM balances WHERE token_id = ? ORDER BY owner",
            (_num(token_id),),
        ).fetchall()
        out: dict[str, int] = {}
        for r in rows:
            qty = int(r["quantity"])
            if qty > 0:
                out[str(r["owner"])] = qty
        return out

    # roles

    def has_role(self, role: str, principal: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM roles WHERE role = ? AND principal = ?",
            (role, principal),
        ).fetchone()
        return row is not None

    def add_role(self, role: str, principal: str) -> None:
        self._execute(
            "INSERT OR IGNORE INTO roles(role, principal, granted_at) VALUES (?, ?, ?)",
            (role, principal, _utc_now_iso()),
        )

    def remove_role(self, role: str, principal: str) -> None:
        self._execute(
            "DELETE FROM roles WHERE role = ? AND principal = ?",
            (role, principal),
        )

    # audit records

    def append_event(self, record: PubEvent) -> None:
        e = record.event
        self._execute(
            """
            INSERT INTO pub_events(
              action, variant, token_id, uri, caller,
              event_id, pubkey, created_at, kind, content, tags_json, signature,
              recorded_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """.strip(),
            (
                record.action,
                record.variant,
                _num(record.token_id),
                record.uri,
                record.caller,
                e.event_id,
                e.pubkey,
                _num(e.created_at),
                _num(e.kind),
                e.content,
                e.tags_json,
                e.signature,
                _utc_now_iso(),
            ),
        )

    def events(self, *, token_id: int | None = None) -> list[PubEvent]:
        sql = """
        SELECT
          action, variant, token_id, uri, caller,
          event_id, pubkey, created_at, kind, content, tags_json, signature
        FROM pub_events
        """.strip()
        params: tuple[Any, ...] = ()
        if token_id is not None:
            sql += " WHERE token_id = ?"
            params = (_num(token_id),)
        sql += " ORDER BY id"

        rows = self._conn.execute(sql, params).fetchall()
        out: list[PubEvent] = []
        for r in rows:
            out.append(
                PubEvent(
                    action=str(r["action"]),  # type: ignore[arg-type]
                    token_id=int(r["token_id"]),
                    uri=str(r["uri"]),
                    caller=str(r["caller"]),
                    event=signed_event_from_dict(r),
                    variant=str(r["variant"]),
                )
            )
        return out
