from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, List, Optional

from patron_portal.schema import SCHEMA_SQLITE
from patron_portal.util.time import utcnow_iso


def _debug(msg: str) -> None:
    print(f"[db] {msg}")


def _sqlite_path(db_dsn: str) -> str:
    dsn = (db_dsn or "").strip()
    # Support sqlite:///path style
    if dsn.lower().startswith("sqlite:///"):
        dsn = dsn[len("sqlite:///") :]
    if not dsn:
        raise ValueError("db_dsn_blank")
    return dsn


@contextmanager
def connect(db_dsn: str) -> Iterator[sqlite3.Connection]:
    """Open a SQLite connection with sensible defaults.

    Commits when the block exits cleanly, rolls back on any exception.
    Rows are sqlite3.Row so handlers can index by column name or call dict(row).
    """
    path = _sqlite_path(db_dsn)
    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(path, timeout=30, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    # Concurrency / performance pragmas (safe defaults for API + sync script)
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA busy_timeout=5000;")  # 5s
    try:
        conn.execute("PRAGMA foreign_keys = ON;")
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


@contextmanager
def savepoint(conn: sqlite3.Connection, name: str) -> Iterator[None]:
    """Run a block inside a SAVEPOINT; roll back only that block on error."""
    conn.execute(f"SAVEPOINT {name}")
    try:
        yield
    except Exception:
        conn.execute(f"ROLLBACK TO SAVEPOINT {name}")
        conn.execute(f"RELEASE SAVEPOINT {name}")
        raise
    conn.execute(f"RELEASE SAVEPOINT {name}")


def init_db(db_dsn: str) -> None:
    """Create all tables and run lightweight migrations."""
    _debug(f"Initializing DB (sqlite) at {db_dsn}")
    with connect(db_dsn) as conn:
        # Legacy databases need the rename before the schema indexes run.
        if _table_columns(conn, "users"):
            _migrate(conn)
        conn.executescript(SCHEMA_SQLITE)
        _migrate(conn)


def _table_columns(conn: Any, table: str) -> List[str]:
    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return [str(r["name"]) for r in rows]


def _has_column(conn: Any, table: str, col: str) -> bool:
    return col in _table_columns(conn, table)


# Columns added after the first release of the users table, with their DDL.
_USER_COLUMNS: List[tuple[str, str]] = [
    ("whatsapp_number", "TEXT"),
    ("patreon_id", "TEXT"),
    ("is_admin", "INTEGER NOT NULL DEFAULT 0"),
    ("is_active", "INTEGER NOT NULL DEFAULT 1"),
    ("patreon_subscription_status", "TEXT DEFAULT 'unknown'"),
    ("last_patreon_sync", "TEXT"),
    ("subscription_alert_sent", "INTEGER NOT NULL DEFAULT 0"),
    ("password_reset_token", "TEXT"),
    ("password_reset_expires", "TEXT"),
    ("last_login_at", "TEXT"),
]


def _migrate(conn: Any) -> None:
    """Lightweight forward-only migrations for existing DBs."""
    cols = _table_columns(conn, "users")
    if not cols:
        return

    # Early databases stored the hash in a column called `password`.
    if "password_hash" not in cols and "password" in cols:
        conn.execute("ALTER TABLE users RENAME COLUMN password TO password_hash")
        _debug("users.password renamed to password_hash")

    for col, ddl in _USER_COLUMNS:
        if not _has_column(conn, "users", col):
            conn.execute(f"ALTER TABLE users ADD COLUMN {col} {ddl}")
            _debug(f"users.{col} added")

    # mixcloud_id (free text) was replaced by the is_mixcloud flag.
    if not _has_column(conn, "users", "is_mixcloud"):
        conn.execute("ALTER TABLE users ADD COLUMN is_mixcloud INTEGER NOT NULL DEFAULT 0")
        _debug("users.is_mixcloud added")
        if _has_column(conn, "users", "mixcloud_id"):
            cur = conn.execute(
                "UPDATE users SET is_mixcloud=1 WHERE mixcloud_id IS NOT NULL AND mixcloud_id != ''"
            )
            _debug(f"Migrated mixcloud_id to is_mixcloud ({cur.rowcount} rows)")

    for col in ("created_at", "updated_at"):
        if not _has_column(conn, "users", col):
            conn.execute(f"ALTER TABLE users ADD COLUMN {col} TEXT")
            conn.execute(f"UPDATE users SET {col}=? WHERE {col} IS NULL", (utcnow_iso(),))
            _debug(f"users.{col} added")


def upsert_app_config(conn: Any, key: str, value: str) -> None:
    """Upsert a simple key/value config entry."""
    conn.execute(
        """
        INSERT INTO app_config (key, value) VALUES (?, ?)
        ON CONFLICT(key) DO UPDATE SET value=excluded.value
        """,
        (key, value),
    )


def get_app_config(conn: Any, key: str) -> Optional[str]:
    row = conn.execute("SELECT value FROM app_config WHERE key=?", (key,)).fetchone()
    if row is None:
        return None
    return str(row["value"])
