"""SQLite schema and key/value helpers for the local state database."""

import json
import sqlite3
import time
from pathlib import Path
from typing import Any

from vault_sync.models.vault import PersistedHandle

SCHEMA_VERSION = 1

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS metadata (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS vault_handles (
    vault_id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    path TEXT NOT NULL,
    granted INTEGER NOT NULL DEFAULT 1,
    added_at INTEGER NOT NULL
);
"""


def create_schema(conn: sqlite3.Connection) -> None:
    """Create all tables."""
    conn.executescript(_SCHEMA_SQL)
    conn.execute(
        "INSERT OR REPLACE INTO metadata (key, value) VALUES (?, ?)",
        ("schema_version", str(SCHEMA_VERSION)),
    )
    conn.commit()


def get_schema_version(conn: sqlite3.Connection) -> int | None:
    """Return the current schema version, or None if metadata table doesn't exist."""
    try:
        row = conn.execute(
            "SELECT value FROM metadata WHERE key = 'schema_version'"
        ).fetchone()
    except sqlite3.OperationalError:
        return None
    return int(row[0]) if row else None


def migrate_schema(conn: sqlite3.Connection) -> None:
    """Create or migrate the database schema to the latest version."""
    version = get_schema_version(conn)
    if version is None:
        create_schema(conn)


def open_state_db(path: Path | str) -> sqlite3.Connection:
    """Open (creating if needed) the state database at ``path``."""
    conn = sqlite3.connect(str(path))
    migrate_schema(conn)
    return conn


# --- Key/value metadata ---


def get_metadata(conn: sqlite3.Connection, key: str) -> str | None:
    row = conn.execute("SELECT value FROM metadata WHERE key = ?", (key,)).fetchone()
    return row[0] if row else None


def set_metadata(conn: sqlite3.Connection, key: str, value: str) -> None:
    conn.execute("INSERT OR REPLACE INTO metadata (key, value) VALUES (?, ?)", (key, value))
    conn.commit()


def delete_metadata(conn: sqlite3.Connection, *keys: str) -> None:
    conn.executemany("DELETE FROM metadata WHERE key = ?", [(k,) for k in keys])
    conn.commit()


def get_json(conn: sqlite3.Connection, key: str) -> Any | None:
    """Read a JSON value. Malformed JSON raises instead of being ignored."""
    raw = get_metadata(conn, key)
    if raw is None:
        return None
    return json.loads(raw)


def set_json(conn: sqlite3.Connection, key: str, value: Any) -> None:
    set_metadata(conn, key, json.dumps(value, sort_keys=True))


# --- Persisted directory handles ---


def save_handle(
    conn: sqlite3.Connection, vault_id: str, name: str, path: str, *, granted: bool = True
) -> None:
    conn.execute(
        """INSERT OR REPLACE INTO vault_handles (vault_id, name, path, granted, added_at)
           VALUES (?, ?, ?, ?, ?)""",
        (vault_id, name, path, int(granted), int(time.time() * 1000)),
    )
    conn.commit()


def set_handle_granted(conn: sqlite3.Connection, vault_id: str, granted: bool) -> None:
    conn.execute(
        "UPDATE vault_handles SET granted = ? WHERE vault_id = ?", (int(granted), vault_id)
    )
    conn.commit()


def load_handles(conn: sqlite3.Connection) -> list[PersistedHandle]:
    rows = conn.execute(
        "SELECT vault_id, name, path, granted, added_at FROM vault_handles ORDER BY added_at, rowid"
    ).fetchall()
    return [
        PersistedHandle(vault_id=r[0], name=r[1], path=r[2], granted=bool(r[3]), added_at=r[4])
        for r in rows
    ]


def delete_handle(conn: sqlite3.Connection, vault_id: str) -> None:
    conn.execute("DELETE FROM vault_handles WHERE vault_id = ?", (vault_id,))
    conn.commit()
