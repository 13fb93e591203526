"""SQLite snapshot storage with WAL mode and atomic replacement."""

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from promptgrid.models.prompt import Prompt

logger = logging.getLogger(__name__)

# SQL schema for promptgrid database
SCHEMA = """
-- One row per prompt, holding the whole prompt as camelCase JSON
CREATE TABLE IF NOT EXISTS snapshots (
    prompt_id TEXT PRIMARY KEY,
    position INTEGER NOT NULL,   -- Order of the prompt in the list
    data TEXT NOT NULL,          -- JSON
    updated_at TEXT NOT NULL
);

-- Single-row bookkeeping for the sync bridge
CREATE TABLE IF NOT EXISTS sync_state (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    last_synced_at TEXT,
    last_error TEXT,
    prompt_count INTEGER DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_snapshots_position ON snapshots(position);
"""


def get_connection(db_path: Path) -> sqlite3.Connection:
    """
    Get a database connection with proper settings for concurrent access.

    - isolation_level=None for explicit transaction control
    - WAL mode so a reader never blocks the writer
    - busy_timeout to wait for locks instead of failing immediately
    - Row factory for dict-like access
    """
    conn = sqlite3.connect(str(db_path), timeout=5.0, isolation_level=None)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=5000")
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: Path) -> None:
    """Initialize the database with the schema."""
    conn = get_connection(db_path)
    try:
        conn.executescript(SCHEMA)
    finally:
        conn.close()


def utcnow() -> str:
    """Get current UTC time as ISO format string."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


# --- Snapshot Operations ---

def save_snapshot(conn: sqlite3.Connection, prompts: list[Prompt]) -> str:
    """
    Replace the stored prompt list with ``prompts`` in one transaction.

    Prompts missing from the list are deleted. Returns the sync timestamp.
    """
    now = utcnow()
    try:
        conn.execute("BEGIN IMMEDIATE")
        keep = [p.id for p in prompts]
        if keep:
            placeholders = ",".join("?" for _ in keep)
            conn.execute(
                f"DELETE FROM snapshots WHERE prompt_id NOT IN ({placeholders})",  # noqa: S608
                keep,
            )
        else:
            conn.execute("DELETE FROM snapshots")

        conn.executemany(
            """
            INSERT INTO snapshots (prompt_id, position, data, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(prompt_id) DO UPDATE SET
                position = excluded.position,
                data = excluded.data,
                updated_at = excluded.updated_at
            """,
            [
                (p.id, index, p.model_dump_json(by_alias=True), now)
                for index, p in enumerate(prompts)
            ],
        )
        conn.execute(
            """
            INSERT INTO sync_state (id, last_synced_at, last_error, prompt_count)
            VALUES (1, ?, NULL, ?)
            ON CONFLICT(id) DO UPDATE SET
                last_synced_at = excluded.last_synced_at,
                last_error = NULL,
                prompt_count = excluded.prompt_count
            """,
            (now, len(prompts)),
        )
        conn.execute("COMMIT")
    except Exception:
        conn.execute("ROLLBACK")
        raise
    return now


def load_snapshot(conn: sqlite3.Connection) -> Optional[list[Prompt]]:
    """
    Load the stored prompt list in its saved order.

    Returns None if nothing was ever saved. Rows that no longer parse are
    skipped.
    """
    if get_sync_state(conn) is None:
        return None

    prompts = []
    rows = conn.execute(
        "SELECT prompt_id, data FROM snapshots ORDER BY position, prompt_id"
    ).fetchall()
    for row in rows:
        try:
            prompts.append(Prompt.model_validate_json(row["data"]))
        except ValidationError:
            logger.warning("Skipping unreadable snapshot for prompt %s", row["prompt_id"])
    return prompts


def get_sync_state(conn: sqlite3.Connection) -> Optional[dict]:
    """Get the sync bookkeeping row, or None if no sync ever ran."""
    row = conn.execute("SELECT * FROM sync_state WHERE id = 1").fetchone()
    if row is None or row["last_synced_at"] is None:
        return None
    return dict(row)
