"""
SQLite storage for the substance collection.

The whole collection lives in one JSON blob under a fixed key and is
always read and written as a unit: load -> modify -> save. Concurrent
writers race and the last one wins.
Schema: collections(key, payload, updated_at).
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from dosetrack.config import DB_PATH
from dosetrack.core.models import (
    SubstanceRecord,
    collection_fingerprint,
    dump_collection,
    load_collection,
)

log = logging.getLogger("dosetrack.db")

_local = threading.local()

COLLECTION_KEY = "drugs"

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS collections (
    key         TEXT    PRIMARY KEY,
    payload     TEXT    NOT NULL DEFAULT '[]',
    updated_at  TEXT
);
"""


def get_connection(db_path: Optional[Path] = None) -> sqlite3.Connection:
    """Thread-local SQLite connection (one per database file) with WAL mode."""
    path = Path(db_path or DB_PATH)
    conns = getattr(_local, "conns", None)
    if conns is None:
        conns = _local.conns = {}
    conn = conns.get(str(path))
    if conn is None:
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(path), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conns[str(path)] = conn
    return conn


def close_connections() -> None:
    """Close this thread's connections (tests, shutdown)."""
    for conn in getattr(_local, "conns", {}).values():
        conn.close()
    _local.conns = {}


@contextmanager
def db_cursor(db_path: Optional[Path] = None):
    """Yield a cursor, auto-commit on success, rollback on error."""
    conn = get_connection(db_path)
    cur = conn.cursor()
    try:
        yield cur
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def _migrate_tables(db_path: Optional[Path] = None):
    """Bring older database files up to the current schema."""
    with db_cursor(db_path) as cur:
        # --- Migration 1: collections.updated_at ---
        cur.execute("SELECT sql FROM sqlite_master WHERE type='table' AND name='collections'")
        row = cur.fetchone()
        if row and "updated_at" not in (row[0] or ""):
            log.info("Migrating collections: adding updated_at")
            cur.execute("ALTER TABLE collections ADD COLUMN updated_at TEXT")


def init_db(db_path: Optional[Path] = None):
    """Create tables if they don't exist, run migrations."""
    _migrate_tables(db_path)
    with db_cursor(db_path) as cur:
        cur.executescript(SCHEMA_SQL)
    log.info("Database initialized at %s", db_path or DB_PATH)


# --- Raw blob access ---

def read_payload(key: str = COLLECTION_KEY, db_path: Optional[Path] = None) -> Optional[Any]:
    with db_cursor(db_path) as cur:
        cur.execute("SELECT payload FROM collections WHERE key=?", (key,))
        row = cur.fetchone()
    if row is None:
        return None
    return json.loads(row["payload"])


def write_payload(payload: Any, key: str = COLLECTION_KEY, db_path: Optional[Path] = None) -> None:
    now = datetime.now(timezone.utc).isoformat()
    with db_cursor(db_path) as cur:
        cur.execute(
            """INSERT INTO collections (key, payload, updated_at) VALUES (?,?,?)
               ON CONFLICT(key) DO UPDATE SET
                   payload=excluded.payload, updated_at=excluded.updated_at""",
            (key, json.dumps(payload), now),
        )


class SubstanceRepository:
    """Whole-collection load/save of SubstanceRecords."""

    def __init__(self, db_path: Optional[Path] = None, key: str = COLLECTION_KEY):
        self.db_path = Path(db_path or DB_PATH)
        self.key = key
        init_db(self.db_path)

    def load(self) -> list[SubstanceRecord]:
        """
        Read and validate the collection. Legacy shapes are upgraded and
        written back once, unless some record could not be read (the
        stored blob is then left untouched so nothing is lost).
        """
        raw = read_payload(self.key, self.db_path)
        records, rejected = load_collection(raw)
        if raw is not None and not rejected:
            upgraded = dump_collection(records)
            if collection_fingerprint(upgraded) != collection_fingerprint(raw):
                log.info("Upgrading %d stored substance records to current format", len(records))
                write_payload(upgraded, self.key, self.db_path)
        elif rejected:
            log.warning("%d stored substance records could not be read", rejected)
        return records

    def save(self, records: list[SubstanceRecord]) -> None:
        write_payload(dump_collection(records), self.key, self.db_path)

