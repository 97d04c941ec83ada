"""SQLite access for TeamHub.

Every store opens its own connection through ``get_conn()``; a ``with`` block
is one unit of work (committed on exit, rolled back if it raises). The schema
is applied on first use, so tests and the server need no separate setup step.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

log = logging.getLogger("teamhub.db")

SCHEMA_PATH = Path(__file__).with_name("schema.sql")
# Stored in PRAGMA user_version; bump when schema.sql changes shape
SCHEMA_VERSION = 2

_db_path: Optional[Path] = None
_ready = False


def default_db_path() -> Path:
    data_dir = os.environ.get("TEAMHUB_DATA_DIR")
    base = Path(data_dir) if data_dir else Path(__file__).resolve().parents[2] / "data"
    return base / "teamhub.db"


def get_db_path() -> Path:
    global _db_path
    if _db_path is None:
        _db_path = default_db_path()
    return _db_path


def set_db_path(path: Path) -> None:
    """Point the engine at another database file; the schema is re-applied lazily."""
    global _db_path, _ready
    _db_path = Path(path)
    _ready = False


def new_id() -> str:
    return uuid.uuid4().hex


def to_iso(dt: datetime) -> str:
    # Fixed width so stored timestamps compare correctly as strings.
    return dt.isoformat(timespec="microseconds")


def now_iso() -> str:
    return to_iso(datetime.now())


def _open(path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(str(path), timeout=30)
    conn.row_factory = sqlite3.Row
    for pragma in ("journal_mode = WAL", "foreign_keys = ON", "busy_timeout = 5000"):
        conn.execute(f"PRAGMA {pragma}")
    return conn


def schema_version(conn: sqlite3.Connection) -> int:
    return conn.execute("PRAGMA user_version").fetchone()[0]


def init_db(path: Optional[Path] = None) -> None:
    """Create missing tables and stamp the schema version. Safe to repeat."""
    global _ready
    if path is not None:
        set_db_path(path)
    db_path = get_db_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = _open(db_path)
    try:
        conn.executescript(SCHEMA_PATH.read_text(encoding="utf-8"))
        found = schema_version(conn)
        if found != SCHEMA_VERSION:
            log.info("Schema version %s -> %s at %s", found, SCHEMA_VERSION, db_path)
            conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
        conn.commit()
    finally:
        conn.close()
    _ready = True


@contextmanager
def get_conn() -> Iterator[sqlite3.Connection]:
    if not _ready:
        init_db()
    conn = _open(get_db_path())
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
