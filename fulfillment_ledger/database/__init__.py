# database/__init__.py
from __future__ import annotations

from pathlib import Path
import sqlite3

from ..config import LOCK_TIMEOUT_SECONDS
from ..constants import SCHEMA_VERSION
from . import schema as schema_module
from .versioning import get_current_version, set_current_version


def connect(db_path: Path | str, *, timeout: float = LOCK_TIMEOUT_SECONDS) -> sqlite3.Connection:
    """
    Open a connection for one unit of work:
      - autocommit mode (isolation_level=None); callers issue BEGIN themselves
      - foreign_keys ON
      - row_factory = sqlite3.Row (rows behave like dicts and tuples)
      - `timeout` bounds how long BEGIN IMMEDIATE waits for the write lock
    """
    conn = sqlite3.connect(str(db_path), timeout=timeout, isolation_level=None, check_same_thread=True)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def ensure_schema(db_path: Path | str) -> None:
    """Apply the (idempotent) schema and record its version."""
    schema_module.init_schema(db_path)
    conn = connect(db_path)
    try:
        if get_current_version(conn) != SCHEMA_VERSION:
            set_current_version(conn, SCHEMA_VERSION)
    finally:
        conn.close()


__all__ = [
    "connect",
    "ensure_schema",
]
