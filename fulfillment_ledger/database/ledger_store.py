from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
import sqlite3
from typing import Iterator, Optional

from ..config import DB_PATH, LOCK_TIMEOUT_SECONDS
from ..errors import Busy
from . import connect, ensure_schema
from .repositories import (
    DocumentCountersRepo,
    DocumentsRepo,
    FulfillmentsRepo,
    InvoicePaymentsRepo,
)


def _is_locked(exc: sqlite3.OperationalError) -> bool:
    msg = str(exc).lower()
    return "database is locked" in msg or "database is busy" in msg


class LedgerSession:
    """The repositories of one unit of work, all bound to the same connection."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.documents = DocumentsRepo(conn)
        self.fulfillments = FulfillmentsRepo(conn)
        self.payments = InvoicePaymentsRepo(conn)
        self.counters = DocumentCountersRepo(conn)


class LedgerStore:
    """
    Owns the database file. Every unit of work gets its own connection:

      with store.transaction("sales_order:7") as s:   # BEGIN IMMEDIATE ... COMMIT
          ...

    The write lock is taken up front, so reads done inside the block cannot be
    invalidated by another writer before COMMIT. Waiting for the lock is bounded
    by `lock_timeout`; running out of it raises Busy.
    """

    def __init__(self, db_path: Optional[Path | str] = None, *, lock_timeout: float = LOCK_TIMEOUT_SECONDS):
        self.db_path = Path(db_path) if db_path is not None else DB_PATH
        self.lock_timeout = lock_timeout
        ensure_schema(self.db_path)

    def connect(self) -> sqlite3.Connection:
        return connect(self.db_path, timeout=self.lock_timeout)

    # ---------------------------- TX helpers ----------------------------

    @contextmanager
    def transaction(self, resource: str = "ledger") -> Iterator[LedgerSession]:
        """
        IMMEDIATE transaction: commit on success, rollback on any error
        (including KeyboardInterrupt / generator close).
        """
        conn = self.connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield LedgerSession(conn)
                conn.execute("COMMIT")
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
        except sqlite3.OperationalError as e:
            if _is_locked(e):
                raise Busy(resource) from e
            raise
        finally:
            conn.close()

    @contextmanager
    def snapshot(self) -> Iterator[LedgerSession]:
        """Read-only view; every read inside the block sees the same committed state."""
        conn = self.connect()
        try:
            conn.execute("BEGIN")
            try:
                yield LedgerSession(conn)
            finally:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
        finally:
            conn.close()
