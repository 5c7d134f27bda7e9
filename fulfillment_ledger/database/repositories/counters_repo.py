from __future__ import annotations

import sqlite3

from ...constants import DOC_NUMBER_WIDTH


def format_number(prefix: str, value: int) -> str:
    """'INV', 3000 -> 'INV-3000'. Width grows past DOC_NUMBER_WIDTH instead of wrapping."""
    return f"{prefix}-{value:0{DOC_NUMBER_WIDTH}d}"


class DocumentCountersRepo:
    """
    Per-kind sequential document numbers.

    allocate() must run inside the same write transaction as the insert that
    uses the number: a rollback then returns the number too, so issued numbers
    stay gapless.
    """

    def __init__(self, conn: sqlite3.Connection):
        conn.row_factory = sqlite3.Row
        self.conn = conn

    def allocate(self, kind: str) -> str:
        cur = self.conn.execute(
            "UPDATE document_counters SET next_value = next_value + 1 WHERE kind = ?", (kind,)
        )
        if cur.rowcount == 0:
            raise KeyError(f"No document counter for kind {kind!r}")
        row = self.conn.execute(
            "SELECT prefix, next_value FROM document_counters WHERE kind = ?", (kind,)
        ).fetchone()
        # next_value was bumped above; the number being issued is the previous one
        return format_number(row["prefix"], int(row["next_value"]) - 1)

