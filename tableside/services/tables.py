"""
Table labels and per-table serialization.

A table is addressed as "Table <n>" (1 <= n <= total_tables) or by the
sentinel "Online" for orders placed away from a table.
"""

import asyncio
import re
from collections import defaultdict

from tableside.core.exceptions import InvalidTable
from tableside.models import ONLINE_TABLE

_TABLE_RE = re.compile(r"^(?:table\s*)?(\d{1,3})$", re.IGNORECASE)


def normalize_table(label: str, total_tables: int) -> str:
    """
    Canonicalize a table label ("table 3", "3", "Table 3" -> "Table 3").

    Raises:
        InvalidTable: If the label is not Online or a table within capacity
    """
    cleaned = (label or "").strip()
    if cleaned.lower() == ONLINE_TABLE.lower():
        return ONLINE_TABLE

    match = _TABLE_RE.match(cleaned)
    if match:
        number = int(match.group(1))
        if 1 <= number <= total_tables:
            return f"Table {number}"
    raise InvalidTable(cleaned, total_tables)


def table_labels(total_tables: int) -> list[str]:
    """Every selectable label, tables first."""
    return [f"Table {n}" for n in range(1, total_tables + 1)] + [ONLINE_TABLE]


class TableLocks:
    """
    One asyncio lock per table.

    Cart edits, kitchen updates and billing for the same table are
    fetch-then-write sequences; holding the table's lock across the sequence
    keeps two of them in this process from interleaving. Writers in other
    processes are caught by the store's conditional writes instead.
    """

    def __init__(self):
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def for_table(self, table: str) -> asyncio.Lock:
        return self._locks[table]
