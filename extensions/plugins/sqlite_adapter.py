#!/usr/bin/env python3
"""
tablesync SQLite Adapter

SQLite dialect for the generic text-store family: backtick quoting, ``?``
markers, ``sqlite_master`` catalog lookups and ``pragma_table_info`` column
metadata.
"""

import logging
import sqlite3
from typing import Any, Optional, Sequence, Tuple

from core.dialects import Dialect, PlaceholderStyle
from core.errors import DatabaseConnectionError

logger = logging.getLogger(__name__)


def sqlite_path(dsn: str) -> str:
    """Resolve 'sqlite:///path', 'sqlite://path' or a bare path to a filename"""
    dsn = (dsn or "").strip()
    for prefix in ('sqlite:///', 'sqlite3:///', 'sqlite://', 'sqlite3://'):
        if dsn.startswith(prefix):
            return dsn[len(prefix):] or ':memory:'
    return dsn or ':memory:'


class SQLiteDialect(Dialect):
    """SQLite: generic family with a real catalog"""

    name = "sqlite3"
    PLACEHOLDER_STYLE = PlaceholderStyle.QMARK

    def exists_query(self, table: str) -> Tuple[str, Sequence[Any]]:
        return ("SELECT 1 FROM sqlite_master WHERE type='table' AND name = ?", (table,))

    def list_tables_query(self, schema: str = "") -> Tuple[str, Sequence[Any]]:
        return ("SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%' ORDER BY name", ())

    def columns_query(self, table: str) -> Optional[Tuple[str, Sequence[Any]]]:
        return ('SELECT name, type, "notnull" FROM pragma_table_info(?) ORDER BY cid', (table,))

    def normalize_column_row(self, row: Sequence[Any]) -> Tuple[str, str, Optional[bool]]:
        name, data_type, notnull = row[0], row[1], row[2]
        return (name, (data_type or "").upper(), not bool(notnull))

    def connect(self, dsn: str, timeout: int = 5):
        path = sqlite_path(dsn)
        try:
            connection = sqlite3.connect(path, timeout=timeout)
        except sqlite3.Error as e:
            raise DatabaseConnectionError(f"Failed to open SQLite database {path}: {e}") from e
        logger.debug(f"Connected to SQLite database: {path}")
        return connection
