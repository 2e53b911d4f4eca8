"""Helpers for preparing and inspecting SQLite test databases"""

import sqlite3
from typing import Iterable, Sequence


def create_table(path: str, ddl: str, rows: Iterable[Sequence] = (), insert_sql: str = None):
    """Create a table in the SQLite file at ``path`` and fill it"""
    with sqlite3.connect(path) as conn:
        conn.execute(ddl)
        if insert_sql:
            conn.executemany(insert_sql, list(rows))
        conn.commit()
    conn.close()


def read_rows(path: str, sql: str):
    conn = sqlite3.connect(path)
    try:
        return conn.execute(sql).fetchall()
    finally:
        conn.close()


def table_names(path: str):
    return [row[0] for row in read_rows(path, "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name")]
