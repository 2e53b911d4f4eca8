#!/usr/bin/env python3
"""
tablesync Dialect Strategies
============================

Every SQL-emitting decision that differs between database families lives on a
``Dialect`` object: identifier quoting, parameter placeholders, catalog
queries, count wrappers and the native-type translation table.  A dialect is
chosen once per connection (see ``core.database_manager.get_dialect``) and is
read-only afterwards.

Concrete families live in ``extensions/plugins``; this module holds the base
class and the generic-text-store family used for unknown drivers.
"""

import logging
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple

from core.errors import DatabaseConnectionError
from core.type_registry import TypeFamily, TypeInfo

logger = logging.getLogger(__name__)


class PlaceholderStyle(Enum):
    """Positional parameter markers, named after DB-API paramstyles"""
    QMARK = "qmark"        # ?
    NUMERIC = "numeric"    # :1, :2, ...
    DOLLAR = "dollar"      # $1, $2, ...
    FORMAT = "format"      # %s


class TableProbe(Enum):
    """Outcome of a target-table existence check"""
    EXISTS = "exists"
    ABSENT = "absent"
    UNKNOWN = "unknown"


def placeholder(style: PlaceholderStyle, index: int) -> str:
    """Return the 1-based positional placeholder token for ``style``"""
    if style is PlaceholderStyle.NUMERIC:
        return f":{index}"
    if style is PlaceholderStyle.DOLLAR:
        return f"${index}"
    if style is PlaceholderStyle.FORMAT:
        return "%s"
    return "?"


class Dialect:
    """Base dialect: generic text store (backtick quoting, ``?`` markers).

    Subclasses override class attributes for the simple differences and
    methods for the catalog queries.
    """

    name = "generic"
    QUOTE_OPEN = "`"
    QUOTE_CLOSE = "`"
    UPPERCASE_IDENTIFIERS = False
    PLACEHOLDER_STYLE = PlaceholderStyle.QMARK
    PING_SQL = "SELECT 1"
    ROW_SIZE_LIMIT: Optional[int] = None
    DEFAULT_BEFORE_NULL = False

    TYPE_MAP: Dict[TypeFamily, str] = {
        TypeFamily.BOOLEAN: 'INTEGER',
        TypeFamily.INTEGER: 'INTEGER',
        TypeFamily.FLOAT: 'REAL',
        TypeFamily.DECIMAL: 'NUMERIC',
        TypeFamily.BINARY: 'BLOB',
        TypeFamily.TEMPORAL: 'TIMESTAMP',
        TypeFamily.TEXT: 'TEXT',
        TypeFamily.UNKNOWN: 'TEXT',
    }
    DECIMAL_TYPE = 'NUMERIC'
    MAX_DECIMAL_PRECISION = 1000

    def __repr__(self):
        return f"{self.__class__.__name__}()"

    # ===== Identifiers and placeholders =====

    def quote_identifier(self, name: str) -> str:
        """Quote a single identifier; already-quoted input is returned as is"""
        name = (name or "").strip()
        if not name:
            return ""
        if self._is_quoted(name):
            return name
        if self.UPPERCASE_IDENTIFIERS:
            name = name.upper()
        escaped = name.replace(self.QUOTE_CLOSE, self.QUOTE_CLOSE * 2)
        return f"{self.QUOTE_OPEN}{escaped}{self.QUOTE_CLOSE}"

    def quote_table(self, name: str) -> str:
        """Quote a possibly schema-qualified table name part by part"""
        name = (name or "").strip()
        if not name or self._is_quoted(name):
            return name
        return ".".join(self.quote_identifier(part) for part in name.split("."))

    def _is_quoted(self, name: str) -> bool:
        return len(name) >= 2 and name.startswith(self.QUOTE_OPEN) and name.endswith(self.QUOTE_CLOSE)

    def placeholder(self, index: int) -> str:
        return placeholder(self.PLACEHOLDER_STYLE, index)

    def placeholders(self, count: int) -> str:
        return ", ".join(self.placeholder(i) for i in range(1, count + 1))

    # ===== Types =====

    def render_type(self, info: TypeInfo) -> str:
        """Render a classified type with this dialect's translation table"""
        if info.family is TypeFamily.DECIMAL and info.precision:
            precision = min(info.precision, self.MAX_DECIMAL_PRECISION)
            scale = min(max(info.scale or 0, 0), precision)
            return f"{self.DECIMAL_TYPE}({precision},{scale})"
        return self.TYPE_MAP.get(info.family, self.TYPE_MAP[TypeFamily.UNKNOWN])

    def type_name_from_code(self, type_code: Any) -> str:
        """Native type name for a ``cursor.description`` type code ("" if unknown)"""
        if isinstance(type_code, str):
            return type_code.upper()
        return ""

    # ===== Statements =====

    def count_subquery_sql(self, select_sql: str) -> str:
        return f"SELECT COUNT(*) FROM ({select_sql}) AS _t"

    def count_table_sql(self, table: str) -> str:
        return f"SELECT COUNT(*) FROM {self.quote_table(table)}"

    def exists_query(self, table: str) -> Tuple[str, Sequence[Any]]:
        """Catalog query returning a row when ``table`` exists"""
        return (f"SELECT 1 FROM {self.quote_table(table)} LIMIT 1", ())

    def list_tables_query(self, schema: str = "") -> Tuple[str, Sequence[Any]]:
        raise NotImplementedError(f"Listing tables is not supported for driver {self.name}")

    def columns_query(self, table: str) -> Optional[Tuple[str, Sequence[Any]]]:
        """Catalog query returning (name, type, nullable, length, precision, scale) rows"""
        return None

    def compose_type(self, data_type: str, length: Any = None,
                     precision: Any = None, scale: Any = None) -> str:
        """Build a native type string such as VARCHAR(255) from catalog fields"""
        data_type = (data_type or "").strip().upper()
        if '(' in data_type:
            return data_type
        if length not in (None, -1) and any(m in data_type for m in ('CHAR', 'BINARY')):
            return f"{data_type}({int(length)})"
        if precision is not None and any(m in data_type for m in ('DECIMAL', 'NUMERIC', 'NUMBER')):
            return f"{data_type}({int(precision)},{int(scale or 0)})"
        return data_type

    def normalize_column_row(self, row: Sequence[Any]) -> Tuple[str, str, Optional[bool]]:
        """Turn one catalog row into (name, native type, nullable)"""
        length, precision, scale = (list(row[3:6]) + [None, None, None])[:3]
        return (row[0], self.compose_type(row[1], length, precision, scale), self.parse_nullable(row[2]))

    @staticmethod
    def parse_nullable(value: Any) -> Optional[bool]:
        if value is None:
            return None
        if isinstance(value, str):
            return value.strip().upper() in ('YES', 'Y', 'TRUE', '1')
        return bool(value)

    @staticmethod
    def split_schema(table: str) -> Tuple[str, str]:
        """'sales.orders' -> ('sales', 'orders'); 'orders' -> ('', 'orders')"""
        if '.' in table:
            schema, _, name = table.rpartition('.')
            return (schema, name)
        return ("", table)

    # ===== Probes =====

    def probe_table(self, connection, table: str) -> TableProbe:
        """Check whether ``table`` exists on ``connection`` (a raw DB-API connection).

        Errors never propagate: they are logged and reported as UNKNOWN so
        that callers treat the table as missing.
        """
        sql, params = self.exists_query(table)
        cursor = connection.cursor()
        try:
            if params:
                cursor.execute(sql, params)
            else:
                cursor.execute(sql)
            row = cursor.fetchone()
        except Exception as e:
            logger.warning(f"Existence check for {table} failed: {e}")
            self._reset(connection)
            return TableProbe.UNKNOWN
        finally:
            cursor.close()
        return TableProbe.EXISTS if row is not None else TableProbe.ABSENT

    @staticmethod
    def _reset(connection):
        try:
            connection.rollback()
        except Exception as e:
            logger.debug(f"Rollback after failed probe raised: {e}")

    # ===== Connections =====

    def open_stream_cursor(self, connection, batch_size: int):
        """Cursor used for extraction; plain client cursor by default"""
        cursor = connection.cursor()
        cursor.arraysize = batch_size
        return cursor

    def connect(self, dsn: str, timeout: int = 5):
        raise DatabaseConnectionError(f"Unsupported database driver: {self.name}")


class GenericDialect(Dialect):
    """Dialect for drivers with no dedicated family"""

    def probe_table(self, connection, table: str) -> TableProbe:
        # Any successful row probe means the table exists, even when empty
        sql, _ = self.exists_query(table)
        cursor = connection.cursor()
        try:
            cursor.execute(sql)
            cursor.fetchall()
        except Exception as e:
            logger.debug(f"Row probe for {table} failed: {e}")
            self._reset(connection)
            return TableProbe.ABSENT
        finally:
            cursor.close()
        return TableProbe.EXISTS

