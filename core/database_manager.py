#!/usr/bin/env python3
"""
tablesync Database Manager - Connection Provider

Opens DB-API connections for the supported database families, picks the
matching dialect once per connection and wraps both in a
``DatabaseConnection`` that the copier talks to.

Supported backends:
- SQLite (built-in)
- PostgreSQL (psycopg2)
- MySQL / MariaDB (PyMySQL)
- SQL Server (pymssql)
- Oracle (oracledb)

Usage:
    manager = DatabaseManager()
    with manager.connect("postgres", "postgresql://etl@localhost/warehouse") as conn:
        print(conn.list_tables())
"""

import logging
import time
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type

from core.dialects import Dialect, GenericDialect, TableProbe
from core.errors import DatabaseConnectionError, mask_credentials
from core.schema_ir import SourceColumn
from extensions.plugins.mssql_adapter import SQLServerDialect
from extensions.plugins.mysql_adapter import MySQLDialect
from extensions.plugins.oracle_adapter import OracleDialect
from extensions.plugins.postgresql_adapter import PostgreSQLDialect
from extensions.plugins.sqlite_adapter import SQLiteDialect

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 5


class BackendType(Enum):
    """Canonical driver tags"""
    SQLITE = "sqlite3"
    MYSQL = "mysql"
    POSTGRES = "postgres"
    SQLSERVER = "sqlserver"
    ORACLE = "oracle"


DRIVER_ALIASES = {
    'mssql': BackendType.SQLSERVER.value,
    'postgresql': BackendType.POSTGRES.value,
    'sqlite': BackendType.SQLITE.value,
    'mariadb': BackendType.MYSQL.value,
}

DIALECTS: Dict[str, Type[Dialect]] = {
    BackendType.SQLITE.value: SQLiteDialect,
    BackendType.MYSQL.value: MySQLDialect,
    BackendType.POSTGRES.value: PostgreSQLDialect,
    BackendType.SQLSERVER.value: SQLServerDialect,
    BackendType.ORACLE.value: OracleDialect,
}

_dialect_cache: Dict[str, Dialect] = {}


def normalize_driver(driver: str) -> str:
    """Lower-case and trim a driver tag, collapsing known aliases"""
    tag = (driver or "").strip().lower()
    return DRIVER_ALIASES.get(tag, tag)


def get_dialect(driver: str) -> Dialect:
    """Return the shared dialect for ``driver`` (generic for unknown tags)"""
    tag = normalize_driver(driver)
    if tag not in _dialect_cache:
        dialect_class = DIALECTS.get(tag)
        if dialect_class is None:
            dialect = GenericDialect()
            dialect.name = tag or GenericDialect.name
        else:
            dialect = dialect_class()
        _dialect_cache[tag] = dialect
    return _dialect_cache[tag]


class DatabaseConnection:
    """A DB-API connection bound to its dialect"""

    def __init__(self, driver: str, connection: Any, dialect: Optional[Dialect] = None):
        self.driver = normalize_driver(driver)
        self.connection = connection
        self.dialect = dialect or get_dialect(self.driver)

    def __repr__(self):
        return f"DatabaseConnection(driver={self.driver!r})"

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    # ===== Statement execution =====

    def cursor(self):
        return self.connection.cursor()

    def stream_cursor(self, batch_size: int):
        return self.dialect.open_stream_cursor(self.connection, batch_size)

    @staticmethod
    def run(cursor, sql: str, params: Optional[Sequence[Any]] = None):
        """Execute on ``cursor``, omitting empty parameter lists (format-style drivers treat '%' specially)"""
        if params:
            cursor.execute(sql, params)
        else:
            cursor.execute(sql)
        return cursor

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> None:
        cursor = self.cursor()
        try:
            self.run(cursor, sql, params)
        finally:
            cursor.close()

    def query_scalar(self, sql: str, params: Optional[Sequence[Any]] = None) -> Any:
        cursor = self.cursor()
        try:
            row = self.run(cursor, sql, params).fetchone()
        finally:
            cursor.close()
        return row[0] if row else None

    def fetch_all(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Tuple]:
        cursor = self.cursor()
        try:
            return list(self.run(cursor, sql, params).fetchall())
        finally:
            cursor.close()

    def commit(self):
        self.connection.commit()

    def rollback(self):
        self.connection.rollback()

    def end_read(self):
        """Finish the current read transaction so snapshots and locks are released"""
        try:
            self.connection.rollback()
        except Exception as e:
            logger.debug(f"Ending read transaction on {self.driver} raised: {e}")

    def ping(self):
        self.query_scalar(self.dialect.PING_SQL)
        self.end_read()

    def close(self):
        if self.connection is not None:
            try:
                self.connection.close()
            finally:
                self.connection = None

    # ===== Catalog =====

    def probe_table(self, table: str) -> TableProbe:
        return self.dialect.probe_table(self.connection, table)

    def list_tables(self, schema: str = "") -> List[str]:
        """Base tables in ``schema`` (or the connection's default schema), ordered by name"""
        sql, params = self.dialect.list_tables_query(schema)
        try:
            return [str(row[0]) for row in self.fetch_all(sql, params)]
        finally:
            self.end_read()

    def describe_table(self, table: str) -> Dict[str, Tuple[str, Optional[bool]]]:
        """Catalog column metadata keyed by lower-cased column name.

        A failed lookup is logged and yields an empty mapping; callers then
        rely on the result-set metadata alone.
        """
        query = self.dialect.columns_query(table)
        if query is None:
            return {}
        sql, params = query
        try:
            rows = self.fetch_all(sql, params)
        except Exception as e:
            logger.warning(f"Could not read column metadata for {table}: {e}")
            self.end_read()
            return {}
        columns = {}
        for row in rows:
            name, native_type, nullable = self.dialect.normalize_column_row(row)
            columns[str(name).lower()] = (native_type, nullable)
        return columns

    def describe_result(self, description: Sequence[Sequence[Any]],
                        catalog: Optional[Dict[str, Tuple[str, Optional[bool]]]] = None) -> List[SourceColumn]:
        """Merge ``cursor.description`` with catalog metadata into ordered source columns"""
        catalog = catalog or {}
        columns = []
        for entry in description or ():
            name = entry[0]
            native_type, nullable = catalog.get(str(name).lower(), (None, None))
            if native_type is None:
                native_type = self.dialect.type_name_from_code(entry[1])
            if nullable is None and len(entry) > 6 and entry[6] is not None:
                nullable = bool(entry[6])
            columns.append(SourceColumn(name=name, native_type=native_type, nullable=nullable))
        return columns


class DatabaseManager:
    """Opens health-checked connections"""

    def __init__(self, timeout: int = DEFAULT_CONNECT_TIMEOUT):
        self.timeout = timeout

    def connect(self, driver: str, dsn: str) -> DatabaseConnection:
        """Open a connection and verify it with the dialect's liveness probe.

        Args:
            driver: Driver tag (``mysql``, ``postgres``, ``sqlite3``, ``sqlserver``, ``oracle``
                or an alias)
            dsn: Driver-specific connection string

        Returns:
            DatabaseConnection bound to the driver's dialect

        Raises:
            DatabaseConnectionError: unsupported driver, missing driver package,
                unreachable database or failed health check
        """
        tag = normalize_driver(driver)
        if not tag:
            raise DatabaseConnectionError("No database driver given")
        if tag not in DIALECTS:
            raise DatabaseConnectionError(f"Unsupported database driver: {driver}")

        dialect = get_dialect(tag)
        started = time.perf_counter()
        try:
            raw = dialect.connect(dsn, timeout=self.timeout)
        except DatabaseConnectionError:
            raise
        except Exception as e:
            raise DatabaseConnectionError(f"Failed to connect to {tag}: {e}") from e
        connection = DatabaseConnection(tag, raw, dialect)
        try:
            connection.ping()
        except Exception as e:
            connection.close()
            raise DatabaseConnectionError(f"Health check failed for {tag}: {mask_credentials(str(e))}") from e

        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(f"Connected to {tag} ({elapsed_ms:.0f} ms)")
        return connection
