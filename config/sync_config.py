#!/usr/bin/env python3
"""
Sync Configuration for tablesync
Loads the JSON job file, resolves connections and expands table lists.

Two layouts are accepted:

Legacy::

    {"source": {"driver": "mysql", "dsn": "..."},
     "target": {"driver": "postgres", "dsn": "..."},
     "tables": [{"source_table": "orders", "auto_create": true}]}

Named sources::

    {"sources": {"erp": {...}, "dw": {...}},
     "sync": {"source": "erp", "target": "dw"},
     "table_list": {"from_source": true, "schema": "", "include": ["^ord"],
                    "exclude": ["_bak$"], "defaults": {...}, "list": [...]}}

DSNs may reference environment variables as ``${NAME}`` so secrets stay out
of the file.  ``TABLESYNC_LOG_LEVEL`` overrides the configured log level.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.database_manager import normalize_driver
from core.errors import ConfigError
from core.schema_ir import DEFAULT_BATCH_SIZE, ColumnMapping, TableJob
from core.table_filter import compile_table_filters, matches_table_filters
from core.type_registry import RowSizePolicy

logger = logging.getLogger(__name__)

LOG_LEVEL_ENV = 'TABLESYNC_LOG_LEVEL'


def _require_dict(value: Any, what: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{what} must be a JSON object")
    return value


def _require_list(value: Any, what: str) -> List[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"{what} must be a JSON array")
    return value


@dataclass
class DatabaseConfig:
    """Driver tag and DSN for one database"""
    driver: str = ""
    dsn: str = ""

    @classmethod
    def from_dict(cls, data: Any, what: str) -> 'DatabaseConfig':
        data = _require_dict(data, what)
        return cls(driver=normalize_driver(str(data.get('driver') or '')),
                   dsn=os.path.expandvars(str(data.get('dsn') or '').strip()))

    def validate(self, what: str):
        if not self.driver or not self.dsn:
            raise ConfigError(f"{what}: driver and dsn must not be empty")


@dataclass
class TableConfig:
    """One entry of ``tables``, ``table_list.list`` or ``table_list.defaults``"""
    source_table: str = ""
    target_table: str = ""
    where: str = ""
    batch_size: int = 0
    auto_create: bool = False
    incremental_key: str = ""
    since: str = ""
    until: str = ""
    columns: List[ColumnMapping] = field(default_factory=list)
    select_sql: str = ""

    @classmethod
    def from_dict(cls, data: Any, what: str = "table entry") -> 'TableConfig':
        data = _require_dict(data, what)
        batch_size = data.get('batch_size') or 0
        if not isinstance(batch_size, int) or isinstance(batch_size, bool):
            raise ConfigError(f"{what}: batch_size must be an integer")
        columns = []
        for i, column in enumerate(_require_list(data.get('columns'), f"{what}.columns")):
            columns.append(ColumnMapping.from_dict(_require_dict(column, f"{what}.columns[{i}]")))
        return cls(
            source_table=str(data.get('source_table') or '').strip(),
            target_table=str(data.get('target_table') or '').strip(),
            where=str(data.get('where') or ''),
            batch_size=batch_size,
            auto_create=bool(data.get('auto_create', False)),
            incremental_key=str(data.get('incremental_key') or '').strip(),
            since=str(data.get('since') or ''),
            until=str(data.get('until') or ''),
            columns=columns,
            select_sql=str(data.get('select_sql') or ''),
        )

    @property
    def is_blank(self) -> bool:
        return not self.source_table and not self.select_sql.strip()

    def to_job(self, dry_run: bool = False) -> TableJob:
        return TableJob(
            source_table=self.source_table,
            target_table=self.target_table,
            where=self.where,
            batch_size=self.batch_size if self.batch_size > 0 else DEFAULT_BATCH_SIZE,
            auto_create=self.auto_create,
            dry_run=dry_run,
            incremental_key=self.incremental_key,
            since=self.since,
            until=self.until,
            columns=tuple(self.columns),
            select_sql=self.select_sql,
        )


@dataclass
class TableListConfig:
    """``table_list`` block of the named-sources layout"""
    from_source: bool = False
    schema: str = ""
    include: List[str] = field(default_factory=list)
    exclude: List[str] = field(default_factory=list)
    defaults: Optional[TableConfig] = None
    list: List[TableConfig] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> 'TableListConfig':
        data = _require_dict(data, "table_list")
        defaults = data.get('defaults')
        return cls(
            from_source=bool(data.get('from_source', False)),
            schema=str(data.get('schema') or '').strip(),
            include=[str(p) for p in _require_list(data.get('include'), "table_list.include")],
            exclude=[str(p) for p in _require_list(data.get('exclude'), "table_list.exclude")],
            defaults=TableConfig.from_dict(defaults, "table_list.defaults") if defaults is not None else None,
            list=[TableConfig.from_dict(t, f"table_list.list[{i}]")
                  for i, t in enumerate(_require_list(data.get('list'), "table_list.list"))],
        )


@dataclass
class LoggingConfig:
    level: str = "INFO"
    format: str = "human"
    file: Optional[str] = None

    def __post_init__(self):
        self.level = os.environ.get(LOG_LEVEL_ENV, self.level or "INFO").upper()
        if self.format not in ("human", "json"):
            raise ConfigError(f"logging.format must be 'human' or 'json', not {self.format!r}")

    @classmethod
    def from_dict(cls, data: Any) -> 'LoggingConfig':
        data = _require_dict(data, "logging")
        return cls(level=str(data.get('level') or 'INFO'),
                   format=str(data.get('format') or 'human'),
                   file=data.get('file'))


@dataclass
class SyncConfig:
    """Resolved configuration: one source, one target and the table entries"""
    source: DatabaseConfig
    target: DatabaseConfig
    tables: List[TableConfig] = field(default_factory=list)
    table_list: Optional[TableListConfig] = None
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    row_size_policy: RowSizePolicy = RowSizePolicy.COLUMN_COUNT
    bind_incremental_bounds: bool = False

    @property
    def discovers_tables(self) -> bool:
        return self.table_list is not None and self.table_list.from_source

    @classmethod
    def from_dict(cls, data: Any) -> 'SyncConfig':
        """Resolve either config layout.

        Raises:
            ConfigError: missing connections, unknown named source or empty table list
        """
        if not isinstance(data, dict):
            raise ConfigError("Configuration must be a JSON object")

        options = _require_dict(data.get('options'), "options")
        policy_name = str(options.get('row_size_policy') or RowSizePolicy.COLUMN_COUNT.value)
        try:
            policy = RowSizePolicy(policy_name)
        except ValueError:
            raise ConfigError(f"options.row_size_policy must be one of "
                              f"{[p.value for p in RowSizePolicy]}, not {policy_name!r}")
        common = {
            'logging': LoggingConfig.from_dict(data.get('logging')),
            'row_size_policy': policy,
            'bind_incremental_bounds': bool(options.get('bind_incremental_bounds', False)),
        }

        sources = _require_dict(data.get('sources'), "sources")
        sync = data.get('sync')
        if sources and sync is not None:
            sync = _require_dict(sync, "sync")
            source_name = str(sync.get('source') or '').strip()
            target_name = str(sync.get('target') or '').strip()
            if not source_name or not target_name:
                raise ConfigError("sync.source and sync.target must not be empty")
            for name in (source_name, target_name):
                if name not in sources:
                    raise ConfigError(f"Data source {name!r} not found in sources")
            source = DatabaseConfig.from_dict(sources[source_name], f"sources.{source_name}")
            target = DatabaseConfig.from_dict(sources[target_name], f"sources.{target_name}")
            source.validate(f"sources.{source_name}")
            target.validate(f"sources.{target_name}")

            if data.get('table_list') is None:
                raise ConfigError("table_list is required when using sources/sync")
            table_list = TableListConfig.from_dict(data['table_list'])
            if not table_list.from_source and not table_list.list:
                raise ConfigError("table_list.list must not be empty when table_list.from_source is false")
            return cls(source=source, target=target, tables=list(table_list.list),
                       table_list=table_list, **common)

        if data.get('source') is None or data.get('target') is None:
            raise ConfigError("Configure either source/target/tables or sources/sync/table_list")
        source = DatabaseConfig.from_dict(data['source'], "source")
        target = DatabaseConfig.from_dict(data['target'], "target")
        source.validate("source")
        target.validate("target")
        tables = [TableConfig.from_dict(t, f"tables[{i}]")
                  for i, t in enumerate(_require_list(data.get('tables'), "tables"))]
        if not tables:
            raise ConfigError("tables must not be empty")
        return cls(source=source, target=target, tables=tables, **common)


def load_config(path: str) -> SyncConfig:
    """Read and resolve a JSON configuration file"""
    config_path = Path(path)
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {config_path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in config file {config_path}: {e}") from e
    return SyncConfig.from_dict(data)


def _from_defaults(name: str, defaults: Optional[TableConfig]) -> TableConfig:
    if defaults is None:
        return TableConfig(source_table=name, batch_size=DEFAULT_BATCH_SIZE)
    return TableConfig(
        source_table=name,
        where=defaults.where,
        batch_size=defaults.batch_size if defaults.batch_size > 0 else DEFAULT_BATCH_SIZE,
        auto_create=defaults.auto_create,
        incremental_key=defaults.incremental_key,
        since=defaults.since,
        until=defaults.until,
        columns=list(defaults.columns),
    )


def build_jobs(config: SyncConfig, discovered: Optional[List[str]] = None,
               dry_run: bool = False) -> List[TableJob]:
    """Expand the configuration into ordered table jobs.

    With ``table_list.from_source`` the explicitly listed entries come first
    (the same source table may appear more than once), followed by every
    discovered table that passes the include/exclude filters and is not
    already listed; those take their settings from ``table_list.defaults``.

    Args:
        config: Resolved configuration
        discovered: Table names read from the source catalog (discovery mode only)
        dry_run: Dry-run flag given to every job

    Returns:
        List of TableJob

    Raises:
        ConfigError: if the expansion yields no tables
    """
    entries: List[TableConfig] = []
    for i, entry in enumerate(config.tables):
        if entry.is_blank:
            logger.warning(f"Table entry {i} has neither source_table nor select_sql; skipping")
            continue
        entries.append(entry)

    if config.discovers_tables:
        table_list = config.table_list
        if table_list.defaults is not None and table_list.defaults.target_table:
            logger.warning("table_list.defaults.target_table is ignored for discovered tables")
        listed = {entry.source_table for entry in entries if entry.source_table}
        include_re, exclude_re = compile_table_filters(table_list.include, table_list.exclude)
        added = 0
        for name in discovered or []:
            if name in listed or not matches_table_filters(name, include_re, exclude_re):
                continue
            entries.append(_from_defaults(name, table_list.defaults))
            added += 1
        logger.info(f"Discovered {len(discovered or [])} source tables, {added} selected")

    if not entries:
        raise ConfigError("Table list is empty; check table_list or tables")
    return [entry.to_job(dry_run) for entry in entries]
