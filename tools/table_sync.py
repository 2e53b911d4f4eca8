#!/usr/bin/env python3
"""
tablesync Command Line
======================

Copies tables between databases, with optional schema creation, column
mapping, incremental windows and source/target row-count reconciliation.

Supported drivers: sqlite3, mysql, postgres, sqlserver (mssql), oracle.

Usage:
    # Run every table in a JSON job file
    python3 tools/table_sync.py --config sync.json

    # Show which source tables a discovery config would select
    python3 tools/table_sync.py --config sync.json --list-tables

    # Copy a single table
    python3 tools/table_sync.py --source-driver mysql --source-dsn "etl:pw@tcp(db:3306)/erp" \\
        --target-driver postgres --target-dsn "postgresql://etl:pw@dw/warehouse" \\
        --table orders --inc-key updated_at --since "2024-01-01 00:00:00"
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

# Add parent directory to path so the tool runs from a source checkout
sys.path.insert(0, str(Path(__file__).parent.parent.resolve()))

from config.sync_config import SyncConfig, build_jobs, load_config
from core.database_manager import DatabaseManager
from core.errors import TableSyncError
from core.events import EventBus, LoggingListener
from core.schema_ir import DEFAULT_BATCH_SIZE, TableJob
from core.sync_runner import SyncRunner
from core.table_filter import filter_tables

logger = logging.getLogger("tablesync")

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def configure_logging(level: str = "INFO", log_file: Optional[str] = None):
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO),
                        format=LOG_FORMAT, handlers=handlers, force=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tablesync", description="Multi-dialect table replication")
    parser.add_argument("--config", help="JSON job file (multiple tables, column mappings, incremental sync)")
    parser.add_argument("--list-tables", action="store_true",
                        help="With --config: print the source tables selected by table_list and exit")
    parser.add_argument("--dry-run", action="store_true",
                        help="Read and plan only: no DDL, inserts or commits on the target")

    parser.add_argument("--source-driver", help="Source driver: mysql, postgres, sqlite3, sqlserver, oracle")
    parser.add_argument("--source-dsn", help="Source connection string")
    parser.add_argument("--target-driver", help="Target driver: mysql, postgres, sqlite3, sqlserver, oracle")
    parser.add_argument("--target-dsn", help="Target connection string")
    parser.add_argument("--table", help="Table to copy (same name on both sides)")
    parser.add_argument("--where", default="", help="Optional WHERE filter, without the WHERE keyword")
    parser.add_argument("--batch", type=int, default=DEFAULT_BATCH_SIZE, help="Rows per commit")
    parser.add_argument("--inc-key", default="", help="Incremental key column (auto-increment id or timestamp)")
    parser.add_argument("--since", default="", help="Copy rows with inc-key > since")
    parser.add_argument("--until", default="", help="Copy rows with inc-key <= until")

    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR")
    parser.add_argument("--log-format", choices=["human", "json"], default=None,
                        help="Render progress events as text or JSON lines")
    return parser


def list_tables(config: SyncConfig, manager: DatabaseManager) -> List[str]:
    """Source tables selected by the config's table_list filters"""
    schema = config.table_list.schema if config.table_list else ""
    with manager.connect(config.source.driver, config.source.dsn) as source:
        names = source.list_tables(schema)
    if config.table_list:
        names = filter_tables(names, config.table_list.include, config.table_list.exclude)
    return names


def run_with_config(args, manager: DatabaseManager) -> int:
    config = load_config(args.config)
    configure_logging(args.log_level or config.logging.level, config.logging.file)
    log_format = args.log_format or config.logging.format

    if args.list_tables:
        for name in list_tables(config, manager):
            print(name)
        return 0

    discovered = None
    if config.discovers_tables:
        with manager.connect(config.source.driver, config.source.dsn) as source:
            discovered = source.list_tables(config.table_list.schema)
    jobs = build_jobs(config, discovered, dry_run=args.dry_run)

    events = EventBus([LoggingListener(logger, log_format)])
    with manager.connect(config.source.driver, config.source.dsn) as source, \
            manager.connect(config.target.driver, config.target.dsn) as target:
        SyncRunner(source, target, events, config.row_size_policy,
                   config.bind_incremental_bounds).run(jobs)
    return 0


def run_single_table(args, manager: DatabaseManager) -> int:
    configure_logging(args.log_level or "INFO")
    job = TableJob(
        source_table=args.table,
        where=args.where,
        batch_size=args.batch,
        dry_run=args.dry_run,
        incremental_key=args.inc_key,
        since=args.since,
        until=args.until,
    )
    events = EventBus([LoggingListener(logger, args.log_format or "human")])
    with manager.connect(args.source_driver, args.source_dsn) as source, \
            manager.connect(args.target_driver, args.target_dsn) as target:
        SyncRunner(source, target, events).run([job])
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.list_tables and not args.config:
        parser.error("--list-tables requires --config")
    if not args.config and not all((args.source_driver, args.source_dsn, args.target_driver,
                                    args.target_dsn, args.table)):
        parser.print_help()
        parser.exit(2, "\nEither --config or all of --source-driver, --source-dsn, "
                       "--target-driver, --target-dsn and --table are required\n")

    manager = DatabaseManager()
    try:
        if args.config:
            return run_with_config(args, manager)
        return run_single_table(args, manager)
    except TableSyncError as e:
        if not logging.getLogger().handlers:
            configure_logging()
        logger.error(f"Fatal error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
