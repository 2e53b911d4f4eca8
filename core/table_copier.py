#!/usr/bin/env python3
"""
tablesync Table Copier
======================

Copies one ``TableJob`` from a source connection to a target connection:

    IDLE -> COUNTING_SOURCE -> EXTRACTING -> [ENSURING_DDL] -> WRITING
         -> COUNTING_TARGET -> RECONCILED

Any extraction, DDL or write failure moves the job to FAILED and raises;
rows committed by earlier batches stay committed.  Count failures never
raise, they are recorded as unknown counts.

Usage:
    copier = TableCopier(source, target, events)
    result = copier.copy(TableJob(source_table="orders", auto_create=True))
"""

import logging
import time
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional, Sequence

from core.database_manager import DatabaseConnection
from core.ddl_builder import RowRemapper, build_create_table_ddl, build_insert_columns, build_insert_sql
from core.dialects import TableProbe
from core.errors import (CountingError, ExtractionError, PlanningError, TableSyncError, WriteError,
                         mask_credentials)
from core.events import (BatchCommitted, CountResolved, EventBus, JobFinished, JobStarted,
                         JobStateChanged, SampleRow, StatementPlanned, TableCreatePlanned)
from core.query_planner import plan_query
from core.reconciliation import CopyResult, RowCount
from core.schema_ir import SourceColumn, TableJob
from core.type_registry import RowSizePolicy

logger = logging.getLogger(__name__)

# Dry runs report this many example rows
DRY_RUN_SAMPLE_ROWS = 5


class JobState(Enum):
    IDLE = "idle"
    COUNTING_SOURCE = "counting_source"
    EXTRACTING = "extracting"
    ENSURING_DDL = "ensuring_ddl"
    WRITING = "writing"
    COUNTING_TARGET = "counting_target"
    RECONCILED = "reconciled"
    FAILED = "failed"


class BatchTransaction:
    """Scoped batch commits on the target.

    ``row_written()`` commits every ``batch_size`` rows; leaving the block
    normally commits the remainder, leaving it through an exception rolls the
    open batch back.  In dry-run mode nothing is committed or rolled back.

    ``commits`` counts commits that carried rows.  The closing commit still
    runs when the row count is an exact multiple of ``batch_size`` (or zero)
    but is neither counted nor reported through ``on_commit``.
    """

    def __init__(self, target: DatabaseConnection, batch_size: int, dry_run: bool = False,
                 on_commit: Optional[Callable[[int, int], None]] = None):
        self.target = target
        self.batch_size = batch_size
        self.dry_run = dry_run
        self.on_commit = on_commit
        self.rows = 0
        self.pending = 0
        self.commits = 0
        self.cursor = None

    def __enter__(self) -> 'BatchTransaction':
        if not self.dry_run:
            self.cursor = self.target.cursor()
        return self

    def insert(self, sql: str, args: Sequence):
        self.cursor.execute(sql, args)

    def row_written(self):
        self.rows += 1
        self.pending += 1
        if not self.dry_run and self.pending >= self.batch_size:
            self._commit()

    def _commit(self):
        try:
            self.target.commit()
        except Exception as e:
            raise WriteError(f"Commit failed after {self.rows} rows: {e}") from e
        batch_rows, self.pending = self.pending, 0
        if not batch_rows:
            return
        self.commits += 1
        if self.on_commit:
            self.on_commit(self.rows, batch_rows)

    def __exit__(self, exc_type, exc, tb):
        try:
            if self.dry_run:
                return False
            if exc_type is None:
                self._commit()
            else:
                try:
                    self.target.rollback()
                except Exception as rollback_error:
                    logger.error(f"Rollback failed: {rollback_error}")
        finally:
            if self.cursor is not None:
                self.cursor.close()
                self.cursor = None
        return False


class TableCopier:
    """Runs a single table copy and reports it through an event bus"""

    def __init__(self, source: DatabaseConnection, target: DatabaseConnection,
                 events: Optional[EventBus] = None,
                 row_size_policy: RowSizePolicy = RowSizePolicy.COLUMN_COUNT,
                 bind_bounds: bool = False):
        self.source = source
        self.target = target
        self.events = events or EventBus()
        self.row_size_policy = row_size_policy
        self.bind_bounds = bind_bounds
        self.state = JobState.IDLE
        self._table = ""

    def _transition(self, state: JobState):
        self.state = state
        self.events.emit(JobStateChanged(table=self._table, state=state.value))

    def copy(self, job: TableJob) -> CopyResult:
        """Copy ``job`` and return its reconciled result.

        Raises:
            PlanningError: the job or its statements are invalid
            ExtractionError: the source query or a fetch failed
            WriteError: DDL, an insert or a commit failed on the target
        """
        self._table = job.display_name
        self.state = JobState.IDLE
        try:
            return self._copy(job)
        except TableSyncError as e:
            self._transition(JobState.FAILED)
            raise e.for_table(job.display_name)

    def _copy(self, job: TableJob) -> CopyResult:
        job.validate()
        table = job.display_name
        target_table = job.target_name

        started_at = datetime.now()
        started = time.perf_counter()
        self.events.emit(JobStarted(table=table, target_table=target_table, dry_run=job.dry_run))

        plan = plan_query(job, self.source.dialect, self.bind_bounds)
        self.events.emit(StatementPlanned(table=table, statement="select", sql=plan.select_sql, dry_run=job.dry_run))

        self._transition(JobState.COUNTING_SOURCE)
        source_count = self._count(self.source, plan.count_sql, plan.params, "source")

        catalog = {}
        if job.auto_create and not plan.is_custom:
            catalog = self.source.describe_table(job.source_table.strip())

        self._transition(JobState.EXTRACTING)
        cursor = self.source.stream_cursor(job.batch_size)
        try:
            try:
                self.source.run(cursor, plan.select_sql, plan.params)
                first_chunk = cursor.fetchmany(job.batch_size)
            except Exception as e:
                raise ExtractionError(f"Source query failed: {e}", details={'sql': plan.select_sql}) from e

            columns = self.source.describe_result(cursor.description, catalog)
            if not columns:
                raise PlanningError(f"Source query for {table} returned no columns")

            if job.auto_create:
                self._transition(JobState.ENSURING_DDL)
                self.ensure_target_table(job, columns)

            source_names = [c.name for c in columns]
            insert_columns = build_insert_columns(source_names, job.columns)
            insert_sql = build_insert_sql(target_table, insert_columns, self.target.dialect)
            self.events.emit(StatementPlanned(table=table, statement="insert", sql=insert_sql, dry_run=job.dry_run))
            remap = RowRemapper(source_names, insert_columns, job.columns)

            self._transition(JobState.WRITING)
            migrated, commits = self._write(job, cursor, first_chunk, insert_sql, remap)
        finally:
            cursor.close()
            self.source.end_read()

        self._transition(JobState.COUNTING_TARGET)
        target_count = self._count(self.target, self.target.dialect.count_table_sql(target_table), (), "target")

        result = CopyResult(
            table=table,
            target_table=target_table,
            migrated_rows=migrated,
            source_count=source_count,
            target_count=target_count,
            started_at=started_at,
            finished_at=datetime.now(),
            elapsed_seconds=time.perf_counter() - started,
            dry_run=job.dry_run,
            commits=commits,
        )
        self._transition(JobState.RECONCILED)
        self.events.emit(JobFinished(table=table, result=result))
        return result

    def _count(self, connection: DatabaseConnection, sql: str, params, side: str) -> RowCount:
        """Run a COUNT query; failures become an unknown count"""
        try:
            value = connection.query_scalar(sql, params)
            count = RowCount.unknown("COUNT returned no rows") if value is None else RowCount.of(value)
        except Exception as e:
            error = CountingError(mask_credentials(str(e)), details={'side': side}, table=self._table)
            logger.warning(f"Could not count {side} rows: {error}")
            count = RowCount.unknown(error.message)
            connection.end_read()
        else:
            connection.end_read()
        self.events.emit(CountResolved(table=self._table, side=side, count=count))
        return count

    def ensure_target_table(self, job: TableJob, columns: List[SourceColumn]) -> bool:
        """Create the target table when it does not exist.

        Returns:
            True if a CREATE TABLE was issued (or would be, in dry-run mode)
        """
        target_table = job.target_name
        probe = self.target.probe_table(target_table)
        if probe is TableProbe.EXISTS:
            logger.debug(f"Target table {target_table} already exists")
            return False
        if probe is TableProbe.UNKNOWN:
            logger.warning(f"Could not determine whether {target_table} exists; attempting to create it")

        ddl = build_create_table_ddl(target_table, columns, self.target.dialect,
                                     job.columns, self.row_size_policy)
        if not job.dry_run:
            try:
                self.target.execute(ddl)
                self.target.commit()
            except Exception as e:
                try:
                    self.target.rollback()
                except Exception as rollback_error:
                    logger.error(f"Rollback after failed CREATE TABLE {target_table} failed: {rollback_error}")
                raise WriteError(f"Creating target table {target_table} failed: {e}", details={'ddl': ddl}) from e
        self.events.emit(TableCreatePlanned(table=job.display_name, target_table=target_table,
                                            ddl=ddl, executed=not job.dry_run))
        return True

    def _write(self, job: TableJob, cursor, first_chunk, insert_sql: str, remap: RowRemapper):
        table = job.display_name

        def committed(rows_total: int, batch_rows: int):
            self.events.emit(BatchCommitted(table=table, rows_total=rows_total, batch_rows=batch_rows))

        with BatchTransaction(self.target, job.batch_size, job.dry_run, committed) as batch:
            chunk = first_chunk
            while chunk:
                for row in chunk:
                    args = remap(row)
                    if job.dry_run:
                        if batch.rows < DRY_RUN_SAMPLE_ROWS:
                            self.events.emit(SampleRow(table=table, index=batch.rows + 1, values=args))
                    else:
                        try:
                            batch.insert(insert_sql, args)
                        except Exception as e:
                            raise WriteError(f"Insert failed at row {batch.rows + 1}: {e}") from e
                    batch.row_written()
                try:
                    chunk = cursor.fetchmany(job.batch_size)
                except Exception as e:
                    raise ExtractionError(f"Fetching source rows failed after {batch.rows} rows: {e}") from e

        return batch.rows, batch.commits
