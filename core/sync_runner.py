#!/usr/bin/env python3
"""
tablesync Sync Runner

Runs table jobs one at a time in the given order and stops the run at the
first failure.  Rows committed before the failure stay in the target.
"""

import logging
from typing import Iterable, Optional

from core.database_manager import DatabaseConnection
from core.errors import TableSyncError
from core.events import EventBus, JobFailed, RunFailed, RunFinished, RunStarted
from core.reconciliation import RunReport
from core.schema_ir import TableJob
from core.table_copier import TableCopier
from core.type_registry import RowSizePolicy

logger = logging.getLogger(__name__)


class SyncRunner:
    """Runs table jobs one after another against a single source/target pair.

    The first failing table aborts the run: its error is re-raised and the
    remaining tables are not attempted.
    """

    def __init__(self, source: DatabaseConnection, target: DatabaseConnection,
                 events: Optional[EventBus] = None,
                 row_size_policy: RowSizePolicy = RowSizePolicy.COLUMN_COUNT,
                 bind_bounds: bool = False):
        self.events = events or EventBus()
        self.copier = TableCopier(source, target, self.events, row_size_policy, bind_bounds)

    def run(self, jobs: Iterable[TableJob], dry_run: Optional[bool] = None) -> RunReport:
        """Copy every job in order.

        Args:
            jobs: Table jobs, executed in the given order
            dry_run: When set, overrides each job's own dry-run flag

        Returns:
            RunReport with one result per table
        """
        jobs = list(jobs)
        if dry_run is not None:
            jobs = [job.with_dry_run(dry_run) for job in jobs]

        report = RunReport()
        self.events.emit(RunStarted(tables=len(jobs), dry_run=any(job.dry_run for job in jobs)))

        for job in jobs:
            try:
                result = self.copier.copy(job)
            except TableSyncError as e:
                report.finish()
                self.events.emit(JobFailed(table=job.display_name, error=str(e), code=e.code.value))
                self.events.emit(RunFailed(table=job.display_name, error=str(e),
                                           completed_tables=len(report.results)))
                raise
            report.add(result)

        report.finish()
        self.events.emit(RunFinished(report=report))
        return report
