#!/usr/bin/env python3
"""
tablesync Event Stream
======================

The engine reports progress as typed events instead of writing log lines.
Listeners subscribe to an ``EventBus``; ``LoggingListener`` renders events
through the standard ``logging`` module as human-readable text or as one JSON
object per line, and ``RecordingListener`` keeps them for inspection.
"""

import json
import logging
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from core.reconciliation import CopyResult, RowCount, RunReport
from core.report_generator import render_job_summary, render_run_summary

logger = logging.getLogger(__name__)


def _jsonable(value: Any) -> Any:
    if isinstance(value, RowCount):
        return value.value
    if hasattr(value, 'to_dict'):
        return value.to_dict()
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


@dataclass(frozen=True)
class SyncEvent:
    """Base class for engine events"""

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        record = {'event': self.kind}
        for f in fields(self):
            record[f.name] = _jsonable(getattr(self, f.name))
        return record

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


@dataclass(frozen=True)
class RunStarted(SyncEvent):
    tables: int = 0
    dry_run: bool = False
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class JobStarted(SyncEvent):
    table: str = ""
    target_table: str = ""
    dry_run: bool = False
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class JobStateChanged(SyncEvent):
    table: str = ""
    state: str = ""
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class CountResolved(SyncEvent):
    table: str = ""
    side: str = ""
    count: RowCount = field(default_factory=RowCount)
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class StatementPlanned(SyncEvent):
    table: str = ""
    statement: str = ""
    sql: str = ""
    dry_run: bool = False
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class TableCreatePlanned(SyncEvent):
    table: str = ""
    target_table: str = ""
    ddl: str = ""
    executed: bool = False
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class SampleRow(SyncEvent):
    table: str = ""
    index: int = 0
    values: Tuple[Any, ...] = ()
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class BatchCommitted(SyncEvent):
    table: str = ""
    rows_total: int = 0
    batch_rows: int = 0
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class JobFinished(SyncEvent):
    table: str = ""
    result: Optional[CopyResult] = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class JobFailed(SyncEvent):
    table: str = ""
    error: str = ""
    code: str = ""
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class RunFinished(SyncEvent):
    report: Optional[RunReport] = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class RunFailed(SyncEvent):
    table: str = ""
    error: str = ""
    completed_tables: int = 0
    timestamp: datetime = field(default_factory=datetime.now)


Listener = Callable[[SyncEvent], None]


class EventBus:
    """Fan-out of engine events to subscribed listeners"""

    def __init__(self, listeners: Optional[List[Listener]] = None):
        self._listeners: List[Listener] = list(listeners or [])

    def subscribe(self, listener: Listener) -> Listener:
        self._listeners.append(listener)
        return listener

    def unsubscribe(self, listener: Listener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, event: SyncEvent):
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                # A broken listener must not abort a copy in progress
                logger.exception(f"Event listener failed on {event.kind}")


class RecordingListener:
    """Keeps every event it receives, in order"""

    def __init__(self):
        self.events: List[SyncEvent] = []

    def __call__(self, event: SyncEvent):
        self.events.append(event)

    def of_type(self, event_type: Type[SyncEvent]) -> List[SyncEvent]:
        return [e for e in self.events if isinstance(e, event_type)]

    @property
    def kinds(self) -> List[str]:
        return [e.kind for e in self.events]


class LoggingListener:
    """Renders events through a stdlib logger.

    Args:
        log: Logger to write to (defaults to the ``tablesync`` logger)
        fmt: ``human`` for readable text, ``json`` for one JSON object per event
    """

    def __init__(self, log: Optional[logging.Logger] = None, fmt: str = "human"):
        self.log = log or logging.getLogger("tablesync")
        self.fmt = fmt

    def __call__(self, event: SyncEvent):
        if self.fmt == "json":
            level = logging.ERROR if isinstance(event, (JobFailed, RunFailed)) else logging.INFO
            if isinstance(event, JobStateChanged):
                level = logging.DEBUG
            self.log.log(level, event.to_json())
            return
        handler = getattr(self, f"_on_{event.kind}", None)
        if handler is not None:
            handler(event)

    # ===== human-readable rendering =====

    def _on_RunStarted(self, event: RunStarted):
        mode = " (dry run)" if event.dry_run else ""
        self.log.info(f"Starting replication of {event.tables} table(s){mode}")

    def _on_JobStarted(self, event: JobStarted):
        self.log.info(f"Copying table {event.table} -> {event.target_table} ...")
        self.log.info(f"Start time: {event.timestamp.strftime('%Y-%m-%d %H:%M:%S')}")

    def _on_JobStateChanged(self, event: JobStateChanged):
        self.log.debug(f"{event.table}: {event.state}")

    def _on_CountResolved(self, event: CountResolved):
        if event.count.known:
            self.log.info(f"{event.side.capitalize()} row count: {event.count.value}")
        else:
            self.log.warning(f"Could not count {event.side} rows for {event.table}: {event.count.error}")

    def _on_StatementPlanned(self, event: StatementPlanned):
        if event.dry_run and event.statement == "insert":
            self.log.info(f"Dry run, INSERT statement that would be executed:\n{event.sql}")
        else:
            self.log.debug(f"{event.statement.upper()} for {event.table}: {event.sql}")

    def _on_TableCreatePlanned(self, event: TableCreatePlanned):
        if event.executed:
            self.log.info(f"Created target table {event.target_table}:\n{event.ddl}")
        else:
            self.log.info(f"Dry run, target table {event.target_table} would be created with:\n{event.ddl}")

    def _on_SampleRow(self, event: SampleRow):
        self.log.info(f"Sample row {event.index}: {list(event.values)}")

    def _on_BatchCommitted(self, event: BatchCommitted):
        self.log.info(f"Committed {event.rows_total} rows")

    def _on_JobFinished(self, event: JobFinished):
        if event.result is not None:
            self.log.info("\n" + render_job_summary(event.result))

    def _on_JobFailed(self, event: JobFailed):
        self.log.error(f"Table {event.table} failed: {event.error}")

    def _on_RunFinished(self, event: RunFinished):
        if event.report is not None:
            self.log.info("\n" + render_run_summary(event.report))

    def _on_RunFailed(self, event: RunFailed):
        self.log.error(f"Replication aborted at table {event.table} after "
                       f"{event.completed_tables} completed table(s): {event.error}")
