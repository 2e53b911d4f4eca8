#!/usr/bin/env python3
"""
tablesync Reconciliation
========================

Row-count comparison between source and target, per table and per run.

A count that could not be obtained is carried as ``RowCount.unknown`` rather
than a magic number; ``legacy()`` still yields -1 for report consumers that
expect it.  Unknown counts contribute nothing to run totals, and the run is
flagged incomplete so the totals are not mistaken for a full reconciliation.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class Reconciliation(Enum):
    MATCH = "match"
    SURPLUS = "surplus"      # target has more rows than source
    DEFICIT = "deficit"      # target has fewer rows than source
    UNKNOWN = "unknown"      # one side could not be counted


@dataclass(frozen=True)
class RowCount:
    value: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def of(cls, value: int) -> 'RowCount':
        return cls(value=int(value))

    @classmethod
    def unknown(cls, reason: str = "") -> 'RowCount':
        return cls(value=None, error=reason or "count unavailable")

    @property
    def known(self) -> bool:
        return self.value is not None

    def legacy(self) -> int:
        return self.value if self.value is not None else -1

    def __str__(self):
        return str(self.value) if self.known else "unknown"


def classify(source: RowCount, target: RowCount) -> Tuple[Optional[int], Reconciliation]:
    """Return (target - source, verdict); the diff is None unless both sides are known"""
    if not (source.known and target.known):
        return (None, Reconciliation.UNKNOWN)
    diff = target.value - source.value
    if diff == 0:
        return (0, Reconciliation.MATCH)
    return (diff, Reconciliation.SURPLUS if diff > 0 else Reconciliation.DEFICIT)


@dataclass
class CopyResult:
    """Outcome of one table copy"""
    table: str
    target_table: str
    migrated_rows: int
    source_count: RowCount
    target_count: RowCount
    started_at: datetime
    finished_at: datetime
    elapsed_seconds: float
    dry_run: bool = False
    commits: int = 0

    @property
    def diff(self) -> Optional[int]:
        return classify(self.source_count, self.target_count)[0]

    @property
    def classification(self) -> Reconciliation:
        return classify(self.source_count, self.target_count)[1]

    @property
    def has_diff(self) -> bool:
        return self.classification in (Reconciliation.SURPLUS, Reconciliation.DEFICIT)

    @property
    def source_rows(self) -> int:
        return self.source_count.legacy()

    @property
    def target_rows(self) -> int:
        return self.target_count.legacy()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'table': self.table,
            'target_table': self.target_table,
            'migrated_rows': self.migrated_rows,
            'source_rows': self.source_rows,
            'target_rows': self.target_rows,
            'diff': self.diff,
            'classification': self.classification.value,
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat(),
            'elapsed_seconds': round(self.elapsed_seconds, 3),
            'dry_run': self.dry_run,
            'commits': self.commits,
        }


@dataclass
class RunReport:
    """Ordered per-table results of a run plus aggregate reconciliation"""
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None
    results: List[CopyResult] = field(default_factory=list)

    def add(self, result: CopyResult):
        self.results.append(result)

    def finish(self, when: Optional[datetime] = None):
        self.finished_at = when or datetime.now()

    @property
    def duration_seconds(self) -> float:
        end = self.finished_at or datetime.now()
        return (end - self.started_at).total_seconds()

    @property
    def total_source(self) -> int:
        return sum(r.source_count.value for r in self.results if r.source_count.known)

    @property
    def total_target(self) -> int:
        return sum(r.target_count.value for r in self.results if r.target_count.known)

    @property
    def total_migrated(self) -> int:
        return sum(r.migrated_rows for r in self.results)

    @property
    def total_diff(self) -> int:
        return self.total_target - self.total_source

    @property
    def classification(self) -> Reconciliation:
        diff = self.total_diff
        if diff == 0:
            return Reconciliation.MATCH
        return Reconciliation.SURPLUS if diff > 0 else Reconciliation.DEFICIT

    @property
    def mismatches(self) -> List[CopyResult]:
        return [r for r in self.results if r.has_diff]

    @property
    def uncountable_tables(self) -> List[str]:
        return [r.table for r in self.results
                if not (r.source_count.known and r.target_count.known)]

    @property
    def complete(self) -> bool:
        return not self.uncountable_tables

    def to_dict(self) -> Dict[str, Any]:
        return {
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'duration_seconds': round(self.duration_seconds, 3),
            'tables': len(self.results),
            'total_source': self.total_source,
            'total_target': self.total_target,
            'total_migrated': self.total_migrated,
            'total_diff': self.total_diff,
            'classification': self.classification.value,
            'complete': self.complete,
            'uncountable_tables': self.uncountable_tables,
            'mismatches': [r.table for r in self.mismatches],
            'results': [r.to_dict() for r in self.results],
        }
