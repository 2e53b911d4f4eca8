"""
Replication summary reports.

Renders per-table and per-run reconciliation results as human-readable text:
- Start/end timestamps and duration
- Source, target and migrated row counts
- Reconciliation verdict and per-table mismatches
"""

import json
from typing import Dict

from core.reconciliation import CopyResult, Reconciliation, RunReport

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

VERDICTS = {
    Reconciliation.MATCH: "OK, no difference",
    Reconciliation.SURPLUS: "WARNING, target has {diff} more rows than source (duplicates or source deletions)",
    Reconciliation.DEFICIT: "ERROR, target has {diff} fewer rows than source (possible data loss)",
    Reconciliation.UNKNOWN: "SKIPPED, row counts unavailable",
}


def describe_verdict(classification: Reconciliation, diff) -> str:
    return VERDICTS[classification].format(diff=abs(diff or 0))


def render_job_summary(result: CopyResult) -> str:
    """Text block summarising one table copy"""
    seconds = result.elapsed_seconds
    lines = [
        "=" * 60,
        f"Table {result.table} -> {result.target_table} finished" + (" (dry run)" if result.dry_run else ""),
        "=" * 60,
        f"Start time:    {result.started_at.strftime(TIME_FORMAT)}",
        f"End time:      {result.finished_at.strftime(TIME_FORMAT)}",
        f"Duration:      {seconds:.2f} s ({seconds / 60:.2f} min)",
        f"Source rows:   {result.source_count}",
        f"Target rows:   {result.target_count}",
        f"Migrated rows: {result.migrated_rows}",
        f"Check:         {describe_verdict(result.classification, result.diff)}",
        "=" * 60,
    ]
    return "\n".join(lines)


class SyncSummary:
    """
    Run-level summary.

    Generated from a finished RunReport.
    Deterministic: same inputs → same text.
    """

    def __init__(self, report: RunReport):
        self.report = report

    def to_text(self) -> str:
        report = self.report
        seconds = report.duration_seconds
        lines = []

        lines.append("=" * 60)
        lines.append("Replication Summary")
        lines.append("=" * 60)
        lines.append(f"Start time:     {report.started_at.strftime(TIME_FORMAT)}")
        if report.finished_at:
            lines.append(f"End time:       {report.finished_at.strftime(TIME_FORMAT)}")
        lines.append(f"Duration:       {seconds:.2f} s ({seconds / 60:.2f} min)")
        lines.append(f"Tables:         {len(report.results)}")
        lines.append(f"Source rows:    {report.total_source}")
        lines.append(f"Target rows:    {report.total_target}")
        lines.append(f"Migrated rows:  {report.total_migrated}")
        lines.append(f"Check:          {describe_verdict(report.classification, report.total_diff)}")

        mismatches = report.mismatches
        if mismatches:
            lines.append("")
            lines.append(f"Tables with differences ({len(mismatches)})")
            lines.append("-" * 40)
            for result in mismatches:
                lines.append(f"  {result.table}: source {result.source_count}, "
                             f"target {result.target_count}, diff {result.diff:+d}")

        if not report.complete:
            lines.append("")
            lines.append("Tables without a row count (excluded from totals)")
            lines.append("-" * 40)
            for table in report.uncountable_tables:
                lines.append(f"  {table}")

        lines.append("=" * 60)
        return "\n".join(lines)

    def to_dict(self) -> Dict:
        return self.report.to_dict()

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, default=str)


def render_run_summary(report: RunReport) -> str:
    """Text block summarising a whole run"""
    return SyncSummary(report).to_text()
