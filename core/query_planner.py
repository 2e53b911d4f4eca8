#!/usr/bin/env python3
"""
tablesync Query Planner
=======================

Builds the extraction SELECT and its matching COUNT for a ``TableJob``.

A non-blank custom query wins over every projection/filter field.  On the
table path the user WHERE clause and the incremental bounds are AND-ed
together and applied identically to the SELECT and the COUNT.

Incremental bounds are interpolated as quoted literals by default.  With
``bind_bounds=True`` they become positional parameters instead.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Tuple

from core.dialects import Dialect, PlaceholderStyle
from core.errors import PlanningError
from core.schema_ir import TableJob

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueryPlan:
    select_sql: str
    count_sql: str
    params: Tuple[Any, ...] = field(default_factory=tuple)
    is_custom: bool = False


def build_select_columns(job: TableJob) -> str:
    """Projection list: ``*`` or the mapped source column names in mapping order"""
    names = [m.source.strip() for m in job.columns if m.source.strip()]
    return ", ".join(names) if names else "*"


def build_where_clause(job: TableJob, dialect: Dialect, bind_bounds: bool = False) -> Tuple[str, Tuple[Any, ...]]:
    """Combine the user filter and incremental bounds.

    A literal '%' in the user filter is doubled only when parameters are
    actually bound; format-style drivers leave the statement untouched otherwise.

    Returns:
        (clause without the WHERE keyword, bound parameters)
    """
    bound_clauses: List[str] = []
    params: List[Any] = []

    key = job.incremental_key.strip()
    if key:
        quoted_key = dialect.quote_identifier(key)
        for operator, bound in (('>', job.since.strip()), ('<=', job.until.strip())):
            if not bound:
                continue
            if bind_bounds:
                params.append(bound)
                bound_clauses.append(f"{quoted_key} {operator} {dialect.placeholder(len(params))}")
            else:
                bound_clauses.append(f"{quoted_key} {operator} '{bound}'")

    clauses: List[str] = []
    where = job.where.strip()
    if where:
        if params and dialect.PLACEHOLDER_STYLE is PlaceholderStyle.FORMAT:
            where = where.replace('%', '%%')
        clauses.append(f"({where})")

    return (" AND ".join(clauses + bound_clauses), tuple(params))


def plan_query(job: TableJob, dialect: Dialect, bind_bounds: bool = False) -> QueryPlan:
    """Build the extraction and count statements for ``job`` against the source dialect"""
    if job.is_custom_query:
        select_sql = job.select_sql.strip().rstrip(';').strip()
        if job.where.strip() or job.incremental_key.strip():
            logger.debug(f"Custom query for {job.display_name}: where/incremental settings ignored")
        return QueryPlan(select_sql=select_sql,
                         count_sql=dialect.count_subquery_sql(select_sql),
                         is_custom=True)

    table = job.source_table.strip()
    if not table:
        raise PlanningError("Source table name is empty", table=job.display_name)

    where, params = build_where_clause(job, dialect, bind_bounds)
    suffix = f" WHERE {where}" if where else ""
    return QueryPlan(
        select_sql=f"SELECT {build_select_columns(job)} FROM {table}{suffix}",
        count_sql=f"SELECT COUNT(*) FROM {table}{suffix}",
        params=params,
    )
