#!/usr/bin/env python3
"""
tablesync DDL Builder
=====================

Target-side statement synthesis: CREATE TABLE from source column metadata
and column mappings, the insert column list, the parameterized INSERT and
the row remapper that reorders source values into insert order.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from core.dialects import Dialect
from core.errors import PlanningError
from core.schema_ir import ColumnMapping, SourceColumn
from core.type_registry import RowSizePolicy, TypeRegistry, apply_row_size_policy

logger = logging.getLogger(__name__)


def _mappings_by_source(mappings: Sequence[ColumnMapping]) -> Dict[str, ColumnMapping]:
    return {m.source.strip(): m for m in mappings if m.source.strip()}


def build_create_table_ddl(table: str, columns: Sequence[SourceColumn], dialect: Dialect,
                           mappings: Sequence[ColumnMapping] = (),
                           policy: RowSizePolicy = RowSizePolicy.COLUMN_COUNT) -> str:
    """Synthesize a CREATE TABLE statement for the target dialect.

    Column names, types and nullability come from the source metadata unless a
    mapping overrides them; explicit ``target_type`` overrides skip type
    translation but are still subject to the row-size policy.

    Args:
        table: Target table name (unquoted)
        columns: Source columns in result order
        dialect: Target dialect
        mappings: Column overrides keyed by source name
        policy: Large-row mitigation policy

    Returns:
        DDL text
    """
    if not table or not table.strip():
        raise PlanningError("Target table name is empty")
    if not columns:
        raise PlanningError("No column metadata available to create the table", table=table)

    by_source = _mappings_by_source(mappings)

    names: List[str] = []
    types: List[str] = []
    nullability: List[bool] = []
    defaults: List[str] = []
    for column in columns:
        mapping = by_source.get(column.name)
        names.append(mapping.target_name if mapping else column.name)

        if mapping and mapping.target_type:
            types.append(mapping.target_type)
        else:
            types.append(TypeRegistry.translate(column.native_type, dialect))

        if mapping and mapping.nullable is not None:
            nullability.append(mapping.nullable)
        elif column.nullable is not None:
            nullability.append(column.nullable)
        else:
            nullability.append(True)

        defaults.append(mapping.default_value.strip() if mapping else "")

    types = apply_row_size_policy(types, dialect, policy, table)

    definitions = []
    for name, target_type, nullable, default in zip(names, types, nullability, defaults):
        parts = [f"{dialect.quote_identifier(name)} {target_type}"]
        not_null = "" if nullable else "NOT NULL"
        default_clause = f"DEFAULT {default}" if default else ""
        if dialect.DEFAULT_BEFORE_NULL:
            parts.extend(p for p in (default_clause, not_null) if p)
        else:
            parts.extend(p for p in (not_null, default_clause) if p)
        definitions.append(" ".join(parts))

    return f"CREATE TABLE {dialect.quote_table(table)} (\n  " + ",\n  ".join(definitions) + "\n)"


def build_insert_columns(source_columns: Sequence[str], mappings: Sequence[ColumnMapping] = ()) -> List[str]:
    """Target column list in source order; all source columns when nothing is mapped"""
    if not mappings:
        return list(source_columns)
    by_source = _mappings_by_source(mappings)
    result = [by_source[name].target_name for name in source_columns if name in by_source]
    return result or list(source_columns)


def build_insert_sql(table: str, columns: Sequence[str], dialect: Dialect) -> str:
    if not table or not table.strip():
        raise PlanningError("Target table name is empty")
    if not columns:
        raise PlanningError("No columns to insert", table=table)
    column_list = ", ".join(dialect.quote_identifier(c) for c in columns)
    return (f"INSERT INTO {dialect.quote_table(table)} ({column_list}) "
            f"VALUES ({dialect.placeholders(len(columns))})")


class RowRemapper:
    """Reorders source row values into insert-column order.

    Each insert column resolves through the mapping's target→source link,
    then a same-name source column, and is ``None`` when neither exists.
    """

    def __init__(self, source_columns: Sequence[str], insert_columns: Sequence[str],
                 mappings: Sequence[ColumnMapping] = ()):
        self.source_columns = list(source_columns)
        self.insert_columns = list(insert_columns)

        source_index = {name: i for i, name in enumerate(self.source_columns)}
        target_to_source = {m.target_name: m.source.strip() for m in mappings if m.source.strip()}

        self._indexes: List[Optional[int]] = []
        for target in self.insert_columns:
            index = source_index.get(target_to_source.get(target, ""))
            if index is None:
                index = source_index.get(target)
            if index is None:
                logger.debug(f"Insert column {target} has no source column; inserting NULL")
            self._indexes.append(index)

        self._identity = self._indexes == list(range(len(self.source_columns)))

    def __call__(self, row: Sequence[Any]) -> tuple:
        if self._identity:
            return tuple(row)
        return tuple(None if i is None else row[i] for i in self._indexes)
