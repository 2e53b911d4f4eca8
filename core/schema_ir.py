#!/usr/bin/env python3
"""
tablesync Schema IR

Plain job and column descriptions shared by the planner, DDL builder and copier.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

from core.errors import PlanningError

DEFAULT_BATCH_SIZE = 1000


@dataclass(frozen=True)
class ColumnMapping:
    """Per-column rename/retype/nullability/default override"""
    source: str
    target: str = ""
    target_type: str = ""
    nullable: Optional[bool] = None
    default_value: str = ""

    @property
    def target_name(self) -> str:
        return self.target.strip() or self.source.strip()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ColumnMapping':
        nullable = data.get('nullable')
        return cls(
            source=str(data.get('source') or '').strip(),
            target=str(data.get('target') or '').strip(),
            target_type=str(data.get('target_type') or '').strip(),
            nullable=None if nullable is None else bool(nullable),
            default_value=str(data.get('default_value') or ''),
        )


@dataclass(frozen=True)
class SourceColumn:
    """A column of the extraction result, as reported by the source"""
    name: str
    native_type: str = ""
    nullable: Optional[bool] = None


@dataclass(frozen=True)
class TableJob:
    """One unit of replication: a source table (or custom query) into a target table"""
    source_table: str = ""
    target_table: str = ""
    where: str = ""
    batch_size: int = DEFAULT_BATCH_SIZE
    auto_create: bool = False
    dry_run: bool = False
    incremental_key: str = ""
    since: str = ""
    until: str = ""
    columns: Tuple[ColumnMapping, ...] = field(default_factory=tuple)
    select_sql: str = ""

    def __post_init__(self):
        if not self.batch_size or self.batch_size <= 0:
            object.__setattr__(self, 'batch_size', DEFAULT_BATCH_SIZE)
        object.__setattr__(self, 'columns', tuple(self.columns or ()))

    @property
    def is_custom_query(self) -> bool:
        return bool(self.select_sql.strip())

    @property
    def target_name(self) -> str:
        return self.target_table.strip() or self.source_table.strip()

    @property
    def display_name(self) -> str:
        return self.source_table.strip() or self.target_name or "<custom query>"

    def with_dry_run(self, dry_run: bool) -> 'TableJob':
        return replace(self, dry_run=dry_run)

    def validate(self) -> None:
        """Raise PlanningError if the job cannot be planned"""
        if not self.source_table.strip() and not self.is_custom_query:
            raise PlanningError("Source table name is empty", table=self.display_name)
        if not self.target_name:
            raise PlanningError("Custom queries need a target table", table=self.display_name)

        seen_sources: List[str] = []
        seen_targets: List[str] = []
        for mapping in self.columns:
            if not mapping.source:
                raise PlanningError("Column mapping has an empty source name", table=self.display_name)
            if mapping.source in seen_sources:
                raise PlanningError(f"Column {mapping.source} is mapped more than once",
                                    details={'column': mapping.source}, table=self.display_name)
            if mapping.target_name in seen_targets:
                raise PlanningError(f"Target column {mapping.target_name} is mapped more than once",
                                    details={'column': mapping.target_name}, table=self.display_name)
            seen_sources.append(mapping.source)
            seen_targets.append(mapping.target_name)
