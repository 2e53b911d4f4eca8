#!/usr/bin/env python3
"""
tablesync Type Registry
=======================

Classifies native column types into portable families and translates them
into a target dialect's type names.

MySQL caps a row at 65535 bytes, so wide tables are adjusted by a
``RowSizePolicy`` before CREATE TABLE:

- ``COLUMN_COUNT``: more than 30 columns turns every VARCHAR/CHAR into TEXT
- ``ROW_WIDTH``: the widest string columns become TEXT until the estimate fits
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)


class TypeFamily(Enum):
    BOOLEAN = "boolean"
    INTEGER = "integer"
    FLOAT = "float"
    DECIMAL = "decimal"
    BINARY = "binary"
    TEMPORAL = "temporal"
    TEXT = "text"

    # Fallback
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class TypeInfo:
    family: TypeFamily
    precision: Optional[int] = None
    scale: Optional[int] = None
    length: Optional[int] = None

    def __repr__(self):
        return f"TypeInfo({self.family.value}, p={self.precision}, s={self.scale}, l={self.length})"


class RowSizePolicy(Enum):
    """How wide-table row limits are avoided on dialects that enforce one"""
    COLUMN_COUNT = "column_count"
    ROW_WIDTH = "row_width"


# Tables with more columns than this have their VARCHAR/CHAR columns
# converted to TEXT under RowSizePolicy.COLUMN_COUNT.
WIDE_TABLE_COLUMN_THRESHOLD = 30

INTEGER_MARKERS = (
    'BIGINT', 'SMALLINT', 'TINYINT', 'MEDIUMINT', 'INTEGER',
    'INT2', 'INT4', 'INT8', 'SERIAL', 'LONGLONG',
)
FLOAT_MARKERS = ('DOUBLE', 'FLOAT', 'REAL')
DECIMAL_MARKERS = ('DECIMAL', 'NUMERIC', 'NUMBER', 'MONEY')
BINARY_MARKERS = ('BLOB', 'BYTEA', 'BINARY', 'RAW', 'IMAGE')
TEMPORAL_MARKERS = ('DATE', 'TIME')
TEXT_MARKERS = ('CHAR', 'TEXT', 'CLOB', 'STRING')

_BARE_INT = re.compile(r'^(UNSIGNED\s+)?INT(\b|\()')
_PARAMS = re.compile(r'\(\s*(\d+)\s*(?:,\s*(-?\d+)\s*)?\)')


class TypeRegistry:
    """Classifies native column types and renders them for a target dialect.

    Classification is an ordered substring match on the upper-cased native
    name, so ``TINYINT(1)`` is a boolean before it is an integer and
    ``BINARY_DOUBLE`` is a float before it is binary data.
    """

    @staticmethod
    def classify(native_type: str) -> TypeInfo:
        """Map a native type name to its family, keeping any (precision, scale)"""
        type_upper = (native_type or "").strip().upper()
        precision, scale = TypeRegistry._parse_params(type_upper)

        if not type_upper:
            return TypeInfo(TypeFamily.UNKNOWN)

        if 'BOOL' in type_upper or type_upper.startswith('TINYINT(1)') or type_upper in ('BIT', 'BIT(1)'):
            return TypeInfo(TypeFamily.BOOLEAN)

        if any(marker in type_upper for marker in INTEGER_MARKERS) or _BARE_INT.match(type_upper):
            return TypeInfo(TypeFamily.INTEGER)

        if any(marker in type_upper for marker in FLOAT_MARKERS):
            return TypeInfo(TypeFamily.FLOAT)

        if any(marker in type_upper for marker in DECIMAL_MARKERS):
            return TypeInfo(TypeFamily.DECIMAL, precision, scale)

        if any(marker in type_upper for marker in BINARY_MARKERS) or type_upper.startswith('BIT('):
            return TypeInfo(TypeFamily.BINARY, length=precision)

        if any(marker in type_upper for marker in TEMPORAL_MARKERS):
            return TypeInfo(TypeFamily.TEMPORAL)

        if any(marker in type_upper for marker in TEXT_MARKERS):
            return TypeInfo(TypeFamily.TEXT, length=precision)

        return TypeInfo(TypeFamily.UNKNOWN)

    @staticmethod
    def translate(native_type: str, dialect) -> str:
        """Translate a native source type into the target dialect's DDL type"""
        return dialect.render_type(TypeRegistry.classify(native_type))

    @staticmethod
    def _parse_params(type_str: str) -> Tuple[Optional[int], Optional[int]]:
        """Parse 'DECIMAL(10,2)' -> (10, 2), 'VARCHAR(255)' -> (255, None)"""
        match = _PARAMS.search(type_str)
        if not match:
            return (None, None)
        precision = int(match.group(1))
        scale = int(match.group(2)) if match.group(2) is not None else None
        return (precision, scale)


# ===== Row size estimation =====

_FIXED_SIZES = {
    'TINYINT': 1,
    'SMALLINT': 2,
    'MEDIUMINT': 3,
    'INT': 4,
    'INTEGER': 4,
    'BIGINT': 8,
    'FLOAT': 4,
    'DOUBLE': 8,
    'DECIMAL': 20,
    'NUMERIC': 20,
    'DATE': 3,
    'TIME': 3,
    'DATETIME': 5,
    'TIMESTAMP': 5,
    'YEAR': 1,
    'TINYTEXT': 255,
    'TINYBLOB': 255,
    'BOOL': 1,
    'BOOLEAN': 1,
}


def is_varchar_like(target_type: str) -> bool:
    type_upper = target_type.strip().upper()
    return type_upper.startswith('VARCHAR') or type_upper.startswith('CHAR')


def estimate_column_size(target_type: str) -> int:
    """Approximate in-row bytes a MySQL column occupies (utf8mb4 strings count 3 bytes/char)"""
    type_upper = target_type.strip().upper()
    base = re.split(r'[\s(]', type_upper, 1)[0]
    length, _ = TypeRegistry._parse_params(type_upper)

    if base == 'CHAR':
        return (length or 1) * 3
    if base == 'VARCHAR':
        return (length or 255) * 3
    if base in _FIXED_SIZES:
        return _FIXED_SIZES[base]
    # TEXT/BLOB bodies live off-page; only the pointer stays in the row
    if base.endswith('TEXT') or base.endswith('BLOB'):
        return 9
    return 255


def estimate_row_size(target_types: List[str]) -> int:
    return sum(estimate_column_size(t) for t in target_types)


def apply_row_size_policy(target_types: List[str], dialect,
                          policy: RowSizePolicy = RowSizePolicy.COLUMN_COUNT,
                          table: str = "") -> List[str]:
    """Convert VARCHAR/CHAR target types to TEXT where a row would not fit.

    Only dialects declaring a ``ROW_SIZE_LIMIT`` are affected; every other
    dialect gets the list back unchanged.

    Args:
        target_types: Target DDL types in column order
        dialect: Target dialect
        policy: COLUMN_COUNT (convert all when the table is wide) or
            ROW_WIDTH (convert the widest until the estimate fits)
        table: Table name, used only in log messages

    Returns:
        New list of target types
    """
    limit = getattr(dialect, 'ROW_SIZE_LIMIT', None)
    types = list(target_types)
    if not limit:
        return types

    if policy is RowSizePolicy.COLUMN_COUNT:
        if len(types) <= WIDE_TABLE_COLUMN_THRESHOLD:
            return types
        converted = 0
        for i, target_type in enumerate(types):
            if is_varchar_like(target_type):
                types[i] = 'TEXT'
                converted += 1
        if converted:
            logger.info(f"Table {table} has {len(types)} columns; converted {converted} VARCHAR/CHAR columns to TEXT")
        return types

    total = estimate_row_size(types)
    converted = 0
    while total > limit:
        candidates = [i for i, t in enumerate(types) if is_varchar_like(t)]
        if not candidates:
            logger.warning(f"Table {table} estimated row size {total} exceeds {limit} bytes with no VARCHAR/CHAR columns left")
            break
        widest = max(candidates, key=lambda i: estimate_column_size(types[i]))
        total -= estimate_column_size(types[widest]) - estimate_column_size('TEXT')
        types[widest] = 'TEXT'
        converted += 1
    if converted:
        logger.info(f"Table {table} estimated row size exceeded {limit} bytes; converted {converted} VARCHAR/CHAR columns to TEXT")
    return types
