#!/usr/bin/env python3
"""Include/exclude regex filters for discovered table names"""

import logging
import re
from typing import Iterable, List, Pattern, Sequence, Tuple

logger = logging.getLogger(__name__)


def _compile(patterns: Iterable[str], kind: str) -> List[Pattern]:
    compiled = []
    for pattern in patterns or ():
        pattern = (pattern or "").strip()
        if not pattern:
            continue
        try:
            compiled.append(re.compile(pattern))
        except re.error as e:
            logger.warning(f"Ignoring invalid {kind} pattern {pattern!r}: {e}")
    return compiled


def compile_table_filters(include: Iterable[str] = (), exclude: Iterable[str] = ()) -> Tuple[List[Pattern], List[Pattern]]:
    """Compile include/exclude regular expressions, skipping blank or invalid ones"""
    return (_compile(include, "include"), _compile(exclude, "exclude"))


def matches_table_filters(name: str, include: Sequence[Pattern], exclude: Sequence[Pattern]) -> bool:
    """Exclusion wins; an empty include list admits every name"""
    if any(p.search(name) for p in exclude):
        return False
    if not include:
        return True
    return any(p.search(name) for p in include)


def filter_tables(names: Iterable[str], include: Iterable[str] = (), exclude: Iterable[str] = ()) -> List[str]:
    include_re, exclude_re = compile_table_filters(include, exclude)
    return [name for name in names if matches_table_filters(name, include_re, exclude_re)]
