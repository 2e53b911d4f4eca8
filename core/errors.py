#!/usr/bin/env python3
"""
tablesync Error Hierarchy
Canonical exception classes for the replication engine.
"""

import re
from enum import Enum
from typing import Optional


class ErrorCode(Enum):
    UNKNOWN = "UNKNOWN_ERROR"
    CONFIG_ERROR = "CONFIG_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    PLANNING_ERROR = "PLANNING_ERROR"
    EXTRACTION_ERROR = "EXTRACTION_ERROR"
    WRITE_ERROR = "WRITE_ERROR"
    COUNTING_ERROR = "COUNTING_ERROR"


_CREDENTIALS_IN_URL = re.compile(r'://([^:/@]+):([^@]+)@')
_CREDENTIALS_IN_GO_DSN = re.compile(r'^([^:/@]+):([^@]+)@(tcp|unix)\(')
_PASSWORD_KEYWORD = re.compile(r'(password\s*=\s*)(\S+)', re.IGNORECASE)


def mask_credentials(text: str) -> str:
    """Mask passwords embedded in connection strings or driver messages"""
    text = _CREDENTIALS_IN_URL.sub(r'://\1:***@', str(text))
    text = _CREDENTIALS_IN_GO_DSN.sub(r'\1:***@\3(', text)
    return _PASSWORD_KEYWORD.sub(r'\1***', text)


class TableSyncError(Exception):
    """Base class for all tablesync exceptions"""
    def __init__(self, message: str, code: ErrorCode = ErrorCode.UNKNOWN,
                 details: dict = None, table: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}
        self.table = table

    def __str__(self):
        if self.table:
            return f"[{self.table}] {self.message}"
        return self.message

    def for_table(self, table: str) -> 'TableSyncError':
        """Attach the failing table when it was not known where the error was raised"""
        if not self.table:
            self.table = table
        return self


class ConfigError(TableSyncError):
    """Raised when the configuration file or command line is invalid"""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, ErrorCode.CONFIG_ERROR, details)


class DatabaseConnectionError(TableSyncError):
    """Raised when a driver is missing or a database cannot be reached"""
    def __init__(self, message: str, details: dict = None):
        super().__init__(mask_credentials(message), ErrorCode.CONNECTION_ERROR, details)


class PlanningError(TableSyncError):
    """Raised when a job cannot be turned into executable statements"""
    def __init__(self, message: str, details: dict = None, table: str = None):
        super().__init__(message, ErrorCode.PLANNING_ERROR, details, table)


class ExtractionError(TableSyncError):
    """Raised when the source query fails or its rows cannot be fetched"""
    def __init__(self, message: str, details: dict = None, table: str = None):
        super().__init__(message, ErrorCode.EXTRACTION_ERROR, details, table)


class WriteError(TableSyncError):
    """Raised when DDL, insert or commit fails on the target"""
    def __init__(self, message: str, details: dict = None, table: str = None):
        super().__init__(message, ErrorCode.WRITE_ERROR, details, table)


class CountingError(TableSyncError):
    """Raised when a row count query fails; never escapes a table copy"""
    def __init__(self, message: str, details: dict = None, table: str = None):
        super().__init__(message, ErrorCode.COUNTING_ERROR, details, table)
