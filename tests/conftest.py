#!/usr/bin/env python3
"""
tablesync Test Configuration - PyTest Fixtures

Source and target databases are SQLite files in a per-test temporary
directory, opened through the real connection provider.
"""

import os
import sqlite3
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.database_manager import DatabaseManager
from core.events import EventBus, RecordingListener
from sqlite_helpers import create_table


@pytest.fixture
def source_path(tmp_path):
    return str(tmp_path / "source.db")


@pytest.fixture
def target_path(tmp_path):
    path = str(tmp_path / "target.db")
    # Make sure the file exists even for tests that never create a table
    sqlite3.connect(path).close()
    return path


@pytest.fixture
def manager():
    return DatabaseManager()


@pytest.fixture
def source(manager, source_path):
    sqlite3.connect(source_path).close()
    conn = manager.connect("sqlite3", source_path)
    yield conn
    conn.close()


@pytest.fixture
def target(manager, target_path):
    conn = manager.connect("sqlite3", target_path)
    yield conn
    conn.close()


@pytest.fixture
def recorder():
    return RecordingListener()


@pytest.fixture
def events(recorder):
    return EventBus([recorder])


@pytest.fixture
def users_source(source_path):
    """Source with a three-row ``users`` table"""
    create_table(
        source_path,
        "CREATE TABLE users (user_id INTEGER NOT NULL, name VARCHAR(50), balance DECIMAL(10,2))",
        [(1, 'alice', 10.5), (2, 'bob', 20.0), (3, 'carol', None)],
        "INSERT INTO users VALUES (?, ?, ?)",
    )
    return source_path


def pytest_configure(config):
    """Configure custom pytest markers"""
    config.addinivalue_line("markers", "unit: Unit tests that test individual components")
    config.addinivalue_line("markers", "integration: Tests that copy data between real SQLite databases")
