#!/usr/bin/env python3
"""
tablesync Core Package
Multi-dialect table replication engine.
"""

__version__ = "1.0.0"
