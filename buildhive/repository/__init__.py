"""
Repository layer for job and build host persistence.

This package contains the store interface and its SQLite implementation.
"""

from .interface import Alarm, BuildStore
from .sqlite_repository import SqliteBuildStore

__all__ = ["Alarm", "BuildStore", "SqliteBuildStore"]
