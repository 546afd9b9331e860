"""
Service layer for dispatch logic.

This package contains the Assigner and Executor, which drive jobs through
their lifecycle, plus the submission paths and the stuck-state sweep that
surround them.
"""

from .assigner import Assigner
from .executor import Executor
from .health import health_snapshot
from .reconciler import Reconciler
from .selection import FirstAvailable, HostSelector, RandomHost, TeamAffinity
from .submission import JobService

__all__ = [
    "Assigner",
    "Executor",
    "FirstAvailable",
    "HostSelector",
    "JobService",
    "RandomHost",
    "Reconciler",
    "TeamAffinity",
    "health_snapshot",
]
