"""
Domain models for buildhive.

This package contains pure domain logic with no storage coupling.
"""

from .host import BuildHost, HostStatus
from .job import (
    ACTIVE_STATUSES,
    HOST_BOUND_STATUSES,
    TERMINAL_STATUSES,
    Job,
    JobStatus,
    utc_now,
)

__all__ = [
    "ACTIVE_STATUSES",
    "BuildHost",
    "HOST_BOUND_STATUSES",
    "HostStatus",
    "Job",
    "JobStatus",
    "TERMINAL_STATUSES",
    "utc_now",
]
