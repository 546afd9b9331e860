"""
Pure domain model for build jobs.

This module contains the Job dataclass and its status vocabulary with no
coupling to the storage layer. All persistence logic is handled by the
repository layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional
import uuid

from dateutil.tz import tzutc

from ..errors import ValidationError


def utc_now() -> datetime:
    return datetime.now(tzutc())


def new_id() -> str:
    return uuid.uuid4().hex


class JobStatus(Enum):
    """Job lifecycle states. The values are part of the wire contract."""

    PENDING = "pending"  # Submitted, waiting for a host
    QUEUED = "queued"  # Bound to a host, handed to the work queue
    RUNNING = "running"  # Executor owns it
    COMPLETED = "completed"
    FAILED = "failed"
    SUBMISSION_FAILED = "submission_failed"  # Enqueue failed, host released

    @property
    def holds_host(self) -> bool:
        """True while a job in this status keeps its host busy."""
        return self in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


# Statuses in which assigned_host_id must be set
HOST_BOUND_STATUSES = frozenset([
    JobStatus.QUEUED,
    JobStatus.RUNNING,
    JobStatus.COMPLETED,
    JobStatus.FAILED,
])
ACTIVE_STATUSES = frozenset([JobStatus.QUEUED, JobStatus.RUNNING])
TERMINAL_STATUSES = frozenset([JobStatus.COMPLETED, JobStatus.FAILED])


@dataclass
class Job:
    """
    A unit of build work owned by a team.

    The payload is opaque text and is never interpreted by the dispatch
    subsystem.
    """

    team_id: str
    payload: str
    id: str = field(default_factory=new_id)
    status: JobStatus = JobStatus.PENDING
    assigned_host_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = utc_now()
        if self.updated_at is None:
            self.updated_at = self.created_at
        if not isinstance(self.status, JobStatus):
            self.status = JobStatus(self.status)

    def validate(self) -> None:
        """
        Check the record is complete and the host binding matches the status.

        Raises:
            ValidationError: on a missing identifier or a broken binding
        """
        if not self.id:
            raise ValidationError("Job id is required.")
        if not self.team_id:
            raise ValidationError("Team ID is required.")
        if self.payload is None:
            raise ValidationError("Job payload is required.")
        bound = self.assigned_host_id is not None
        if bound != (self.status in HOST_BOUND_STATUSES):
            raise ValidationError(
                "Job {} in status {} {} an assigned host".format(
                    self.id, self.status.value,
                    "must not have" if bound else "must have"))

    def is_active(self) -> bool:
        return self.status.holds_host

    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        """Seconds since the last status change."""
        now = now or utc_now()
        return (now - self.updated_at).total_seconds()

    def __str__(self) -> str:
        host = self.assigned_host_id or "-"
        return f"[{self.id}] team={self.team_id} {self.status.value} host={host}"
