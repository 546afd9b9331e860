"""
Repository interface for job and build host persistence.

This module defines the abstract interface that all store implementations
must follow. The store is the only shared mutable resource between the
Assigner and Executor, which may run in different processes, so every
operation that races is expressed as a conditional update.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from buildhive.domain import BuildHost, HostStatus, Job, JobStatus, utc_now
from buildhive.domain.job import new_id


@dataclass
class Alarm:
    """A dead-letter record for a transition that could not be completed."""

    kind: str
    message: str
    job_id: Optional[str] = None
    host_id: Optional[str] = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)


class BuildStore(ABC):
    """
    Abstract store for Job and BuildHost records.

    Implementations handle the actual database interaction.
    """

    @abstractmethod
    def create_job(self, team_id: str, payload: str) -> Job:
        """
        Insert a new pending job.

        Args:
            team_id: Owning team
            payload: Opaque job payload text

        Returns:
            The stored job
        """

    @abstractmethod
    def create_host(self, team_id: str, hostname: str) -> BuildHost:
        """
        Insert a new idle host.

        Raises:
            ValidationError: If the hostname already exists in the team
        """

    @abstractmethod
    def get_job(self, job_id: str) -> Optional[Job]:
        """Get a job by id, None if missing."""

    @abstractmethod
    def get_host(self, host_id: str) -> Optional[BuildHost]:
        """Get a host by id, None if missing."""

    @abstractmethod
    def find_jobs(
        self,
        status: Optional[JobStatus] = None,
        team_id: Optional[str] = None,
        order_by: str = "created_at",
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Job]:
        """
        Find jobs matching criteria.

        Args:
            status: Filter by status (None = all statuses)
            team_id: Filter by owning team (None = all teams)
            order_by: Column to order by
            descending: Reverse the order
            limit: Maximum number of results (None = no limit)

        Returns:
            List of matching jobs
        """

    @abstractmethod
    def find_hosts(
        self,
        status: Optional[HostStatus] = None,
        team_id: Optional[str] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[BuildHost]:
        """
        Find hosts matching criteria.

        With order_by=None no particular order is promised.
        """

    @abstractmethod
    def update_job(
        self,
        job_id: str,
        expect_status: Optional[JobStatus] = None,
        **fields,
    ) -> Job:
        """
        Update fields of a job.

        Args:
            job_id: The job id
            expect_status: Only apply the update if the job is currently in
                this status
            fields: Columns to set (status, assigned_host_id, payload)

        Returns:
            The updated job

        Raises:
            NotFoundError: If the job does not exist
            ConflictError: If expect_status does not match
            ValidationError: On an unknown field, a host rebinding, or a
                result whose host binding does not match its status
        """

    @abstractmethod
    def update_host(
        self,
        host_id: str,
        expect_status: Optional[HostStatus] = None,
        **fields,
    ) -> BuildHost:
        """
        Update fields of a host. Same contract as update_job; setting IDLE
        raises ConflictError while a queued or running job holds the host.
        """

    @abstractmethod
    def assign(self, job_id: str, host_id: str) -> Job:
        """
        Atomically bind a pending job to an idle host.

        The job becomes QUEUED with assigned_host_id set and the host
        becomes BUSY, or neither changes.

        Raises:
            NotFoundError: If either record is missing
            ConflictError: If the job is no longer pending or the host is no
                longer idle; `kind` names the loser
        """

    @abstractmethod
    def unassign(
        self,
        job_id: str,
        host_id: str,
        status: JobStatus = JobStatus.SUBMISSION_FAILED,
    ) -> Job:
        """
        Compensate a failed hand-off: atomically clear the job's host binding,
        move the job to `status` and put the host back to IDLE.
        """

    @abstractmethod
    def record_alarm(
        self,
        kind: str,
        message: str,
        job_id: Optional[str] = None,
        host_id: Optional[str] = None,
    ) -> Alarm:
        """Append a dead-letter record."""

    @abstractmethod
    def find_alarms(
        self, kind: Optional[str] = None, limit: Optional[int] = None
    ) -> List[Alarm]:
        """Alarms, newest first."""

    @abstractmethod
    def acquire_lease(self, name: str, owner: str, ttl_seconds: float) -> bool:
        """
        Take or renew a named lease.

        Returns True if `owner` now holds the lease, False if another owner
        holds an unexpired one.
        """

    @abstractmethod
    def release_lease(self, name: str, owner: str) -> None:
        """Drop a lease if `owner` holds it."""

    @abstractmethod
    def count_jobs(self) -> Dict[JobStatus, int]:
        """Number of jobs per status."""

    @abstractmethod
    def count_hosts(self) -> Dict[HostStatus, int]:
        """Number of hosts per status."""

    @abstractmethod
    def close(self) -> None:
        """Close store and release resources."""
