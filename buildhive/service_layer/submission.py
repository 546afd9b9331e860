"""
Submission and registration paths that feed the dispatch subsystem.

This module contains the JobService class which validates caller input and
creates the Job and BuildHost records the Assigner later works on. Nothing
here touches the work queue: a submitted job waits as pending until an
Assigner run picks it up.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Tuple

from buildhive.domain import BuildHost, HostStatus, Job
from buildhive.errors import NotFoundError, PermissionDenied, ValidationError
from buildhive.repository import BuildStore

LOG = logging.getLogger(__name__)

# membership(user, team_id) -> bool
MembershipCheck = Callable[[object, str], bool]


class JobService:
    """
    Service for the caller-facing side of jobs and hosts.

    This class covers:
    - Submitting jobs
    - Registering build hosts
    - Operator status changes on hosts
    - Team-scoped listings
    """

    def __init__(
        self, store: BuildStore, membership: Optional[MembershipCheck] = None
    ):
        """
        Initialize service.

        Args:
            store: Build store for persistence
            membership: Optional team membership oracle; when given, every
                call made with a user is checked against it
        """
        self.store = store
        self.membership = membership

    def _authorize(self, user, team_id: str, action: str) -> None:
        if user is None or self.membership is None:
            return
        if not self.membership(user, team_id):
            raise PermissionDenied(
                "User is not authorized to {} for this team.".format(action))

    def submit_job(self, team_id: str, payload: str, user=None) -> Job:
        """
        Create a pending job.

        Raises:
            ValidationError: If payload or team id is missing
            PermissionDenied: If the user is not in the team
        """
        if not payload:
            raise ValidationError("Job payload is required.")
        if not team_id:
            raise ValidationError("Team ID is required.")
        self._authorize(user, team_id, "submit jobs")

        job = self.store.create_job(team_id, payload)
        LOG.info("Job %s created with status %s. It will be picked up by "
                 "the assigner.", job.id, job.status.value)
        return job

    def team_jobs(self, team_id: str, user=None) -> List[Job]:
        """Jobs of a team, newest first."""
        if not team_id:
            raise ValidationError("Team ID is required.")
        self._authorize(user, team_id, "view jobs")
        return self.store.find_jobs(
            team_id=team_id, order_by="created_at", descending=True)

    def job_details(
        self, job_id: str, user=None
    ) -> Tuple[Job, Optional[BuildHost]]:
        """
        A job together with its assigned host, if any.

        Raises:
            NotFoundError: If the job does not exist
        """
        if not job_id:
            raise ValidationError("Job ID is required.")
        job = self.store.get_job(job_id)
        if job is None:
            raise NotFoundError("job", job_id)
        self._authorize(user, job.team_id, "view this job")
        host = None
        if job.assigned_host_id:
            host = self.store.get_host(job.assigned_host_id)
        return job, host

    def register_host(self, team_id: str, hostname: str, user=None) -> BuildHost:
        """
        Register an idle build host.

        Raises:
            ValidationError: If a field is missing or the hostname is taken
                within the team
        """
        if not hostname:
            raise ValidationError("Hostname is required.")
        if not team_id:
            raise ValidationError("Team ID is required.")
        self._authorize(user, team_id, "register hosts")

        host = self.store.create_host(team_id, hostname)
        LOG.info("Registered host %s (%s) for team %s",
                 host.hostname, host.id, team_id)
        return host

    def team_hosts(self, team_id: str, user=None) -> List[BuildHost]:
        """Hosts of a team, ordered by hostname."""
        if not team_id:
            raise ValidationError("Team ID is required.")
        self._authorize(user, team_id, "view hosts")
        return self.store.find_hosts(team_id=team_id, order_by="hostname")

    def update_host_status(self, host_id: str, status: str, user=None) -> BuildHost:
        """
        Operator status change, e.g. taking a host offline for maintenance.

        Raises:
            ValidationError: If the status is not a host status value, or is
                busy
            NotFoundError: If the host does not exist
            ConflictError: If setting idle while a queued or running job
                holds the host
        """
        if not host_id or not status:
            raise ValidationError("Host ID and status are required.")
        try:
            new_status = HostStatus(status)
        except ValueError:
            raise ValidationError(
                "Invalid status value. Must be one of: {}".format(
                    ", ".join(s.value for s in HostStatus))) from None
        if new_status == HostStatus.BUSY:
            raise ValidationError(
                "Hosts become busy only by job assignment.")

        host = self.store.get_host(host_id)
        if host is None:
            raise NotFoundError("host", host_id)
        self._authorize(user, host.team_id, "update this build host")

        updated = self.store.update_host(host_id, status=new_status)
        LOG.info("Host %s status %s -> %s",
                 host_id, host.status.value, updated.status.value)
        return updated
