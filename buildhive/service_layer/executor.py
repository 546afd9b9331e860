"""
Drives one delivered job from queued to a terminal status.

Executor.run() is invoked once per work queue delivery and may run
concurrently with other invocations, including duplicates for the same job.
Each invocation re-reads the job and claims it with a conditional
queued->running update, so only one of them ever executes the build.
"""

from __future__ import annotations

import logging
from typing import Optional

from buildhive.domain import BuildHost, HostStatus, Job, JobStatus
from buildhive.errors import BuildHiveError, ConflictError, StoreError
from buildhive.repository import BuildStore
from buildhive.strategies import ExecutionStrategy, Outcome

from .alarms import raise_alarm

LOG = logging.getLogger(__name__)


class Executor:
    def __init__(self, store: BuildStore, strategy: ExecutionStrategy):
        self.store = store
        self.strategy = strategy

    def run(self, job_id: str) -> Optional[Job]:
        """
        Execute `job_id` and release its host.

        Returns:
            The job as last written by this invocation, the unchanged job for
            a duplicate delivery, or None when nothing could be done.
        """
        LOG.info("Started handling job %s", job_id)
        try:
            job = self.store.get_job(job_id)
        except StoreError as error:
            LOG.error("Error fetching job %s: %s", job_id, error)
            return None

        if job is None:
            LOG.error("Job %s not found.", job_id)
            return None

        if job.is_terminal():
            LOG.warning("Job %s is already in a terminal state: %s. Skipping.",
                        job_id, job.status.value)
            return job

        try:
            job = self.store.update_job(
                job_id, expect_status=JobStatus.QUEUED, status=JobStatus.RUNNING)
        except ConflictError as error:
            LOG.warning("Job %s not claimable (%s). Skipping.", job_id, error)
            return None
        except BuildHiveError as error:
            raise_alarm(
                self.store, "start_failed",
                "Failed to update job to running: {}".format(error),
                job_id=job_id)
            return None
        LOG.info("Job %s status updated to %s.", job_id, job.status.value)

        outcome = self._execute(job, self._host_of(job))
        final = JobStatus.COMPLETED if outcome.succeeded else JobStatus.FAILED

        try:
            job = self.store.update_job(
                job_id, expect_status=JobStatus.RUNNING, status=final)
        except ConflictError as error:
            # The reconciler already resolved this job and freed its host
            LOG.warning("Job %s was resolved elsewhere while running (%s); "
                        "dropping %s result", job_id, error, final.value)
            return None
        except BuildHiveError as error:
            raise_alarm(
                self.store, "finish_failed",
                "Failed to update job to {}; job stuck running: {}".format(
                    final.value, error),
                job_id=job_id, host_id=job.assigned_host_id)
            return None
        LOG.info("Job %s status updated to %s (%s).",
                 job_id, final.value, outcome.detail)

        if job.assigned_host_id:
            self._release_host(job)
        else:
            LOG.info("Job %s had no assigned host.", job_id)

        LOG.info("Finished handling job %s. Final status: %s.",
                 job_id, job.status.value)
        return job

    def _host_of(self, job: Job) -> Optional[BuildHost]:
        if not job.assigned_host_id:
            return None
        try:
            return self.store.get_host(job.assigned_host_id)
        except StoreError as error:
            LOG.warning("Cannot load host %s for job %s: %s",
                        job.assigned_host_id, job.id, error)
            return None

    def _execute(self, job: Job, host: Optional[BuildHost]) -> Outcome:
        try:
            return self.strategy.execute(job, host)
        except Exception as error:  # pylint: disable=broad-except
            LOG.exception("Execution strategy %s raised for job %s",
                          self.strategy.name, job.id)
            return Outcome(False, "strategy error: {}".format(error))

    def _release_host(self, job: Job) -> None:
        host_id = job.assigned_host_id
        try:
            self.store.update_host(
                host_id, expect_status=HostStatus.BUSY, status=HostStatus.IDLE)
        except ConflictError as error:
            # Operator statuses win over the release
            LOG.info("Host %s left as %s after job %s",
                     host_id, error.actual, job.id)
            return
        except BuildHiveError as error:
            raise_alarm(
                self.store, "release_failed",
                "Failed to update host to idle; host stuck busy: {}".format(
                    error),
                job_id=job.id, host_id=host_id)
            return
        LOG.info("Build host %s status updated to idle.", host_id)
