"""
Periodic matching of pending jobs to idle build hosts.

One run_once() call is one batch: read demand and supply, pair them greedily
in job creation order, persist each pair atomically and hand the job to the
work queue. Overlapping runs (other processes, other schedulers) are safe
because each pair is persisted with a conditional update; the loser of a
race simply moves on.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from buildhive.domain import BuildHost, HostStatus, Job, JobStatus
from buildhive.errors import BuildHiveError, ConflictError, StoreError
from buildhive.repository import BuildStore
from buildhive.workqueue import WorkQueue

from .alarms import raise_alarm
from .selection import FirstAvailable, HostSelector

LOG = logging.getLogger(__name__)


class Assigner:
    def __init__(
        self,
        store: BuildStore,
        queue: WorkQueue,
        selector: Optional[HostSelector] = None,
    ):
        self.store = store
        self.queue = queue
        self.selector = selector or FirstAvailable()

    def run_once(self) -> int:
        """
        Assign as many pending jobs as there are idle hosts.

        Returns:
            Number of jobs persisted as queued and accepted by the work queue
        """
        LOG.info("Running to assign pending jobs to idle hosts...")
        try:
            pending = self.store.find_jobs(
                status=JobStatus.PENDING, order_by="created_at")
            idle = self.store.find_hosts(
                status=HostStatus.IDLE, order_by="created_at")
        except StoreError as error:
            LOG.error("Error fetching pending jobs or idle hosts: %s", error)
            return 0

        if not pending:
            LOG.info("No pending jobs to assign.")
            return 0
        if not idle:
            LOG.info("No idle hosts available for %d pending jobs.",
                     len(pending))
            return 0

        available = list(idle)
        assigned = 0
        for job in pending:
            if not available:
                LOG.info("No more idle hosts for remaining pending jobs.")
                break
            if self._assign_one(job, available):
                assigned += 1

        if assigned:
            LOG.info("Successfully processed %d job assignments.", assigned)
        else:
            LOG.info("No new assignments made in this run.")
        return assigned

    def _assign_one(self, job: Job, available: List[BuildHost]) -> bool:
        """
        Bind `job` to one of `available`, consuming the host on success.

        A host lost to a concurrent run is dropped and the next one tried.
        """
        while available:
            host = self.selector.select(job, available)
            if host is None:
                LOG.debug("No eligible host for job %s", job.id)
                return False
            available.remove(host)

            try:
                self.store.assign(job.id, host.id)
            except ConflictError as error:
                if error.kind == "host":
                    LOG.info("Host %s taken by a concurrent run (%s); "
                             "trying the next one for job %s",
                             host.id, error.actual, job.id)
                    continue
                LOG.info("Job %s already handled by a concurrent run (%s)",
                         job.id, error.actual)
                available.insert(0, host)
                return False
            except BuildHiveError as error:
                raise_alarm(
                    self.store, "assign_failed",
                    "Failed to assign job to host: {}".format(error),
                    job_id=job.id, host_id=host.id)
                return False

            return self._submit(job, host)
        return False

    def _submit(self, job: Job, host: BuildHost) -> bool:
        try:
            self.queue.submit(job.id)
        except Exception as error:  # pylint: disable=broad-except
            LOG.error("Failed to submit job %s for host %s: %s",
                      job.id, host.id, error, exc_info=True)
            self._release(job, host, error)
            return False

        LOG.info("Assigned Job %s to Host %s (ID: %s). Submitted to work queue.",
                 job.id, host.hostname, host.id)
        return True

    def _release(self, job: Job, host: BuildHost, cause: Exception) -> None:
        """Undo a persisted assignment whose hand-off never happened."""
        try:
            self.store.unassign(
                job.id, host.id, status=JobStatus.SUBMISSION_FAILED)
        except BuildHiveError as error:
            raise_alarm(
                self.store, "orphaned_assignment",
                "Enqueue failed ({}) and release failed ({}); job left queued "
                "and host busy".format(cause, error),
                job_id=job.id, host_id=host.id)
            return
        raise_alarm(
            self.store, "submission_failed",
            "Enqueue failed, job marked submission_failed and host released: "
            "{}".format(cause),
            job_id=job.id, host_id=host.id)
