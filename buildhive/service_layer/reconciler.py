"""
Deadline enforcement for jobs stuck in queued or running.

Nothing interrupts a hung execution strategy and a lost delivery leaves a
job queued forever, so a periodic sweep forces such jobs to failed and gives
their hosts back to the pool.
"""

from __future__ import annotations

from datetime import datetime
import logging
from typing import List, Optional

from buildhive.domain import ACTIVE_STATUSES, HostStatus, Job, JobStatus, utc_now
from buildhive.errors import BuildHiveError, ConflictError
from buildhive.repository import BuildStore

from .alarms import raise_alarm

LOG = logging.getLogger(__name__)

DEFAULT_STUCK_AFTER = 3600.0


class Reconciler:
    def __init__(self, store: BuildStore, stuck_after: float = DEFAULT_STUCK_AFTER):
        self.store = store
        self.stuck_after = stuck_after

    def stuck_jobs(self, now: Optional[datetime] = None) -> List[Job]:
        now = now or utc_now()
        stuck = []
        for status in sorted(ACTIVE_STATUSES, key=lambda s: s.value):
            for job in self.store.find_jobs(status=status, order_by="updated_at"):
                if job.age_seconds(now) > self.stuck_after:
                    stuck.append(job)
        return stuck

    def sweep(self, now: Optional[datetime] = None) -> List[Job]:
        """
        Fail every stuck job and release its host.

        Returns:
            The jobs this sweep moved to failed
        """
        resolved = []
        for job in self.stuck_jobs(now):
            try:
                failed = self.store.update_job(
                    job.id, expect_status=job.status, status=JobStatus.FAILED)
            except ConflictError:
                LOG.debug("Job %s moved on before the sweep reached it", job.id)
                continue
            except BuildHiveError as error:
                raise_alarm(self.store, "reconcile_failed",
                            "Cannot fail stuck job: {}".format(error),
                            job_id=job.id, host_id=job.assigned_host_id)
                continue

            if failed.assigned_host_id:
                try:
                    self.store.update_host(
                        failed.assigned_host_id,
                        expect_status=HostStatus.BUSY,
                        status=HostStatus.IDLE)
                except ConflictError:
                    pass
                except BuildHiveError as error:
                    raise_alarm(self.store, "release_failed",
                                "Cannot release host of stuck job: {}".format(
                                    error),
                                job_id=job.id, host_id=failed.assigned_host_id)

            raise_alarm(
                self.store, "stuck_job",
                "Forced to failed after {:.0f}s in {}".format(
                    job.age_seconds(now), job.status.value),
                job_id=job.id, host_id=job.assigned_host_id)
            resolved.append(failed)

        if resolved:
            LOG.warning("Reconciled %d stuck jobs", len(resolved))
        return resolved
