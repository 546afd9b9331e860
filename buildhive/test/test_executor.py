"""
Tests for the Executor.
"""

import unittest
from unittest import mock

from buildhive.domain import HostStatus, JobStatus
from buildhive.errors import StoreError
from buildhive.service_layer import Assigner, Executor
from buildhive.workqueue import InlineWorkQueue

from .helpers import FixedStrategy, StoreTestMixin


class TestExecutor(StoreTestMixin, unittest.TestCase):
    def setUp(self):
        super().setUp()
        self.queue = InlineWorkQueue()

    def queued_job(self, payload="make all"):
        job = self.store.create_job("t1", payload)
        host = self.store.create_host("t1", "b-{}".format(job.id[:8]))
        Assigner(self.store, self.queue).run_once()
        return self.store.get_job(job.id), host

    def test_success(self):
        job, host = self.queued_job()
        strategy = FixedStrategy(succeeded=True)

        result = Executor(self.store, strategy).run(job.id)

        self.assertEqual(JobStatus.COMPLETED, result.status)
        self.assertEqual(host.id, result.assigned_host_id)
        self.assertEqual(JobStatus.COMPLETED, self.store.get_job(job.id).status)
        self.assertEqual(HostStatus.IDLE, self.store.get_host(host.id).status)
        self.assertEqual(1, len(strategy.calls))

    def test_failure(self):
        job, host = self.queued_job()

        result = Executor(self.store, FixedStrategy(succeeded=False)).run(job.id)

        self.assertEqual(JobStatus.FAILED, result.status)
        self.assertEqual(host.id, result.assigned_host_id)
        self.assertEqual(HostStatus.IDLE, self.store.get_host(host.id).status)

    def test_running_while_executing(self):
        job, host = self.queued_job()
        seen = []

        def hook(running_job, running_host):
            seen.append(self.store.get_job(running_job.id).status)
            seen.append(self.store.get_host(running_host.id).status)

        Executor(self.store, FixedStrategy(hook=hook)).run(job.id)

        self.assertEqual([JobStatus.RUNNING, HostStatus.BUSY], seen)

    def test_strategy_sees_payload_and_host(self):
        payload = '{"repo": "git@example.com:x.git", "ref": "main"}'
        job, host = self.queued_job(payload)
        strategy = FixedStrategy()

        Executor(self.store, strategy).run(job.id)

        seen_job, seen_host = strategy.calls[0]
        self.assertEqual(payload, seen_job.payload)
        self.assertEqual(host.id, seen_host.id)

    def test_duplicate_delivery_is_noop(self):
        job, host = self.queued_job()
        strategy = FixedStrategy()
        executor = Executor(self.store, strategy)
        executor.run(job.id)
        before = self.store.get_job(job.id)

        again = executor.run(job.id)

        self.assertEqual(JobStatus.COMPLETED, again.status)
        self.assertEqual(before.updated_at, self.store.get_job(job.id).updated_at)
        self.assertEqual(1, len(strategy.calls))
        self.assertEqual(HostStatus.IDLE, self.store.get_host(host.id).status)

    def test_terminal_job_host_untouched(self):
        job, host = self.queued_job()
        Executor(self.store, FixedStrategy()).run(job.id)
        other = self.store.create_job("t1", "next")
        Assigner(self.store, self.queue).run_once()
        self.assertEqual(HostStatus.BUSY, self.store.get_host(host.id).status)

        # redelivery of the finished job must not free the reused host
        Executor(self.store, FixedStrategy()).run(job.id)

        self.assertEqual(HostStatus.BUSY, self.store.get_host(host.id).status)
        self.assertEqual(JobStatus.QUEUED, self.store.get_job(other.id).status)

    def test_job_not_found(self):
        strategy = FixedStrategy()
        self.assertIsNone(Executor(self.store, strategy).run("no-such-job"))
        self.assertEqual([], strategy.calls)

    def test_pending_job_not_claimed(self):
        job = self.store.create_job("t1", "x")
        strategy = FixedStrategy()

        self.assertIsNone(Executor(self.store, strategy).run(job.id))

        self.assertEqual(JobStatus.PENDING, self.store.get_job(job.id).status)
        self.assertEqual([], strategy.calls)

    def test_strategy_raises(self):
        job, host = self.queued_job()
        strategy = FixedStrategy(error=RuntimeError("agent crashed"))

        result = Executor(self.store, strategy).run(job.id)

        self.assertEqual(JobStatus.FAILED, result.status)
        self.assertEqual(HostStatus.IDLE, self.store.get_host(host.id).status)

    def test_operator_status_survives_release(self):
        job, host = self.queued_job()

        def hook(_job, running_host):
            self.store.update_host(running_host.id, status=HostStatus.MAINTENANCE)

        Executor(self.store, FixedStrategy(hook=hook)).run(job.id)

        self.assertEqual(JobStatus.COMPLETED, self.store.get_job(job.id).status)
        self.assertEqual(HostStatus.MAINTENANCE,
                         self.store.get_host(host.id).status)

    def test_resolved_elsewhere_while_running(self):
        job, host = self.queued_job()

        def hook(running_job, _host):
            # what a deadline sweep does to a job it considers stuck
            self.store.update_job(running_job.id, status=JobStatus.FAILED)
            self.store.update_host(host.id, status=HostStatus.IDLE)
            self.store.create_job("t1", "next")
            Assigner(self.store, self.queue).run_once()

        result = Executor(self.store, FixedStrategy(hook=hook)).run(job.id)

        self.assertIsNone(result)
        self.assertEqual(JobStatus.FAILED, self.store.get_job(job.id).status)
        # the host now belongs to the next job
        self.assertEqual(HostStatus.BUSY, self.store.get_host(host.id).status)

    def test_final_update_fails_keeps_host_busy(self):
        job, host = self.queued_job()
        real_update = self.store.update_job

        def flaky_update(job_id, expect_status=None, **fields):
            if fields.get("status") == JobStatus.COMPLETED:
                raise StoreError("database is locked")
            return real_update(job_id, expect_status=expect_status, **fields)

        with mock.patch.object(self.store, "update_job", side_effect=flaky_update):
            result = Executor(self.store, FixedStrategy()).run(job.id)

        self.assertIsNone(result)
        self.assertEqual(JobStatus.RUNNING, self.store.get_job(job.id).status)
        self.assertEqual(HostStatus.BUSY, self.store.get_host(host.id).status)
        self.assertEqual(1, len(self.store.find_alarms(kind="finish_failed")))

    def test_host_release_failure_raises_alarm(self):
        job, host = self.queued_job()

        with mock.patch.object(self.store, "update_host",
                               side_effect=StoreError("database is locked")):
            result = Executor(self.store, FixedStrategy()).run(job.id)

        self.assertEqual(JobStatus.COMPLETED, result.status)
        self.assertEqual(HostStatus.BUSY, self.store.get_host(host.id).status)
        alarms = self.store.find_alarms(kind="release_failed")
        self.assertEqual(host.id, alarms[0].host_id)

    def test_end_to_end_through_queue(self):
        jobs = [self.store.create_job("t1", str(i)) for i in range(3)]
        hosts = [self.store.create_host("t1", "b{}".format(i)) for i in range(2)]
        assigner = Assigner(self.store, self.queue)
        executor = Executor(self.store, FixedStrategy())

        assigner.run_once()
        self.assertEqual(2, self.queue.drain(executor.run))
        assigner.run_once()
        self.assertEqual(1, self.queue.drain(executor.run))

        for job in jobs:
            self.assertEqual(JobStatus.COMPLETED, self.store.get_job(job.id).status)
        for host in hosts:
            self.assertEqual(HostStatus.IDLE, self.store.get_host(host.id).status)
