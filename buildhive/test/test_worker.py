"""
Tests for the queue worker.
"""

import os
import threading
import unittest
from unittest import mock

from buildhive.domain import HostStatus, JobStatus
from buildhive.service_layer import Assigner, Executor
from buildhive.worker import QueueWorker
from buildhive.workqueue import SqliteWorkQueue

from .helpers import FixedStrategy, StoreTestMixin


class TestQueueWorker(StoreTestMixin, unittest.TestCase):
    def setUp(self):
        super().setUp()
        self.queue = SqliteWorkQueue(os.path.join(self.temp_dir, "queue.db"))
        self.strategy = FixedStrategy()
        self.executor = Executor(self.store, self.strategy)

    def tearDown(self):
        self.queue.close()
        super().tearDown()

    def assign(self, count):
        jobs = [self.store.create_job("t1", str(i)) for i in range(count)]
        for i in range(count):
            self.store.create_host("t1", "b{}".format(i))
        Assigner(self.store, self.queue).run_once()
        return jobs

    def test_process_one(self):
        job, = self.assign(1)
        worker = QueueWorker(self.queue, self.executor)

        delivery = worker.process_one()

        self.assertEqual(job.id, delivery.job_id)
        self.assertEqual(JobStatus.COMPLETED, self.store.get_job(job.id).status)
        self.assertEqual(0, self.queue.depth())
        self.assertIsNone(worker.process_one())

    def test_failed_job_still_acked(self):
        job, = self.assign(1)
        executor = Executor(self.store, FixedStrategy(succeeded=False))

        QueueWorker(self.queue, executor).process_one()

        self.assertEqual(JobStatus.FAILED, self.store.get_job(job.id).status)
        self.assertEqual(0, self.queue.depth())

    def test_bad_delivery_dropped_with_alarm(self):
        with self.queue._transaction() as conn:
            conn.execute(
                "INSERT INTO deliveries (body, enqueued_at, visible_at) "
                "VALUES ('garbage', 0, 0)")

        QueueWorker(self.queue, self.executor).process_one()

        self.assertEqual(0, self.queue.depth())
        self.assertEqual(1, len(self.store.find_alarms(kind="bad_delivery")))

    def test_executor_crash_leaves_delivery(self):
        self.assign(1)
        executor = mock.MagicMock()
        executor.run.side_effect = RuntimeError("worker died")
        worker = QueueWorker(self.queue, executor)

        delivery = self.queue.receive(visibility_timeout=0)
        worker._slots.acquire()
        worker._handle_in_slot(delivery)

        self.assertEqual(1, self.queue.depth())
        self.assertEqual(2, self.queue.receive().attempts)

    def test_run_forever_drains_queue(self):
        jobs = self.assign(3)
        worker = QueueWorker(self.queue, self.executor, concurrency=2,
                             poll_interval=0.01)
        done = threading.Event()

        def watch():
            while self.queue.depth():
                done.wait(0.01)
            worker.stop()

        watcher = threading.Thread(target=watch)
        watcher.start()
        worker.run_forever()
        watcher.join()

        for job in jobs:
            self.assertEqual(JobStatus.COMPLETED,
                             self.store.get_job(job.id).status)
        idle = self.store.find_hosts(status=HostStatus.IDLE)
        self.assertEqual(3, len(idle))
