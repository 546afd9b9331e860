"""
Queue consumer running one Executor invocation per delivery.

Deliveries are acknowledged once the Executor returns, whatever the job's
outcome. A delivery whose handling raises is left unacknowledged and comes
back after the queue's visibility timeout.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import logging
import threading
from typing import Optional

from .errors import QueueError
from .service_layer import Executor
from .service_layer.alarms import raise_alarm
from .workqueue import Delivery, SqliteWorkQueue

LOG = logging.getLogger(__name__)


class QueueWorker:
    def __init__(
        self,
        queue: SqliteWorkQueue,
        executor: Executor,
        concurrency: int = 4,
        poll_interval: float = 1.0,
    ):
        self.queue = queue
        self.executor = executor
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self._slots = threading.BoundedSemaphore(concurrency)
        self._stop = threading.Event()

    def handle(self, delivery: Delivery) -> None:
        """Run the Executor for one delivery and acknowledge it."""
        try:
            job_id = delivery.job_id
        except QueueError as error:
            raise_alarm(self.executor.store, "bad_delivery",
                        "Dropping delivery {}: {}".format(delivery.id, error))
            self.queue.ack(delivery.id)
            return

        self.executor.run(job_id)
        self.queue.ack(delivery.id)

    def process_one(self) -> Optional[Delivery]:
        """Receive and handle a single delivery in the calling thread."""
        delivery = self.queue.receive()
        if delivery is not None:
            self.handle(delivery)
        return delivery

    def _handle_in_slot(self, delivery: Delivery) -> None:
        try:
            self.handle(delivery)
        except Exception:  # pylint: disable=broad-except
            LOG.exception("Delivery %d left for redelivery", delivery.id)
        finally:
            self._slots.release()

    def run_forever(self) -> None:
        LOG.info("Worker started with %d slots", self.concurrency)
        self._stop.clear()
        with ThreadPoolExecutor(max_workers=self.concurrency,
                                thread_name_prefix="buildhive-exec") as pool:
            while not self._stop.is_set():
                if not self._slots.acquire(timeout=self.poll_interval):
                    continue
                try:
                    delivery = self.queue.receive()
                except QueueError as error:
                    self._slots.release()
                    LOG.error("Cannot receive from queue: %s", error)
                    self._stop.wait(self.poll_interval)
                    continue
                if delivery is None:
                    self._slots.release()
                    self._stop.wait(self.poll_interval)
                    continue
                pool.submit(self._handle_in_slot, delivery)
        LOG.info("Worker stopped")

    def stop(self) -> None:
        self._stop.set()
