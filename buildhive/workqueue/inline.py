"""
In-process work queue for tests and single-shot local runs.
"""

from collections import deque

from .interface import WorkQueue


class InlineWorkQueue(WorkQueue):
    def __init__(self):
        self.submitted = deque()

    def submit(self, job_id):
        self.submitted.append(job_id)

    def drain(self, handler):
        """Deliver every pending job id to handler, oldest first."""
        delivered = 0
        while self.submitted:
            handler(self.submitted.popleft())
            delivered += 1
        return delivered
