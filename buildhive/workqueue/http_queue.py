"""
Submit-only client for an external HTTP work queue.

The remote side owns delivery; it is expected to call `hive execute JOB_ID`
(or an equivalent Executor entry point) for every message it receives.
"""

import logging

import requests

from buildhive.errors import QueueError

from .interface import PAYLOAD_KEY, WorkQueue

LOG = logging.getLogger(__name__)


class HttpWorkQueue(WorkQueue):
    def __init__(self, url, timeout=10.0, session=None):
        self.url = url
        self.timeout = timeout
        self._session = session or requests.Session()

    def submit(self, job_id):
        headers = {
            'Content-Type': 'application/json; charset=UTF-8',
        }
        try:
            ret = self._session.post(
                self.url,
                json={PAYLOAD_KEY: job_id},
                headers=headers,
                timeout=self.timeout)
            ret.raise_for_status()
        except requests.RequestException as error:
            raise QueueError("submit {} to {}: {}".format(
                job_id, self.url, error)) from error
        LOG.debug("posted job %s to %s (%d)", job_id, self.url, ret.status_code)

    def close(self):
        self._session.close()
