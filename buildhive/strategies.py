"""
Execution strategies: how a build actually runs on its host.

The Executor owns every status transition; a strategy only reports whether
the build succeeded. Strategies are resolved by name, see
buildhive.plugins.Plugins.executionStrategy.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
import logging
import random
import time
from typing import Callable, Optional

import requests

from .domain import BuildHost, Job

LOG = logging.getLogger(__name__)

DEFAULT_DURATION_MS = 15000
DEFAULT_SUCCESS_RATE = 0.7


@dataclass
class Outcome:
    succeeded: bool
    detail: Optional[str] = None


class ExecutionStrategy(ABC):
    name = None

    @abstractmethod
    def execute(self, job: Job, host: Optional[BuildHost]) -> Outcome:
        """
        Run the build for `job` on `host` and report the result.

        May block for as long as the build takes. Raising counts as a
        failed build.
        """


class SimulatedStrategy(ExecutionStrategy):
    """Sleep for a fixed duration, then succeed at random."""

    name = "simulated"

    def __init__(
        self,
        duration_ms: int = DEFAULT_DURATION_MS,
        success_rate: float = DEFAULT_SUCCESS_RATE,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.duration_ms = duration_ms
        self.success_rate = success_rate
        self._rng = rng or random.Random()
        self._sleep = sleep

    def execute(self, job, host):
        LOG.info("Simulating work for job %s (%.1f seconds)",
                 job.id, self.duration_ms / 1000.0)
        self._sleep(self.duration_ms / 1000.0)
        # success when the draw lands above the failure band
        succeeded = self._rng.random() > 1.0 - self.success_rate
        return Outcome(succeeded, "simulated")


class RemoteAgentStrategy(ExecutionStrategy):
    """
    Ask a build agent on the host to run the job.

    The agent receives {"jobId", "teamId", "payload"} and answers
    {"succeeded": bool, "detail": str}.
    """

    name = "remote"

    def __init__(self, url_template: str, timeout: float = 30.0, session=None):
        self.url_template = url_template
        self.timeout = timeout
        self._session = session or requests.Session()

    def execute(self, job, host):
        if host is None:
            return Outcome(False, "no host to run on")
        url = self.url_template.format(hostname=host.hostname, host_id=host.id)
        payload = {
            "jobId": job.id,
            "teamId": job.team_id,
            "payload": job.payload,
        }
        try:
            ret = self._session.post(url, json=payload, timeout=self.timeout)
            ret.raise_for_status()
            body = ret.json()
        except (requests.RequestException, ValueError) as error:
            LOG.warning("agent %s failed for job %s: %s", url, job.id, error)
            return Outcome(False, str(error))
        try:
            return Outcome(bool(body["succeeded"]), body.get("detail"))
        except (KeyError, TypeError, AttributeError):
            return Outcome(False, "malformed agent reply {!r}".format(body))
