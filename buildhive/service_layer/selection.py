"""
Host selection policies used by the Assigner.

A policy picks one host for a job out of the hosts still available in the
current Assigner run. Returning None leaves the job pending for this run.
"""

from abc import ABC, abstractmethod
import random
from typing import List, Optional

from buildhive.domain import BuildHost, Job


class HostSelector(ABC):
    name = None

    @abstractmethod
    def select(self, job: Job, hosts: List[BuildHost]) -> Optional[BuildHost]:
        """Return one element of `hosts` (non-empty) or None."""


class FirstAvailable(HostSelector):
    """Take hosts in whatever order the store returned them."""

    name = "first"

    def select(self, job, hosts):
        return hosts[0] if hosts else None


class RandomHost(HostSelector):
    name = "random"

    def __init__(self, rng=None):
        self._rng = rng or random.Random()

    def select(self, job, hosts):
        return self._rng.choice(hosts) if hosts else None


class TeamAffinity(HostSelector):
    """Only run a job on a host registered by the job's own team."""

    name = "team"

    def select(self, job, hosts):
        for host in hosts:
            if host.team_id == job.team_id:
                return host
        return None


BUILTIN_SELECTORS = {
    cls.name: cls for cls in (FirstAvailable, RandomHost, TeamAffinity)
}
