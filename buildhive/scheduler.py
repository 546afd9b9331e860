"""
Recurring trigger for periodic dispatch passes.

Each tick runs its task only while holding a named lease in the store, so
schedulers started in several processes never run overlapping passes. The
lease is a guard on top of the store's conditional updates, not a
replacement for them.
"""

from __future__ import annotations

import logging
import os
import socket
import threading
from typing import Any, Callable, Optional

from .errors import BuildHiveError, StoreError
from .repository import BuildStore

LOG = logging.getLogger(__name__)


def default_owner() -> str:
    return "{}:{}:{}".format(
        socket.gethostname(), os.getpid(), threading.get_ident())


class IntervalScheduler:
    def __init__(
        self,
        task: Callable[[], Any],
        store: BuildStore,
        interval: float,
        lease_name: str = "assigner",
        lease_ttl: float = 60.0,
        owner: Optional[str] = None,
    ):
        self.task = task
        self.store = store
        self.interval = interval
        self.lease_name = lease_name
        self.lease_ttl = lease_ttl
        self.owner = owner or default_owner()
        self._stop = threading.Event()

    def tick(self) -> Optional[Any]:
        """
        Run the task once if the lease can be taken.

        Returns:
            The task's result, or None when another owner holds the lease
        """
        try:
            if not self.store.acquire_lease(
                    self.lease_name, self.owner, self.lease_ttl):
                LOG.debug("%s lease held elsewhere; skipping tick",
                          self.lease_name)
                return None
        except StoreError as error:
            LOG.error("Cannot take %s lease: %s", self.lease_name, error)
            return None

        try:
            return self.task()
        finally:
            try:
                self.store.release_lease(self.lease_name, self.owner)
            except StoreError as error:
                # expires on its own after lease_ttl
                LOG.warning("Cannot release %s lease: %s", self.lease_name, error)

    def run_forever(self, max_ticks: Optional[int] = None) -> int:
        """Tick every `interval` seconds until stop() or max_ticks."""
        ticks = 0
        self._stop.clear()
        while not self._stop.is_set():
            try:
                self.tick()
            except BuildHiveError as error:
                LOG.error("%s pass failed: %s", self.lease_name, error)
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break
            self._stop.wait(self.interval)
        return ticks

    def stop(self) -> None:
        self._stop.set()
