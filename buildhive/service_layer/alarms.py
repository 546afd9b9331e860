"""
Dead-letter alarms for transitions that could not be completed.

Stuck jobs and hosts are otherwise invisible, so every such failure is both
logged and written to the store where `hive alarms` / `hive health` find it.
"""

import logging

from buildhive.errors import StoreError

LOG = logging.getLogger(__name__)


def raise_alarm(store, kind, message, job_id=None, host_id=None):
    LOG.error("ALARM %s job=%s host=%s: %s", kind, job_id, host_id, message)
    try:
        return store.record_alarm(kind, message, job_id=job_id, host_id=host_id)
    except StoreError:
        LOG.exception("cannot record %s alarm for job=%s host=%s",
                      kind, job_id, host_id)
        return None
