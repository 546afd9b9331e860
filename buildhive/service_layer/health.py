"""
Status inspection: where stuck states become visible.
"""

from buildhive.errors import QueueError

from .reconciler import Reconciler


def health_snapshot(store, stuck_after, queue=None):
    """
    Summarize dispatch state.

    Returns a plain dict suitable for JSON output.
    """
    snapshot = {
        "jobs": {
            status.value: count for status, count in store.count_jobs().items()
        },
        "hosts": {
            status.value: count for status, count in store.count_hosts().items()
        },
        "stuck_jobs": len(Reconciler(store, stuck_after).stuck_jobs()),
        "alarms": len(store.find_alarms()),
    }
    if queue is not None and hasattr(queue, "depth"):
        try:
            snapshot["queue_depth"] = queue.depth()
        except QueueError:
            snapshot["queue_depth"] = None
    return snapshot
