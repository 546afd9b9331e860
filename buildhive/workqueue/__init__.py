"""
Work queue implementations carrying job ids from the Assigner to Executors.
"""

from .http_queue import HttpWorkQueue
from .inline import InlineWorkQueue
from .interface import Delivery, WorkQueue, decode_payload, encode_payload
from .sqlite_queue import SqliteWorkQueue

__all__ = [
    "Delivery",
    "HttpWorkQueue",
    "InlineWorkQueue",
    "SqliteWorkQueue",
    "WorkQueue",
    "decode_payload",
    "encode_payload",
]
