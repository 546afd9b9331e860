"""
Durable work queue in SQLite.

Received deliveries stay invisible for a visibility timeout. A delivery that
is not acknowledged in time becomes visible again, which gives at-least-once
delivery when a worker dies mid-job.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from typing import Optional

from buildhive.errors import QueueError
from buildhive.repository.connection import SqliteConnections

from .interface import Delivery, WorkQueue, encode_payload

LOG = logging.getLogger(__name__)

DEFAULT_VISIBILITY_TIMEOUT = 300.0


class SqliteWorkQueue(SqliteConnections, WorkQueue):
    def __init__(
        self,
        db_path: str,
        visibility_timeout: float = DEFAULT_VISIBILITY_TIMEOUT,
        timeout: float = 30.0,
    ):
        SqliteConnections.__init__(self, db_path, timeout=timeout)
        self.visibility_timeout = visibility_timeout
        try:
            with self._transaction() as conn:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS deliveries (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        body TEXT NOT NULL,
                        enqueued_at REAL NOT NULL,
                        visible_at REAL NOT NULL,
                        attempts INTEGER NOT NULL DEFAULT 0
                    )
                """)
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_deliveries_visible "
                    "ON deliveries(visible_at)")
        except sqlite3.Error as error:
            raise QueueError("cannot open queue {}: {}".format(
                db_path, error)) from error

    def submit(self, job_id: str) -> None:
        now = time.time()
        try:
            with self._transaction() as conn:
                conn.execute(
                    "INSERT INTO deliveries (body, enqueued_at, visible_at) "
                    "VALUES (?, ?, ?)",
                    (encode_payload(job_id), now, now))
        except sqlite3.Error as error:
            raise QueueError("submit {}: {}".format(job_id, error)) from error
        LOG.debug("enqueued job %s", job_id)

    def receive(
        self, visibility_timeout: Optional[float] = None
    ) -> Optional[Delivery]:
        """
        Lease the oldest visible delivery, or return None if there is none.
        """
        timeout = (self.visibility_timeout
                   if visibility_timeout is None else visibility_timeout)
        now = time.time()
        try:
            with self._transaction() as conn:
                row = conn.execute(
                    "SELECT id, body, attempts FROM deliveries "
                    "WHERE visible_at <= ? ORDER BY id LIMIT 1",
                    (now,)).fetchone()
                if row is None:
                    return None
                conn.execute(
                    "UPDATE deliveries SET visible_at = ?, attempts = ? "
                    "WHERE id = ?",
                    (now + timeout, row["attempts"] + 1, row["id"]))
        except sqlite3.Error as error:
            raise QueueError("receive: {}".format(error)) from error
        if row["attempts"]:
            LOG.info("redelivering message %d (attempt %d)",
                     row["id"], row["attempts"] + 1)
        return Delivery(id=row["id"], body=row["body"],
                        attempts=row["attempts"] + 1)

    def ack(self, delivery_id: int) -> None:
        try:
            with self._transaction() as conn:
                conn.execute(
                    "DELETE FROM deliveries WHERE id = ?", (delivery_id,))
        except sqlite3.Error as error:
            raise QueueError("ack {}: {}".format(delivery_id, error)) from error

    def depth(self) -> int:
        """Number of unacknowledged messages."""
        try:
            row = self._get_conn().execute(
                "SELECT COUNT(*) FROM deliveries").fetchone()
        except sqlite3.Error as error:
            raise QueueError("depth: {}".format(error)) from error
        return row[0]
