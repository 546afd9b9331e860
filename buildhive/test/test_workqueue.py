"""
Tests for the work queue implementations.
"""

import os
import shutil
import tempfile
import unittest
from unittest import mock

import pytest
import requests
import simplejson as json

from buildhive.errors import QueueError
from buildhive.workqueue import (
    Delivery,
    HttpWorkQueue,
    InlineWorkQueue,
    SqliteWorkQueue,
    decode_payload,
    encode_payload,
)


def test_payload_shape():
    assert json.loads(encode_payload("abc123")) == {"jobId": "abc123"}
    assert decode_payload('{"jobId": "abc123"}') == "abc123"


@pytest.mark.parametrize(
    "body",
    [
        "not json",
        "[]",
        "{}",
        '{"jobId": ""}',
        '{"job_id": "abc"}',
        None,
    ]
)
def testBadPayload(body):
    with pytest.raises(QueueError):
        decode_payload(body)
    with pytest.raises(QueueError):
        _ = Delivery(id=1, body=body).job_id


class TestSqliteWorkQueue(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.queue = SqliteWorkQueue(os.path.join(self.temp_dir, "queue.db"))

    def tearDown(self):
        self.queue.close()
        shutil.rmtree(self.temp_dir)

    def test_empty(self):
        self.assertIsNone(self.queue.receive())
        self.assertEqual(0, self.queue.depth())

    def test_submit_receive_ack(self):
        self.queue.submit("j1")
        self.queue.submit("j2")
        self.assertEqual(2, self.queue.depth())

        first = self.queue.receive()
        self.assertEqual("j1", first.job_id)
        self.assertEqual(1, first.attempts)
        second = self.queue.receive()
        self.assertEqual("j2", second.job_id)
        # both leased
        self.assertIsNone(self.queue.receive())

        self.queue.ack(first.id)
        self.queue.ack(second.id)
        self.assertEqual(0, self.queue.depth())

    def test_redelivery_after_visibility_timeout(self):
        self.queue.submit("j1")
        first = self.queue.receive(visibility_timeout=0)
        again = self.queue.receive()

        self.assertEqual(first.id, again.id)
        self.assertEqual(2, again.attempts)
        self.assertEqual("j1", again.job_id)

    def test_unacked_stays_queued(self):
        self.queue.submit("j1")
        self.queue.receive()
        self.assertEqual(1, self.queue.depth())

    def test_shared_file(self):
        other = SqliteWorkQueue(self.queue.db_path)
        try:
            self.queue.submit("j1")
            self.assertEqual("j1", other.receive().job_id)
            self.assertIsNone(self.queue.receive())
        finally:
            other.close()


class TestHttpWorkQueue(unittest.TestCase):
    def test_submit_posts_job_id(self):
        session = mock.MagicMock()
        queue = HttpWorkQueue("https://queue.example.com/jobs", session=session)

        queue.submit("j1")

        session.post.assert_called_once_with(
            "https://queue.example.com/jobs",
            json={"jobId": "j1"},
            headers={'Content-Type': 'application/json; charset=UTF-8'},
            timeout=10.0)
        session.post.return_value.raise_for_status.assert_called_once_with()

    def test_connection_error(self):
        session = mock.MagicMock()
        session.post.side_effect = requests.ConnectionError("refused")
        queue = HttpWorkQueue("https://queue.example.com/jobs", session=session)

        with self.assertRaisesRegex(QueueError, "refused"):
            queue.submit("j1")

    def test_http_error_status(self):
        session = mock.MagicMock()
        session.post.return_value.raise_for_status.side_effect = \
            requests.HTTPError("503 Server Error")
        queue = HttpWorkQueue("https://queue.example.com/jobs", session=session)

        with self.assertRaises(QueueError):
            queue.submit("j1")

    def test_close(self):
        session = mock.MagicMock()
        HttpWorkQueue("https://q", session=session).close()
        session.close.assert_called_once_with()


class TestInlineWorkQueue(unittest.TestCase):
    def test_drain_in_order(self):
        queue = InlineWorkQueue()
        queue.submit("a")
        queue.submit("b")
        seen = []

        self.assertEqual(2, queue.drain(seen.append))
        self.assertEqual(["a", "b"], seen)
        self.assertEqual(0, queue.drain(seen.append))
