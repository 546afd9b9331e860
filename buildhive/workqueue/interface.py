"""
Work queue contract between the Assigner and the Executor.

Delivery is at-least-once with no ordering guarantee. The message body is
exactly {"jobId": <id>}.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

import simplejson as json

from buildhive.errors import QueueError

PAYLOAD_KEY = "jobId"


def encode_payload(job_id: str) -> str:
    return json.dumps({PAYLOAD_KEY: job_id})


def decode_payload(body: str) -> str:
    """
    Extract the job id from a delivery body.

    Raises:
        QueueError: If the body is not a valid payload
    """
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, TypeError) as error:
        raise QueueError("undecodable delivery {!r}".format(body)) from error
    if not isinstance(data, dict) or not data.get(PAYLOAD_KEY):
        raise QueueError("delivery {!r} carries no {}".format(body, PAYLOAD_KEY))
    return str(data[PAYLOAD_KEY])


@dataclass
class Delivery:
    """One delivery attempt of a queued message."""

    id: int
    body: str
    attempts: int = 1

    @property
    def job_id(self) -> str:
        return decode_payload(self.body)


class WorkQueue(ABC):
    @abstractmethod
    def submit(self, job_id: str) -> None:
        """
        Hand a job id to the executors.

        Raises:
            QueueError: If the queue did not accept the message
        """

    def close(self) -> None:
        pass
