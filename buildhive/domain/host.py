"""
Pure domain model for build hosts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from ..errors import ValidationError
from .job import new_id, utc_now


class HostStatus(Enum):
    """
    Build host states.

    Only IDLE and BUSY are driven by the dispatch subsystem. The rest are
    set by operators and make a host ineligible for assignment.
    """

    IDLE = "idle"
    BUSY = "busy"
    OFFLINE = "offline"
    MAINTENANCE = "maintenance"
    ERROR = "error"
    TERMINATING = "terminating"
    TERMINATED = "terminated"

    @property
    def operator_controlled(self) -> bool:
        return self not in (HostStatus.IDLE, HostStatus.BUSY)


@dataclass
class BuildHost:
    """A worker node registered to a team; runs at most one job at a time."""

    team_id: str
    hostname: str
    id: str = field(default_factory=new_id)
    status: HostStatus = HostStatus.IDLE
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = utc_now()
        if self.updated_at is None:
            self.updated_at = self.created_at
        if not isinstance(self.status, HostStatus):
            self.status = HostStatus(self.status)

    def validate(self) -> None:
        if not self.id:
            raise ValidationError("Host id is required.")
        if not self.hostname:
            raise ValidationError("Hostname is required.")
        if not self.team_id:
            raise ValidationError("Team ID is required.")

    def is_available(self) -> bool:
        return self.status == HostStatus.IDLE

    def __str__(self) -> str:
        return f"[{self.id}] {self.hostname} team={self.team_id} {self.status.value}"
