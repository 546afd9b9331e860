"""
SQLite implementation of the build store.

This module provides a concrete implementation of BuildStore using SQLite
with a relational schema and indices for the dispatch queries. Every write
runs inside a `BEGIN IMMEDIATE` transaction so that the read-check-write
sequences behind conditional updates are atomic across processes sharing
the same database file.
"""

from __future__ import annotations

import dataclasses
from datetime import datetime
import functools
import logging
import sqlite3
import time
from typing import Dict, List, Optional

import dateutil.parser

from buildhive.domain import BuildHost, HostStatus, Job, JobStatus, utc_now
from buildhive.errors import (
    ConflictError,
    NotFoundError,
    StoreError,
    ValidationError,
)

from .connection import SqliteConnections
from .interface import Alarm, BuildStore

LOG = logging.getLogger(__name__)

# Schema version for this implementation
SCHEMA_VERSION = "1"

_JOB_FIELDS = {"status", "assigned_host_id", "payload"}
_HOST_FIELDS = {"status", "hostname"}
_JOB_ORDER = {"created_at", "updated_at", "status"}
_HOST_ORDER = {"created_at", "updated_at", "hostname", "status"}


def _ts(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat(timespec="microseconds")


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return dateutil.parser.isoparse(value)


def _db_value(value):
    if isinstance(value, (JobStatus, HostStatus)):
        return value.value
    return value


def _coerce_status(enum, value):
    try:
        return enum(_db_value(value))
    except ValueError:
        raise ValidationError("Invalid status value {!r}".format(value)) from None


def _store_errors(func):
    """Translate sqlite3 errors escaping a store call into StoreError."""

    @functools.wraps(func)
    def _wrapped(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except sqlite3.Error as error:
            LOG.debug("%s failed", func.__name__, exc_info=True)
            raise StoreError("{}: {}".format(func.__name__, error)) from error

    return _wrapped


class SqliteBuildStore(SqliteConnections, BuildStore):
    """
    SQLite-based store for jobs, hosts, alarms and leases.

    Each thread gets its own connection. The database must be a file so
    that all connections (and other processes) see the same data.
    """

    def __init__(self, db_path: str, timeout: float = 30.0):
        """
        Initialize store.

        Args:
            db_path: Path to SQLite database file
            timeout: Seconds to wait on a locked database
        """
        SqliteConnections.__init__(self, db_path, timeout=timeout)
        self._init_schema()

    @_store_errors
    def _init_schema(self):
        """Create database schema if it doesn't exist."""
        with self._transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    id TEXT PRIMARY KEY,
                    team_id TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    status TEXT NOT NULL,
                    assigned_host_id TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS hosts (
                    id TEXT PRIMARY KEY,
                    team_id TEXT NOT NULL,
                    hostname TEXT NOT NULL,
                    status TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE (team_id, hostname)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS alarms (
                    id TEXT PRIMARY KEY,
                    kind TEXT NOT NULL,
                    job_id TEXT,
                    host_id TEXT,
                    message TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS leases (
                    name TEXT PRIMARY KEY,
                    owner TEXT NOT NULL,
                    expires_at REAL NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS metadata (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            """)

            # Indices for the dispatch queries
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_jobs_status_create "
                "ON jobs(status, created_at)")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_jobs_team "
                "ON jobs(team_id)")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_hosts_status "
                "ON hosts(status)")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_alarms_kind "
                "ON alarms(kind)")

            conn.execute(
                "INSERT OR IGNORE INTO metadata (key, value) VALUES (?, ?)",
                ("schema_version", SCHEMA_VERSION))

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> Job:
        return Job(
            id=row["id"],
            team_id=row["team_id"],
            payload=row["payload"],
            status=JobStatus(row["status"]),
            assigned_host_id=row["assigned_host_id"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    @staticmethod
    def _row_to_host(row: sqlite3.Row) -> BuildHost:
        return BuildHost(
            id=row["id"],
            team_id=row["team_id"],
            hostname=row["hostname"],
            status=HostStatus(row["status"]),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    def _fetch_job(self, conn, job_id) -> Optional[Job]:
        row = conn.execute(
            "SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        return self._row_to_job(row) if row is not None else None

    def _fetch_host(self, conn, host_id) -> Optional[BuildHost]:
        row = conn.execute(
            "SELECT * FROM hosts WHERE id = ?", (host_id,)).fetchone()
        return self._row_to_host(row) if row is not None else None

    @staticmethod
    def _check_unbound(conn, host_id) -> None:
        """Raise ConflictError if a queued or running job holds the host."""
        row = conn.execute(
            "SELECT id, status FROM jobs WHERE assigned_host_id = ? "
            "AND status IN (?, ?) LIMIT 1",
            (host_id, JobStatus.QUEUED.value, JobStatus.RUNNING.value),
        ).fetchone()
        if row is not None:
            raise ConflictError(
                "host", host_id, "no active job",
                "held by {} job {}".format(row["status"], row["id"]))

    @staticmethod
    def _set_fields(conn, table: str, ident: str, fields: dict) -> None:
        assignments = ["updated_at = ?"]
        params = [_ts(utc_now())]
        for column in sorted(fields):
            assignments.append("{} = ?".format(column))
            params.append(_db_value(fields[column]))
        params.append(ident)
        conn.execute(
            "UPDATE {} SET {} WHERE id = ?".format(table, ", ".join(assignments)),
            params)

    @_store_errors
    def create_job(self, team_id: str, payload: str) -> Job:
        job = Job(team_id=team_id, payload=payload)
        job.validate()
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO jobs (id, team_id, payload, status, "
                "assigned_host_id, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (job.id, job.team_id, job.payload, job.status.value,
                 job.assigned_host_id, _ts(job.created_at),
                 _ts(job.updated_at)))
        LOG.debug("created job %s for team %s", job.id, team_id)
        return job

    @_store_errors
    def create_host(self, team_id: str, hostname: str) -> BuildHost:
        host = BuildHost(team_id=team_id, hostname=hostname)
        host.validate()
        with self._transaction() as conn:
            existing = conn.execute(
                "SELECT 1 FROM hosts WHERE team_id = ? AND hostname = ?",
                (team_id, hostname)).fetchone()
            if existing is not None:
                raise ValidationError(
                    'Hostname "{}" already exists in this team.'.format(hostname))
            conn.execute(
                "INSERT INTO hosts (id, team_id, hostname, status, "
                "created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?)",
                (host.id, host.team_id, host.hostname, host.status.value,
                 _ts(host.created_at), _ts(host.updated_at)))
        LOG.debug("registered host %s (%s) for team %s",
                  host.id, hostname, team_id)
        return host

    @_store_errors
    def get_job(self, job_id: str) -> Optional[Job]:
        return self._fetch_job(self._get_conn(), job_id)

    @_store_errors
    def get_host(self, host_id: str) -> Optional[BuildHost]:
        return self._fetch_host(self._get_conn(), host_id)

    @_store_errors
    def find_jobs(
        self,
        status: Optional[JobStatus] = None,
        team_id: Optional[str] = None,
        order_by: str = "created_at",
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Job]:
        if order_by not in _JOB_ORDER:
            raise ValidationError("Cannot order jobs by {!r}".format(order_by))

        query = "SELECT * FROM jobs WHERE 1=1"
        params = []

        if status is not None:
            query += " AND status = ?"
            params.append(status.value)

        if team_id is not None:
            query += " AND team_id = ?"
            params.append(team_id)

        # rowid breaks ties between jobs created in the same microsecond
        direction = "DESC" if descending else "ASC"
        query += " ORDER BY {0} {1}, rowid {1}".format(order_by, direction)

        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        rows = self._get_conn().execute(query, params).fetchall()
        return [self._row_to_job(row) for row in rows]

    @_store_errors
    def find_hosts(
        self,
        status: Optional[HostStatus] = None,
        team_id: Optional[str] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[BuildHost]:
        if order_by is not None and order_by not in _HOST_ORDER:
            raise ValidationError("Cannot order hosts by {!r}".format(order_by))

        query = "SELECT * FROM hosts WHERE 1=1"
        params = []

        if status is not None:
            query += " AND status = ?"
            params.append(status.value)

        if team_id is not None:
            query += " AND team_id = ?"
            params.append(team_id)

        if order_by is not None:
            direction = "DESC" if descending else "ASC"
            query += " ORDER BY {0} {1}, rowid {1}".format(order_by, direction)

        rows = self._get_conn().execute(query, params).fetchall()
        return [self._row_to_host(row) for row in rows]

    @_store_errors
    def update_job(
        self,
        job_id: str,
        expect_status: Optional[JobStatus] = None,
        **fields,
    ) -> Job:
        unknown = set(fields) - _JOB_FIELDS
        if unknown:
            raise ValidationError(
                "Unknown job fields: {}".format(", ".join(sorted(unknown))))
        if "status" in fields:
            fields["status"] = _coerce_status(JobStatus, fields["status"])

        with self._transaction() as conn:
            current = self._fetch_job(conn, job_id)
            if current is None:
                raise NotFoundError("job", job_id)
            if expect_status is not None and current.status != expect_status:
                raise ConflictError(
                    "job", job_id, expect_status.value, current.status.value)
            new_host = fields.get("assigned_host_id", current.assigned_host_id)
            if (current.assigned_host_id is not None
                    and new_host != current.assigned_host_id):
                raise ValidationError(
                    "Job {} is bound to host {}".format(
                        job_id, current.assigned_host_id))
            dataclasses.replace(current, **fields).validate()
            self._set_fields(conn, "jobs", job_id, fields)
            return self._fetch_job(conn, job_id)

    @_store_errors
    def update_host(
        self,
        host_id: str,
        expect_status: Optional[HostStatus] = None,
        **fields,
    ) -> BuildHost:
        unknown = set(fields) - _HOST_FIELDS
        if unknown:
            raise ValidationError(
                "Unknown host fields: {}".format(", ".join(sorted(unknown))))
        if "status" in fields:
            fields["status"] = _coerce_status(HostStatus, fields["status"])

        with self._transaction() as conn:
            current = self._fetch_host(conn, host_id)
            if current is None:
                raise NotFoundError("host", host_id)
            if expect_status is not None and current.status != expect_status:
                raise ConflictError(
                    "host", host_id, expect_status.value, current.status.value)
            if fields.get("status") == HostStatus.IDLE:
                self._check_unbound(conn, host_id)
            self._set_fields(conn, "hosts", host_id, fields)
            return self._fetch_host(conn, host_id)

    @_store_errors
    def assign(self, job_id: str, host_id: str) -> Job:
        with self._transaction() as conn:
            job = self._fetch_job(conn, job_id)
            if job is None:
                raise NotFoundError("job", job_id)
            host = self._fetch_host(conn, host_id)
            if host is None:
                raise NotFoundError("host", host_id)
            if job.status != JobStatus.PENDING:
                raise ConflictError(
                    "job", job_id, JobStatus.PENDING.value, job.status.value)
            if host.status != HostStatus.IDLE:
                raise ConflictError(
                    "host", host_id, HostStatus.IDLE.value, host.status.value)
            self._set_fields(conn, "jobs", job_id, {
                "status": JobStatus.QUEUED,
                "assigned_host_id": host_id,
            })
            self._set_fields(conn, "hosts", host_id, {
                "status": HostStatus.BUSY,
            })
            return self._fetch_job(conn, job_id)

    @_store_errors
    def unassign(
        self,
        job_id: str,
        host_id: str,
        status: JobStatus = JobStatus.SUBMISSION_FAILED,
    ) -> Job:
        if status.holds_host or status.is_terminal:
            raise ValidationError(
                "Cannot unassign job into status {}".format(status.value))
        with self._transaction() as conn:
            job = self._fetch_job(conn, job_id)
            if job is None:
                raise NotFoundError("job", job_id)
            if job.assigned_host_id != host_id:
                raise ConflictError(
                    "job", job_id, host_id, job.assigned_host_id)
            conn.execute(
                "UPDATE jobs SET status = ?, assigned_host_id = NULL, "
                "updated_at = ? WHERE id = ?",
                (status.value, _ts(utc_now()), job_id))
            # An operator may have moved the host meanwhile; leave that alone
            conn.execute(
                "UPDATE hosts SET status = ?, updated_at = ? "
                "WHERE id = ? AND status = ?",
                (HostStatus.IDLE.value, _ts(utc_now()), host_id,
                 HostStatus.BUSY.value))
            return self._fetch_job(conn, job_id)

    @_store_errors
    def record_alarm(
        self,
        kind: str,
        message: str,
        job_id: Optional[str] = None,
        host_id: Optional[str] = None,
    ) -> Alarm:
        alarm = Alarm(kind=kind, message=message, job_id=job_id, host_id=host_id)
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO alarms (id, kind, job_id, host_id, message, "
                "created_at) VALUES (?, ?, ?, ?, ?, ?)",
                (alarm.id, alarm.kind, alarm.job_id, alarm.host_id,
                 alarm.message, _ts(alarm.created_at)))
        return alarm

    @_store_errors
    def find_alarms(
        self, kind: Optional[str] = None, limit: Optional[int] = None
    ) -> List[Alarm]:
        query = "SELECT * FROM alarms WHERE 1=1"
        params = []
        if kind is not None:
            query += " AND kind = ?"
            params.append(kind)
        query += " ORDER BY created_at DESC, rowid DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        rows = self._get_conn().execute(query, params).fetchall()
        return [
            Alarm(
                id=row["id"],
                kind=row["kind"],
                job_id=row["job_id"],
                host_id=row["host_id"],
                message=row["message"],
                created_at=_parse_ts(row["created_at"]),
            )
            for row in rows
        ]

    @_store_errors
    def acquire_lease(self, name: str, owner: str, ttl_seconds: float) -> bool:
        now = time.time()
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT owner, expires_at FROM leases WHERE name = ?",
                (name,)).fetchone()
            if (row is not None and row["owner"] != owner
                    and row["expires_at"] > now):
                return False
            conn.execute(
                "INSERT OR REPLACE INTO leases (name, owner, expires_at) "
                "VALUES (?, ?, ?)",
                (name, owner, now + ttl_seconds))
        return True

    @_store_errors
    def release_lease(self, name: str, owner: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                "DELETE FROM leases WHERE name = ? AND owner = ?",
                (name, owner))

    @_store_errors
    def count_jobs(self) -> Dict[JobStatus, int]:
        counts = {status: 0 for status in JobStatus}
        rows = self._get_conn().execute(
            "SELECT status, COUNT(*) FROM jobs GROUP BY status").fetchall()
        for row in rows:
            counts[JobStatus(row[0])] = row[1]
        return counts

    @_store_errors
    def count_hosts(self) -> Dict[HostStatus, int]:
        counts = {status: 0 for status in HostStatus}
        rows = self._get_conn().execute(
            "SELECT status, COUNT(*) FROM hosts GROUP BY status").fetchall()
        for row in rows:
            counts[HostStatus(row[0])] = row[1]
        return counts

