"""
Tests for domain models.
"""

from datetime import timedelta
import unittest

from buildhive.domain import (
    ACTIVE_STATUSES,
    BuildHost,
    HostStatus,
    Job,
    JobStatus,
    utc_now,
)
from buildhive.errors import ValidationError


class TestJobStatus(unittest.TestCase):
    def test_wire_values(self):
        self.assertEqual(
            ["pending", "queued", "running", "completed", "failed",
             "submission_failed"],
            [s.value for s in JobStatus])

    def test_holds_host(self):
        held = {s for s in JobStatus if s.holds_host}
        self.assertEqual(set(ACTIVE_STATUSES), held)

    def test_terminal(self):
        self.assertTrue(JobStatus.COMPLETED.is_terminal)
        self.assertTrue(JobStatus.FAILED.is_terminal)
        self.assertFalse(JobStatus.SUBMISSION_FAILED.is_terminal)
        self.assertFalse(JobStatus.RUNNING.is_terminal)


class TestJob(unittest.TestCase):
    def test_defaults(self):
        job = Job(team_id="t1", payload="make all")
        self.assertEqual(JobStatus.PENDING, job.status)
        self.assertIsNone(job.assigned_host_id)
        self.assertTrue(job.id)
        self.assertEqual(job.created_at, job.updated_at)
        self.assertIsNotNone(job.created_at.tzinfo)
        job.validate()

    def test_unique_ids(self):
        self.assertNotEqual(Job("t", "p").id, Job("t", "p").id)

    def test_status_string_coerced(self):
        job = Job(team_id="t1", payload="x", status="running",
                  assigned_host_id="h1")
        self.assertEqual(JobStatus.RUNNING, job.status)
        self.assertTrue(job.is_active())
        self.assertFalse(job.is_terminal())

    def test_bound_status_needs_host(self):
        job = Job(team_id="t1", payload="x", status=JobStatus.QUEUED)
        with self.assertRaisesRegex(ValidationError, "must have"):
            job.validate()

    def test_unbound_status_rejects_host(self):
        for status in (JobStatus.PENDING, JobStatus.SUBMISSION_FAILED):
            job = Job(team_id="t1", payload="x", status=status,
                      assigned_host_id="h1")
            with self.assertRaisesRegex(ValidationError, "must not have"):
                job.validate()

    def test_missing_team(self):
        with self.assertRaisesRegex(ValidationError, "Team ID is required"):
            Job(team_id="", payload="x").validate()

    def test_age_seconds(self):
        now = utc_now()
        job = Job(team_id="t1", payload="x",
                  created_at=now - timedelta(seconds=90))
        self.assertAlmostEqual(90.0, job.age_seconds(now), places=3)

    def test_str(self):
        job = Job(team_id="t1", payload="x", id="abc")
        self.assertEqual("[abc] team=t1 pending host=-", str(job))


class TestBuildHost(unittest.TestCase):
    def test_defaults(self):
        host = BuildHost(team_id="t1", hostname="builder-1")
        self.assertEqual(HostStatus.IDLE, host.status)
        self.assertTrue(host.is_available())
        host.validate()

    def test_operator_statuses(self):
        self.assertFalse(HostStatus.IDLE.operator_controlled)
        self.assertFalse(HostStatus.BUSY.operator_controlled)
        for status in (HostStatus.OFFLINE, HostStatus.MAINTENANCE,
                       HostStatus.ERROR, HostStatus.TERMINATING,
                       HostStatus.TERMINATED):
            self.assertTrue(status.operator_controlled)
            host = BuildHost(team_id="t1", hostname="b", status=status)
            self.assertFalse(host.is_available())

    def test_missing_hostname(self):
        with self.assertRaisesRegex(ValidationError, "Hostname is required"):
            BuildHost(team_id="t1", hostname="").validate()
