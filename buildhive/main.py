#!/usr/bin/env python
import argparse
import logging
import os
import sys

import simplejson as json

import buildhive.logging

from .argparse import addArgumentParserBaseFlags
from .binutils import binDescriptionWithStandardFooter
from .config import QUEUE_BACKEND, Config, ConfigError
from .errors import BuildHiveError
from .plugins import Plugins
from .repository import SqliteBuildStore
from .scheduler import IntervalScheduler
from .service_layer import (
    Assigner,
    Executor,
    JobService,
    Reconciler,
    health_snapshot,
)
from .worker import QueueWorker
from .workqueue import HttpWorkQueue, SqliteWorkQueue

DESC = binDescriptionWithStandardFooter("""
hive - dispatch build jobs to registered build hosts

Jobs are submitted as pending. `hive schedule` periodically assigns pending
jobs to idle hosts and puts them on the work queue; `hive worker` executes
queued jobs and frees their hosts again.
""")

_DEBUG_LOG_FILE_NAME = "buildhive-debug"
LOG = logging.getLogger(__name__)

OK = 0
ERROR = 1


def buildQueue(config):
    if config.queueBackend == QUEUE_BACKEND.HTTP:
        return HttpWorkQueue(config.queueUrl)
    return SqliteWorkQueue(
        os.path.join(config.dbDir, "queue.sqlite"),
        visibility_timeout=config.visibilityTimeout)


def localQueue(config):
    if config.queueBackend != QUEUE_BACKEND.SQLITE:
        raise ConfigError(
            "this command consumes the local queue; \"queue.backend\" is {}".format(
                config.queueBackend))
    return buildQueue(config)


def buildExecutor(config, store, plugins):
    return Executor(store, plugins.executionStrategy(config.strategy, config))


def buildAssigner(config, store, queue, plugins):
    return Assigner(store, queue, plugins.hostSelector(config.hostPolicy))


def fmtJob(job):
    return "{:32} {:12} {:18} {} {}".format(
        job.id, job.team_id, job.status.value,
        job.assigned_host_id or "-", job.created_at.isoformat())


def fmtHost(host):
    return "{:32} {:12} {:12} {}".format(
        host.id, host.team_id, host.status.value, host.hostname)


def cmdSubmit(options, config, store, plugins):
    payload = options.payload
    if payload == "-":
        payload = sys.stdin.read()
    job = JobService(store).submit_job(options.team, payload)
    print(job.id)
    return OK


def cmdRegisterHost(options, config, store, plugins):
    host = JobService(store).register_host(options.team, options.hostname)
    print(host.id)
    return OK


def cmdHostStatus(options, config, store, plugins):
    host = JobService(store).update_host_status(options.host, options.status)
    print(fmtHost(host))
    return OK


def cmdJobs(options, config, store, plugins):
    for job in JobService(store).team_jobs(options.team):
        print(fmtJob(job))
    return OK


def cmdHosts(options, config, store, plugins):
    for host in JobService(store).team_hosts(options.team):
        print(fmtHost(host))
    return OK


def cmdShow(options, config, store, plugins):
    job, host = JobService(store).job_details(options.job)
    print(fmtJob(job))
    if host is not None:
        print(fmtHost(host))
    print(job.payload)
    return OK


def cmdAssign(options, config, store, plugins):
    queue = buildQueue(config)
    try:
        print(buildAssigner(config, store, queue, plugins).run_once())
    finally:
        queue.close()
    return OK


def cmdSchedule(options, config, store, plugins):
    queue = buildQueue(config)
    assigner = buildAssigner(config, store, queue, plugins)
    reconciler = Reconciler(store, config.stuckAfter)

    def dispatchPass():
        reconciler.sweep()
        return assigner.run_once()

    scheduler = IntervalScheduler(
        dispatchPass, store, config.assignerInterval,
        lease_name="assigner", lease_ttl=config.leaseTtl)
    try:
        scheduler.run_forever(max_ticks=options.ticks)
    except KeyboardInterrupt:
        scheduler.stop()
    finally:
        queue.close()
    return OK


def cmdExecute(options, config, store, plugins):
    job = buildExecutor(config, store, plugins).run(options.job)
    if job is None:
        return ERROR
    print(fmtJob(job))
    return OK


def cmdWorker(options, config, store, plugins):
    queue = localQueue(config)
    worker = QueueWorker(
        queue, buildExecutor(config, store, plugins),
        concurrency=config.workerConcurrency)
    try:
        if options.once:
            worker.process_one()
        else:
            worker.run_forever()
    except KeyboardInterrupt:
        worker.stop()
    finally:
        queue.close()
    return OK


def cmdReconcile(options, config, store, plugins):
    for job in Reconciler(store, config.stuckAfter).sweep():
        print(fmtJob(job))
    return OK


def cmdHealth(options, config, store, plugins):
    queue = None
    if config.queueBackend == QUEUE_BACKEND.SQLITE:
        queue = buildQueue(config)
    try:
        snapshot = health_snapshot(store, config.stuckAfter, queue=queue)
    finally:
        if queue is not None:
            queue.close()
    print(json.dumps(snapshot, indent=2, sort_keys=True))
    return ERROR if snapshot["stuck_jobs"] else OK


def cmdAlarms(options, config, store, plugins):
    for alarm in store.find_alarms(kind=options.kind, limit=options.limit):
        print("{} {:20} job={} host={} {}".format(
            alarm.created_at.isoformat(), alarm.kind,
            alarm.job_id or "-", alarm.host_id or "-", alarm.message))
    return OK


def parseArgs(args=None):
    if args is None:
        prog = sys.argv[0]
        args = sys.argv[1:]
    else:
        prog = None

    # pylint: disable=invalid-name
    ap = argparse.ArgumentParser(
        prog=os.path.basename(prog) if prog else None,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description=DESC)
    addArgumentParserBaseFlags(ap, _DEBUG_LOG_FILE_NAME)
    sub = ap.add_subparsers(dest="command", metavar="COMMAND")
    sub.required = True

    sp = sub.add_parser("submit", help="Submit a pending job")
    sp.add_argument("team")
    sp.add_argument("payload", help="Job payload text, '-' reads stdin")
    sp.set_defaults(func=cmdSubmit)

    sp = sub.add_parser("register-host", help="Register an idle build host")
    sp.add_argument("team")
    sp.add_argument("hostname")
    sp.set_defaults(func=cmdRegisterHost)

    sp = sub.add_parser("host-status", help="Set a host status (operator)")
    sp.add_argument("host")
    sp.add_argument("status")
    sp.set_defaults(func=cmdHostStatus)

    sp = sub.add_parser("jobs", help="List a team's jobs, newest first")
    sp.add_argument("team")
    sp.set_defaults(func=cmdJobs)

    sp = sub.add_parser("hosts", help="List a team's hosts")
    sp.add_argument("team")
    sp.set_defaults(func=cmdHosts)

    sp = sub.add_parser("show", help="Show a job and its host")
    sp.add_argument("job")
    sp.set_defaults(func=cmdShow)

    sp = sub.add_parser("assign", help="Run one assignment pass")
    sp.set_defaults(func=cmdAssign)

    sp = sub.add_parser("schedule",
                        help="Run assignment and reconciliation periodically")
    sp.add_argument("--ticks", type=int, default=None,
                    help="Stop after this many passes")
    sp.set_defaults(func=cmdSchedule)

    sp = sub.add_parser("execute", help="Execute one queued job")
    sp.add_argument("job")
    sp.set_defaults(func=cmdExecute)

    sp = sub.add_parser("worker", help="Execute jobs from the local queue")
    sp.add_argument("--once", action="store_true",
                    help="Handle at most one delivery and exit")
    sp.set_defaults(func=cmdWorker)

    sp = sub.add_parser("reconcile", help="Fail jobs stuck past the deadline")
    sp.set_defaults(func=cmdReconcile)

    sp = sub.add_parser("health", help="Print dispatch state as JSON")
    sp.set_defaults(func=cmdHealth)

    sp = sub.add_parser("alarms", help="List dead-letter alarms")
    sp.add_argument("--kind")
    sp.add_argument("--limit", type=int, default=50)
    sp.set_defaults(func=cmdAlarms)

    return ap.parse_args(args)


def main(args=None):
    options = parseArgs(args)
    try:
        config = Config(options)
    except ConfigError as error:
        print("Error:", error, file=sys.stderr)
        return ERROR

    buildhive.logging.setup(
        config.logDir,
        _DEBUG_LOG_FILE_NAME,
        debug=options.debug,
        verbose=len(options.verbose or []))
    LOG.debug("starting with args %s", options)
    LOG.debug("python: %s", sys.version)

    store = None
    try:
        store = SqliteBuildStore(config.dbFile)
        return options.func(options, config, store, Plugins())
    except (BuildHiveError, ConfigError) as error:
        LOG.debug("command failed", exc_info=True)
        print("Error:", error, file=sys.stderr)
        return ERROR
    finally:
        if store is not None:
            store.close()


if __name__ == '__main__':
    sys.exit(main())
