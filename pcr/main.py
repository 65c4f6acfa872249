#!/usr/bin/env python3
"""
Replication Playground - Main Entry Point

Command-line driver for the two-cluster replication playground:
- Create and destroy the CA and CB clusters
- Load sample workloads
- Start, fail over and restart replication in either direction
- Rolling upgrades with finalize and rollback
- Status, health checks and the status API server
"""

import argparse
import json
import logging
import signal
import sys
import threading
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional

import uvicorn
from docker.errors import DockerException

from pcr.config import Settings
from pcr.diagnostic_logger import DiagnosticLogger, configure_logging
from pcr.exceptions import PcrError
from pcr.harness import Harness
from pcr.replication.poller import TimeoutPolicy
from pcr.roles import SYSTEM
from pcr.run_all import run_all

logger = logging.getLogger("pcr")


def _print_json(data):
    print(json.dumps(data, indent=2, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pcr", description="Cross-cluster replication and failover playground"
    )
    parser.add_argument("--dry-run", action="store_true", default=None,
                        help="Log every container and SQL command instead of running it")
    parser.add_argument("--debug", action="store_true", default=None, help="Verbose logging")
    parser.add_argument("--max-iters", type=int, help="Iterations for the replication wait")
    parser.add_argument("--interval-sec", type=float, help="Seconds between replication polls")
    parser.add_argument("--ready-max-iters", type=int, help="Iterations for the cutover wait")
    parser.add_argument("--ready-interval-sec", type=float, help="Seconds between cutover polls")
    parser.add_argument("--init-max-iters", type=int, help="Iterations when running cluster init")
    parser.add_argument("--init-interval-sec", type=float, help="Seconds between init attempts")
    parser.add_argument("--state-file", help="Breadcrumb file (default ~/.pcr_state)")
    parser.add_argument("--log-file", help="Also write the log to this file")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("create", help="Create a cluster")
    p.add_argument("role", help="CA|CB|primary|standby|1|2")
    p.add_argument("-n", "--nodes", type=int, default=3)
    p.add_argument("--version", dest="crdb_version", help="Image version, e.g. 24.1.3")

    p = sub.add_parser("destroy", help="Remove one cluster, or everything")
    p.add_argument("role", nargs="?", default="all", help="CA|CB|all")

    p = sub.add_parser("load", help="Seed data and run the movr workload")
    p.add_argument("target", choices=["va", "va-extra", "vb"])

    for name, help_text, default_policy in (
        ("replicate", "Start replication", TimeoutPolicy.STRICT),
        ("failover", "Fail over to the destination", TimeoutPolicy.LENIENT),
        ("restart", "Restart replication after a failover", TimeoutPolicy.STRICT),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("direction", help="a-to-b|b-to-a")
        p.add_argument("--timeout-policy", choices=[t.value for t in TimeoutPolicy],
                       default=default_policy.value)
        if name == "failover":
            p.add_argument("--force", action="store_true",
                           help="Fail over even if the link is not replicating")

    sub.add_parser("status", help="Members, virtual clusters and default targets")
    p = sub.add_parser("health", help="Breadcrumbs against live link status")
    p.add_argument("--report", help="Write a JSON diagnostic report here")

    p = sub.add_parser("row-counts", help="Row counts on both sides")
    p.add_argument("--table", default="movr.users")
    p.add_argument("--watch", action="store_true")
    p.add_argument("--checks", type=int, default=12)
    p.add_argument("--interval", type=float, default=5)

    p = sub.add_parser("sql", help="Run one SQL statement")
    p.add_argument("role")
    p.add_argument("sql")
    p.add_argument("--tenant", default=SYSTEM)
    p.add_argument("--user", default="root")
    p.add_argument("--ordinal", type=int, default=1)
    p.add_argument("--format", dest="fmt", default="table")

    p = sub.add_parser("upgrade", help="Rolling upgrade of one cluster")
    p.add_argument("role")
    p.add_argument("version")
    p = sub.add_parser("finalize", help="Finalize the last upgrade (one-way)")
    p.add_argument("role")
    p = sub.add_parser("rollback", help="Roll back an unfinalized upgrade")
    p.add_argument("role")

    p = sub.add_parser("run-all", help="Full A <-> B flow from cleanup to status")
    p.add_argument("-n", "--nodes", type=int, default=3)
    p.add_argument("--version", dest="crdb_version")
    p.add_argument("--report", help="Write a JSON diagnostic report here")

    sub.add_parser("console", help="DB Console URLs")
    sub.add_parser("smoke-default", help="SELECT 1 through each default target")

    p = sub.add_parser("serve", help="Run the status API")
    p.add_argument("--port", type=int)
    return parser


def settings_from_args(args) -> Settings:
    return Settings.from_env().override(
        dry_run=args.dry_run,
        debug=args.debug,
        max_iters=args.max_iters,
        poll_interval=args.interval_sec,
        ready_max_iters=args.ready_max_iters,
        ready_poll_interval=args.ready_interval_sec,
        init_max_iters=args.init_max_iters,
        init_interval=args.init_interval_sec,
        state_file=Path(args.state_file).expanduser() if args.state_file else None,
        log_file=Path(args.log_file) if args.log_file else None,
    )


def dispatch(args, harness: Harness) -> int:
    h = harness
    cmd = args.command

    if cmd == "create":
        records = h.provisioner.create_cluster(args.role, args.nodes, args.crdb_version)
        _print_json([{"name": r.name, "sql_port": r.sql_port, "http_port": r.http_port} for r in records])
    elif cmd == "destroy":
        if args.role.lower() == "all":
            h.provisioner.destroy_all()
        else:
            h.provisioner.destroy_role(args.role)
    elif cmd == "load":
        if args.target == "vb":
            ok = h.workload.load_vb()
        else:
            ok = h.workload.load_va(init=args.target == "va")
        return 0 if ok else 1
    elif cmd == "replicate":
        h.machine.start_replication(args.direction, TimeoutPolicy(args.timeout_policy))
    elif cmd == "failover":
        h.machine.failover(args.direction, TimeoutPolicy(args.timeout_policy), force=args.force)
    elif cmd == "restart":
        h.machine.restart_replication(args.direction, TimeoutPolicy(args.timeout_policy))
    elif cmd == "status":
        _print_json({role: asdict(rs) for role, rs in h.health.status().items()})
        _print_json(h.store.items())
    elif cmd == "health":
        report = h.health.check_replication_health()
        _print_json(asdict(report))
        if args.report:
            diagnostics = DiagnosticLogger()
            for w in report.warnings:
                diagnostics.log_warning(w.message, asdict(w))
            diagnostics.generate_report(args.report)
        return 0 if report.healthy else 1
    elif cmd == "row-counts":
        if args.watch:
            snapshots = h.health.watch_row_counts(args.table, args.checks, args.interval)
            _print_json([[asdict(c) for c in snap] for snap in snapshots])
        else:
            _print_json([asdict(c) for c in h.health.row_counts(args.table)])
    elif cmd == "sql":
        print(h.channel.execute(args.role, args.sql, tenant=args.tenant, user=args.user,
                                ordinal=args.ordinal, fmt=args.fmt))
    elif cmd == "upgrade":
        h.upgrades.upgrade(args.role, args.version)
    elif cmd == "finalize":
        h.upgrades.finalize(args.role)
    elif cmd == "rollback":
        h.upgrades.rollback(args.role)
    elif cmd == "run-all":
        diagnostics = DiagnosticLogger()
        result = run_all(h, args.nodes, args.crdb_version, diagnostics)
        if args.report:
            diagnostics.generate_report(args.report)
        if not result.success:
            logger.error("Run All failed at step: %s", result.failed_step)
            return 1
    elif cmd == "console":
        for role, url in h.health.console_urls().items():
            print(f"{role}: {url or 'no running node with an HTTP port'}")
    elif cmd == "smoke-default":
        results = h.health.smoke_default()
        _print_json(results)
        return 0 if all(results.values()) else 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = settings_from_args(args)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    configure_logging(settings)

    if args.command == "serve":
        from pcr.api.rest_api_server import app

        port = args.port or settings.rest_port
        logger.info("Starting status API on port %d...", port)
        uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")
        return 0

    # First Ctrl-C cancels the current wait; a second one interrupts outright.
    cancel = threading.Event()

    def _interrupt(signum, frame):
        if cancel.is_set():
            raise KeyboardInterrupt
        logger.warning("Interrupt received; cancelling the current wait")
        cancel.set()

    signal.signal(signal.SIGINT, _interrupt)

    try:
        harness = Harness.from_settings(settings, cancel=cancel)
        return dispatch(args, harness)
    except ValueError as e:
        logger.error("%s", e)
        return 2
    except PcrError as e:
        logger.error("%s", e)
        return 1
    except DockerException as e:
        logger.error("Container runtime error: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
