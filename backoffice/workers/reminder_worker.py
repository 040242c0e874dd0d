from __future__ import annotations

import argparse
import asyncio
import time

from backoffice import create_app
from backoffice.application.reminder_service import JOB_DAILY, SWEEP_JOBS
from backoffice.config import Config
from backoffice.errors import SweepInProgressError
from backoffice.observability import bind_request_id, new_run_id
from backoffice.tenant import parse_tenant_ids


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Runs tender reminder and force-close sweeps outside the web process.")
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit.")
    parser.add_argument("--job", default=JOB_DAILY, choices=SWEEP_JOBS, help="Sweep to run.")
    parser.add_argument("--tenant-id", default="", help="Comma separated tenants; defaults to the configured list.")
    parser.add_argument("--interval", type=int, default=0, help="Seconds between sweeps when looping.")
    return parser


def main(argv: list[str] | None = None, config_class=Config) -> int:
    args = _build_parser().parse_args(argv)

    # Sweeps run in this loop, never on the in-process scheduler thread.
    worker_config = type("WorkerConfig", (config_class,), {"REMINDERS_ENABLED": False, "DB_AUTO_INIT": False})
    app = create_app(worker_config)

    scheduler = app.extensions["reminder_scheduler"]
    tenant_ids = parse_tenant_ids(args.tenant_id) or None
    interval_seconds = max(1, int(args.interval or scheduler.intervals.get(args.job, 3600)))

    while True:
        with bind_request_id(new_run_id("worker")) as run_request_id:
            try:
                reports = asyncio.run(scheduler.run_job(args.job, tenant_ids))
            except SweepInProgressError:
                reports = []
            app.logger.info(
                "reminder_worker_run_completed",
                extra={
                    "request_id": run_request_id,
                    "job": args.job,
                    "tenant_ids": list(tenant_ids or scheduler.tenant_ids),
                    "sent": sum(report.sent for report in reports),
                    "failed": sum(report.failed for report in reports),
                    "closed": sum(report.closed for report in reports),
                },
            )
        if args.once:
            break
        time.sleep(interval_seconds)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
