from __future__ import annotations

import asyncio
import logging
import os
import threading
from typing import Dict, Iterable, List

from flask import Flask

from backoffice.application.factory import build_reminder_service
from backoffice.application.reminder_service import (
    JOB_DAILY,
    JOB_DEADLINE,
    JOB_FORCE_CLOSE,
    SWEEP_JOBS,
    TIER_IMMINENT,
    TIER_LONG_RANGE,
    TIER_UPCOMING,
    SweepReport,
)
from backoffice.db import connect_database
from backoffice.domain.models import utc_now
from backoffice.errors import SweepInProgressError, ValidationError
from backoffice.infrastructure.repositories import SqlProcurementRepository
from backoffice.observability import (
    bind_request_id,
    new_run_id,
    observe_sweep,
    observe_sweep_error,
    observe_sweep_skipped,
)
from backoffice.tenant import parse_tenant_ids


logger = logging.getLogger("backoffice.scheduler")

# The daily job runs the long range, deadline and force close sweeps, so it holds their guards too.
JOB_GUARDS: Dict[str, tuple[str, ...]] = {
    TIER_IMMINENT: (TIER_IMMINENT,),
    TIER_UPCOMING: (TIER_UPCOMING,),
    TIER_LONG_RANGE: (TIER_LONG_RANGE,),
    JOB_DEADLINE: (JOB_DEADLINE,),
    JOB_FORCE_CLOSE: (JOB_FORCE_CLOSE,),
    JOB_DAILY: (JOB_DAILY, TIER_LONG_RANGE, JOB_DEADLINE, JOB_FORCE_CLOSE),
}


class SingleFlightGuard:
    """Non-blocking per-job lock; a second caller is refused instead of queued."""

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        return self._lock.acquire(blocking=False)

    def release(self) -> None:
        self._lock.release()

    @property
    def running(self) -> bool:
        return self._lock.locked()


class ReminderScheduler:
    def __init__(self, app: Flask) -> None:
        self.app = app
        self.intervals: Dict[str, int] = {
            TIER_IMMINENT: _int_config(app, "REMINDER_IMMINENT_INTERVAL_SECONDS", 30 * 60, 60, 86_400),
            TIER_UPCOMING: _int_config(app, "REMINDER_UPCOMING_INTERVAL_SECONDS", 60 * 60, 60, 86_400),
            JOB_DAILY: _int_config(app, "REMINDER_DAILY_INTERVAL_SECONDS", 24 * 60 * 60, 3600, 7 * 86_400),
            JOB_FORCE_CLOSE: _int_config(app, "FORCE_CLOSE_INTERVAL_SECONDS", 10 * 60, 30, 86_400),
        }
        self.tenant_ids = parse_tenant_ids(app.config.get("REMINDER_TENANT_IDS")) or parse_tenant_ids(
            app.config.get("DEFAULT_TENANT_ID")
        )
        self.guards: Dict[str, SingleFlightGuard] = {job: SingleFlightGuard() for job in SWEEP_JOBS}

        self._thread: threading.Thread | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stopped: asyncio.Event | None = None
        self._stop_requested = threading.Event()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_requested.clear()
        self._thread = threading.Thread(target=self._run_loop, name="reminder-scheduler", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop_requested.set()
        if self._loop is not None and self._stopped is not None:
            self._loop.call_soon_threadsafe(self._stopped.set)
        if self._thread is not None:
            self._thread.join(timeout)

    def _run_loop(self) -> None:
        asyncio.run(self._main())

    async def _main(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._stopped = asyncio.Event()
        if self._stop_requested.is_set():
            return
        await asyncio.gather(*(self._timer(job, interval) for job, interval in self.intervals.items()))

    async def _timer(self, job: str, interval: int) -> None:
        while not self._stopped.is_set():
            await self._tick(job)
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

    async def _tick(self, job: str) -> None:
        try:
            await self.run_job(job)
        except SweepInProgressError:
            return
        except Exception:  # noqa: BLE001
            observe_sweep_error(job)
            logger.exception("reminder_job_failed", extra={"job": job})

    async def run_job(self, job: str, tenant_ids: Iterable[str] | None = None) -> List[SweepReport]:
        if job not in self.guards:
            raise ValidationError(code="sweep_unknown", message_key="sweep_unknown", details=f"job {job!r}")
        held = self._acquire(job)
        if held is None:
            observe_sweep_skipped(job)
            logger.warning("reminder_job_skipped_in_flight", extra={"job": job})
            raise SweepInProgressError(details=f"job {job} is already running")
        try:
            with bind_request_id(new_run_id("sweep")):
                return await self._run_locked(job, tuple(tenant_ids) if tenant_ids is not None else self.tenant_ids)
        finally:
            for guard in reversed(held):
                guard.release()

    def _acquire(self, job: str) -> List[SingleFlightGuard] | None:
        held: List[SingleFlightGuard] = []
        for name in JOB_GUARDS.get(job, (job,)):
            guard = self.guards[name]
            if not guard.try_acquire():
                for acquired in reversed(held):
                    acquired.release()
                return None
            held.append(guard)
        return held

    async def _run_locked(self, job: str, tenant_ids: tuple[str, ...]) -> List[SweepReport]:
        db = connect_database(self.app.config["DB_PATH"])
        try:
            service = build_reminder_service(
                self.app.config,
                SqlProcurementRepository(db),
                self.app.extensions["notification_sender"],
                clock=self.app.extensions.get("clock", utc_now),
            )
            reports: List[SweepReport] = []
            for tenant_id in tenant_ids:
                try:
                    tenant_reports = await service.run_job(job, tenant_id)
                except Exception:  # noqa: BLE001
                    observe_sweep_error(job)
                    logger.exception("reminder_sweep_failed", extra={"job": job, "tenant_id": tenant_id})
                    continue
                for report in tenant_reports:
                    observe_sweep(report.job, report.counters())
                reports.extend(tenant_reports)
            return reports
        finally:
            db.close()


def start_reminder_scheduler(app: Flask) -> ReminderScheduler | None:
    if not _should_start_scheduler(app):
        return None
    scheduler = app.extensions["reminder_scheduler"]
    scheduler.start()
    app.logger.info(
        "reminder_scheduler_started",
        extra={"intervals": scheduler.intervals, "tenant_ids": list(scheduler.tenant_ids)},
    )
    return scheduler


def _should_start_scheduler(app: Flask) -> bool:
    if not app.config.get("REMINDERS_ENABLED", False):
        return False
    if app.config.get("TESTING"):
        return False
    if app.debug:
        run_main = os.environ.get("WERKZEUG_RUN_MAIN")
        if run_main and run_main.lower() != "true":
            return False
    return True


def _int_config(app: Flask, key: str, default: int, min_value: int, max_value: int) -> int:
    try:
        value = int(app.config.get(key, default))
    except (TypeError, ValueError):
        value = default
    return max(min_value, min(value, max_value))
