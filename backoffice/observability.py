from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Dict

from flask import g, has_request_context, request


_LOG_REQUEST_ID_CTX: contextvars.ContextVar[str] = contextvars.ContextVar("log_request_id", default="")

SWEEP_COUNTER_KEYS = ("runs", "skipped_in_flight", "errors", "matched", "sent", "failed", "skipped", "closed")


def _normalize_request_id(value: str | None) -> str:
    return str(value or "").strip() or "n/a"


def set_log_request_id(request_id: str | None) -> None:
    _LOG_REQUEST_ID_CTX.set(_normalize_request_id(request_id))


@contextlib.contextmanager
def bind_request_id(request_id: str | None):
    token = _LOG_REQUEST_ID_CTX.set(_normalize_request_id(request_id))
    try:
        yield _LOG_REQUEST_ID_CTX.get()
    finally:
        _LOG_REQUEST_ID_CTX.reset(token)


def new_run_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def _background_request_id(default: str | None = None) -> str:
    request_id = str(_LOG_REQUEST_ID_CTX.get() or "").strip()
    if request_id:
        return request_id
    return default or "n/a"


class JsonLogFormatter(logging.Formatter):
    _base_keys = {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
    }

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, object] = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if has_request_context():
            payload["request_id"] = current_request_id(default="n/a")
            payload["path"] = request.path
            payload["method"] = request.method
            if request.url_rule is not None:
                payload["route"] = request.url_rule.rule
        else:
            record_request_id = str(getattr(record, "request_id", "") or "").strip()
            payload["request_id"] = record_request_id or _background_request_id(default="n/a")

        for key, value in record.__dict__.items():
            if key in self._base_keys or key.startswith("_"):
                continue
            if key in payload or callable(value):
                continue
            payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, separators=(",", ":"), default=str)


def configure_json_logging(app) -> None:
    if not bool(app.config.get("LOG_JSON", True)):
        return
    level_name = str(app.config.get("LOG_LEVEL", "INFO")).strip().upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)
    app.logger.handlers = []
    app.logger.propagate = True


def ensure_request_id() -> str:
    request_id = str(getattr(g, "request_id", "") or "").strip()
    if request_id:
        set_log_request_id(request_id)
        return request_id
    incoming = str(request.headers.get("X-Request-Id") or "").strip()
    request_id = incoming or str(uuid.uuid4())
    g.request_id = request_id
    set_log_request_id(request_id)
    return request_id


def current_request_id(default: str | None = None) -> str:
    if has_request_context():
        request_id = str(getattr(g, "request_id", "") or "").strip()
        if request_id:
            return request_id
    return _background_request_id(default=default)


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._requests_total = 0
        self._errors_total = 0
        self._by_route: Dict[str, Dict[str, float]] = {}
        self._sweeps: Dict[str, Dict[str, int]] = {}
        self._sweep_last_run: Dict[str, str] = {}

    def observe_http(self, method: str, route: str, status_code: int, duration_ms: float) -> None:
        method_key = str(method or "GET").strip().upper() or "GET"
        route_key = str(route or "unknown").strip() or "unknown"
        key = f"{method_key} {route_key}"
        with self._lock:
            bucket = self._by_route.setdefault(
                key,
                {"requests": 0.0, "errors": 0.0, "latency_sum_ms": 0.0, "latency_max_ms": 0.0},
            )
            bucket["requests"] += 1
            bucket["latency_sum_ms"] += max(0.0, float(duration_ms))
            bucket["latency_max_ms"] = max(bucket["latency_max_ms"], max(0.0, float(duration_ms)))
            self._requests_total += 1
            if int(status_code) >= 400:
                bucket["errors"] += 1
                self._errors_total += 1

    def _sweep_bucket(self, job: str) -> Dict[str, int]:
        return self._sweeps.setdefault(job, {name: 0 for name in SWEEP_COUNTER_KEYS})

    def observe_sweep(self, job: str, counters: Dict[str, int] | None = None) -> None:
        job_key = str(job or "unknown").strip() or "unknown"
        with self._lock:
            bucket = self._sweep_bucket(job_key)
            bucket["runs"] += 1
            for name, value in (counters or {}).items():
                if name in bucket and name != "runs":
                    bucket[name] += max(0, int(value or 0))
            self._sweep_last_run[job_key] = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

    def observe_sweep_skipped(self, job: str) -> None:
        job_key = str(job or "unknown").strip() or "unknown"
        with self._lock:
            self._sweep_bucket(job_key)["skipped_in_flight"] += 1

    def observe_sweep_error(self, job: str) -> None:
        job_key = str(job or "unknown").strip() or "unknown"
        with self._lock:
            self._sweep_bucket(job_key)["errors"] += 1

    def snapshot(self) -> dict:
        with self._lock:
            routes = {}
            for key, bucket in self._by_route.items():
                requests = max(1.0, bucket["requests"])
                routes[key] = {
                    "requests": int(bucket["requests"]),
                    "errors": int(bucket["errors"]),
                    "latency_avg_ms": round(bucket["latency_sum_ms"] / requests, 2),
                    "latency_max_ms": round(bucket["latency_max_ms"], 2),
                }
            return {
                "requests_total": self._requests_total,
                "errors_total": self._errors_total,
                "routes": routes,
                "sweeps": {job: dict(bucket) for job, bucket in self._sweeps.items()},
                "sweep_last_run": dict(self._sweep_last_run),
            }

    def sweep_snapshot(self) -> dict:
        with self._lock:
            return {
                job: dict(bucket, last_run=self._sweep_last_run.get(job))
                for job, bucket in self._sweeps.items()
            }

    def reset(self) -> None:
        with self._lock:
            self._requests_total = 0
            self._errors_total = 0
            self._by_route = {}
            self._sweeps = {}
            self._sweep_last_run = {}


_METRICS = MetricsRegistry()


def mark_request_start() -> None:
    g._request_started_at = time.perf_counter()


def observe_response(response):
    started = float(getattr(g, "_request_started_at", 0.0) or 0.0)
    elapsed_ms = 0.0
    if started > 0.0:
        elapsed_ms = (time.perf_counter() - started) * 1000.0
    route = request.url_rule.rule if request.url_rule is not None else request.path
    _METRICS.observe_http(request.method, route, int(response.status_code), elapsed_ms)
    response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.2f}"
    response.headers["X-Request-Id"] = current_request_id(default="n/a")
    return response


def observe_sweep(job: str, counters: Dict[str, int] | None = None) -> None:
    _METRICS.observe_sweep(job, counters)


def observe_sweep_skipped(job: str) -> None:
    _METRICS.observe_sweep_skipped(job)


def observe_sweep_error(job: str) -> None:
    _METRICS.observe_sweep_error(job)


def metrics_snapshot() -> dict:
    return _METRICS.snapshot()


def sweep_metrics_snapshot() -> dict:
    return _METRICS.sweep_snapshot()


def reset_metrics_for_tests() -> None:
    _METRICS.reset()
    set_log_request_id(None)
