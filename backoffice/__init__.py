import os

from flask import Flask, g, jsonify, request, session
from werkzeug.exceptions import HTTPException

from backoffice.config import Config
from backoffice.db import close_db, init_db
from backoffice.db_migrations import register_db_cli
from backoffice.observability import (
    configure_json_logging,
    ensure_request_id,
    mark_request_start,
    metrics_snapshot,
    observe_response,
    sweep_metrics_snapshot,
)


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class() if isinstance(config_class, type) else config_class)
    configure_json_logging(app)

    _ensure_database_dir(app)
    _register_error_handlers(app)
    _register_tenant(app)
    _register_auth(app)
    _register_services(app)
    _register_blueprints(app)
    _register_health(app)
    register_db_cli(app)
    _maybe_init_schema(app)

    _register_scheduler(app)
    app.teardown_appcontext(close_db)
    return app


def _ensure_database_dir(app: Flask) -> None:
    database_dir = app.config.get("DATABASE_DIR")
    if database_dir:
        os.makedirs(database_dir, exist_ok=True)


def _maybe_init_schema(app: Flask) -> None:
    auto_init = bool(app.config.get("DB_AUTO_INIT", False))
    if app.testing:
        # Tests stay self-contained without an external migration step.
        auto_init = True
    if not auto_init:
        return

    flask_env = (os.environ.get("FLASK_ENV", "development") or "development").strip().lower()
    if not app.testing and flask_env != "development":
        app.logger.warning("DB_AUTO_INIT ignored outside development.")
        return

    with app.app_context():
        init_db()


def _register_blueprints(app: Flask) -> None:
    from backoffice.routes.admin_routes import admin_bp
    from backoffice.routes.rfq_routes import rfq_bp
    from backoffice.routes.tender_routes import tender_bp

    app.register_blueprint(tender_bp)
    app.register_blueprint(rfq_bp)
    app.register_blueprint(admin_bp)


def _register_auth(app: Flask) -> None:
    from backoffice.auth import register_auth

    register_auth(app)


def _register_services(app: Flask) -> None:
    from backoffice.infrastructure.file_store import LocalFileStore
    from backoffice.infrastructure.notifications import build_notification_sender
    from backoffice.scheduler import ReminderScheduler

    app.extensions.setdefault("notification_sender", build_notification_sender(app.config))
    app.extensions.setdefault("file_store", LocalFileStore(app.config["FILE_STORAGE_DIR"]))
    app.extensions["reminder_scheduler"] = ReminderScheduler(app)


def _register_scheduler(app: Flask) -> None:
    from backoffice.scheduler import start_reminder_scheduler

    start_reminder_scheduler(app)


def _register_error_handlers(app: Flask) -> None:
    from backoffice.errors import AppError, SystemError

    @app.before_request
    def _ensure_request_id() -> None:
        ensure_request_id()
        mark_request_start()

    @app.after_request
    def _append_request_id(response):
        response.headers["X-Request-Id"] = ensure_request_id()
        return observe_response(response)

    def _log_error(error: AppError, request_id: str) -> None:
        log_method = app.logger.error if error.critical else app.logger.warning
        log_method(
            "application_error",
            extra={
                "request_id": request_id,
                "error_code": error.code,
                "http_status": error.http_status,
                "message_key": error.message_key,
                "details": error.details,
                "request_path": request.path,
                "http_method": request.method,
            },
            exc_info=error.critical,
        )

    @app.errorhandler(AppError)
    def _handle_app_error(exc: AppError):
        request_id = ensure_request_id()
        _log_error(exc, request_id)
        return jsonify(exc.to_response_payload(request_id)), exc.http_status

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc

        request_id = ensure_request_id()
        mapped = SystemError(
            code="unexpected_error",
            message_key="unexpected_error",
            http_status=500,
            critical=True,
            details=str(exc),
        )
        app.logger.exception(
            "unexpected_exception",
            extra={
                "request_id": request_id,
                "error_code": mapped.code,
                "request_path": request.path,
                "http_method": request.method,
            },
        )
        return jsonify(mapped.to_response_payload(request_id)), mapped.http_status


def _register_tenant(app: Flask) -> None:
    @app.before_request
    def load_tenant() -> None:
        session_tenant = (session.get("tenant_id") or "").strip()
        if session_tenant:
            g.tenant_id = session_tenant
            return

        # Prototype: allow overriding tenant via header for testing.
        header_tenant = (request.headers.get("X-Tenant-Id") or "").strip()
        if header_tenant:
            g.tenant_id = header_tenant
            return

        from backoffice.tenant import default_tenant_id

        g.tenant_id = default_tenant_id()


def _register_health(app: Flask) -> None:
    @app.route("/health")
    def health():
        db_path = app.config.get("DB_PATH") or "unknown"
        backend = "postgres" if str(db_path).startswith("postgres") else "sqlite"
        scheduler = app.extensions.get("reminder_scheduler")
        payload = {
            "status": "ok",
            "db": backend,
            "env": app.config.get("ENV", "unknown"),
            "metrics": {
                "http": metrics_snapshot(),
                "sweeps": sweep_metrics_snapshot(),
            },
        }
        if scheduler is not None:
            payload["scheduler"] = {
                "intervals": dict(scheduler.intervals),
                "tenant_ids": list(scheduler.tenant_ids),
                "running_jobs": sorted(job for job, guard in scheduler.guards.items() if guard.running),
            }
        return payload, 200
