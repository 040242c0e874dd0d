import os


def _bool_env(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


class Config:
    BASE_DIR = os.path.dirname(os.path.dirname(__file__))
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_DIR = None if DATABASE_URL else os.path.join(BASE_DIR, "database")
    DB_PATH = DATABASE_URL or os.path.join(DATABASE_DIR, "backoffice.db")
    DB_AUTO_INIT = _bool_env("DB_AUTO_INIT", False)

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-backoffice")
    AUTH_ENABLED = _bool_env("AUTH_ENABLED", True)
    # Trust X-User-Id/X-User-Role only behind a gateway that sets them.
    ALLOW_HEADER_IDENTITY = _bool_env("ALLOW_HEADER_IDENTITY", False)
    DEFAULT_TENANT_ID = os.environ.get("DEFAULT_TENANT_ID", "tenant-demo")
    ELEVATED_ROLES = os.environ.get("ELEVATED_ROLES", "admin,procurement_officer")

    LOG_JSON = _bool_env("LOG_JSON", True)
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    REMINDERS_ENABLED = _bool_env("REMINDERS_ENABLED", True)
    REMINDER_TENANT_IDS = os.environ.get("REMINDER_TENANT_IDS", "")
    REMINDER_IMMINENT_INTERVAL_SECONDS = _int_env("REMINDER_IMMINENT_INTERVAL_SECONDS", 30 * 60)
    REMINDER_UPCOMING_INTERVAL_SECONDS = _int_env("REMINDER_UPCOMING_INTERVAL_SECONDS", 60 * 60)
    REMINDER_DAILY_INTERVAL_SECONDS = _int_env("REMINDER_DAILY_INTERVAL_SECONDS", 24 * 60 * 60)
    FORCE_CLOSE_INTERVAL_SECONDS = _int_env("FORCE_CLOSE_INTERVAL_SECONDS", 10 * 60)
    REMINDER_IMMINENT_WINDOW_HOURS = _int_env("REMINDER_IMMINENT_WINDOW_HOURS", 24)
    REMINDER_UPCOMING_WINDOW_DAYS = _int_env("REMINDER_UPCOMING_WINDOW_DAYS", 7)
    DEADLINE_REMINDER_LOOKBACK_DAYS = _int_env("DEADLINE_REMINDER_LOOKBACK_DAYS", 7)
    DEADLINE_REMINDER_LOOKAHEAD_HOURS = _int_env("DEADLINE_REMINDER_LOOKAHEAD_HOURS", 24)

    NOTIFICATION_BACKEND = os.environ.get("NOTIFICATION_BACKEND", "smtp")
    # tenant-id:from-address[:display name], comma separated
    NOTIFICATION_SENDERS = os.environ.get("NOTIFICATION_SENDERS", "")
    SMTP_HOST = os.environ.get("SMTP_HOST")
    SMTP_PORT = _int_env("SMTP_PORT", 587)
    SMTP_USERNAME = os.environ.get("SMTP_USERNAME")
    SMTP_PASSWORD = os.environ.get("SMTP_PASSWORD")
    SMTP_USE_TLS = _bool_env("SMTP_USE_TLS", True)
    SMTP_TIMEOUT_SECONDS = _int_env("SMTP_TIMEOUT_SECONDS", 20)

    FILE_STORAGE_DIR = os.environ.get("FILE_STORAGE_DIR") or os.path.join(BASE_DIR, "storage")
    TASK_FILE_MAX_BYTES = _int_env("TASK_FILE_MAX_BYTES", 10 * 1024 * 1024)

    def __init__(self):
        env = os.environ.get("FLASK_ENV", "development").lower()
        if env == "production" and not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL is required in production.")
        if env == "production" and self.SECRET_KEY == "dev-secret-backoffice":
            raise RuntimeError("SECRET_KEY must be changed in production.")
