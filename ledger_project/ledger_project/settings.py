"""
Django settings for ledger_project.

Every deploy-specific value is read from the environment so the same
module serves local development (SQLite), CI and production (PostgreSQL).
"""
import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "insecure-dev-key-change-me")
DEBUG = os.environ.get("DJANGO_DEBUG", "0") == "1"
ALLOWED_HOSTS = os.environ.get("DJANGO_ALLOWED_HOSTS", "localhost").split(",")

INSTALLED_APPS = [
    "ledger_core.apps.LedgerCoreConfig",
]

DATABASES = {
    "default": {
        # sqlite for dev/tests, "django.db.backends.postgresql" in production
        "ENGINE": os.environ.get("LEDGER_DB_ENGINE", "django.db.backends.sqlite3"),
        "NAME": os.environ.get("LEDGER_DB_NAME", str(BASE_DIR / "db.sqlite3")),
        "USER": os.environ.get("LEDGER_DB_USER", ""),
        "PASSWORD": os.environ.get("LEDGER_DB_PASSWORD", ""),
        "HOST": os.environ.get("LEDGER_DB_HOST", ""),
        "PORT": os.environ.get("LEDGER_DB_PORT", ""),
        # every service call opens its own atomic block
        "ATOMIC_REQUESTS": False,
    }
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LANGUAGE_CODE = "en-us"
TIME_ZONE = os.environ.get("LEDGER_TIME_ZONE", "Europe/Belgrade")
USE_I18N = True
USE_TZ = True

# ---------- Celery ----------
CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND", None)
CELERY_TASK_ALWAYS_EAGER = os.environ.get("CELERY_TASK_ALWAYS_EAGER", "0") == "1"
CELERY_TASK_SERIALIZER = "json"
CELERY_ACCEPT_CONTENT = ["json"]

# ---------- Ledger ----------
# Tie policy and partner-name threshold used by bank auto-matching
LEDGER_MATCH_POLICY = {
    "MIN_TOKEN_OVERLAP": os.environ.get("LEDGER_MIN_TOKEN_OVERLAP", "0.5"),
    "REVIEW_TIES": True,
}
# Book a journal entry for every payment created from a bank transaction
LEDGER_BOOK_PAYMENTS = os.environ.get("LEDGER_BOOK_PAYMENTS", "0") == "1"
LEDGER_BANK_ACCOUNT_CODE = os.environ.get("LEDGER_BANK_ACCOUNT_CODE", "241")
LEDGER_RECEIVABLE_ACCOUNT_CODE = os.environ.get("LEDGER_RECEIVABLE_ACCOUNT_CODE", "204")

# ---------- Logging ----------
LOG_LEVEL = os.environ.get("LEDGER_LOG_LEVEL", "INFO")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "loggers": {
        "ledger_core": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
        "celery": {
            "handlers": ["console"],
            "level": "INFO",
        },
    },
}
