"""
Django settings for the ledger project.

Everything environment specific is read from environment variables so the
same module serves local development, the test suite and workers.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get("LEDGER_SECRET_KEY", "insecure-dev-key-change-me")

DEBUG = os.environ.get("LEDGER_DEBUG", "1") == "1"

ALLOWED_HOSTS = os.environ.get("LEDGER_ALLOWED_HOSTS", "localhost").split(",")

INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "ledger_core",
]

# Must be set before the first migrate
AUTH_USER_MODEL = "ledger_core.User"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# ---------- Database ----------
# SQLite by default, PostgreSQL when LEDGER_DB_ENGINE=postgresql
if os.environ.get("LEDGER_DB_ENGINE") == "postgresql":
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.environ.get("LEDGER_DB_NAME", "ledger"),
            "USER": os.environ.get("LEDGER_DB_USER", "ledger"),
            "PASSWORD": os.environ.get("LEDGER_DB_PASSWORD", ""),
            "HOST": os.environ.get("LEDGER_DB_HOST", "localhost"),
            "PORT": os.environ.get("LEDGER_DB_PORT", "5432"),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": os.environ.get("LEDGER_DB_NAME", str(BASE_DIR / "db.sqlite3")),
        }
    }

USE_TZ = True
TIME_ZONE = "UTC"

# ---------- Celery ----------
CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND", CELERY_BROKER_URL)
CELERY_TASK_ALWAYS_EAGER = os.environ.get("CELERY_TASK_ALWAYS_EAGER", "0") == "1"
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_ACCEPT_CONTENT = ["json"]

# ---------- Ledger engine ----------
# Read through ledger_core.conf.ledger_setting(), which supplies defaults
LEDGER = {
    "BALANCE_TOLERANCE": "0.001",
    "MATCH_DATE_TOLERANCE_DAYS": 30,
    "MATCH_CONFIDENCE_THRESHOLD": 50,
    "FX_GAIN_ACCOUNT_CODE": "4300",
    "FX_LOSS_ACCOUNT_CODE": "7100",
    "EXCHANGE_RATE_API_URL": os.environ.get(
        "EXCHANGERATE_API_URL", "https://v6.exchangerate-api.com/v6"
    ),
    "EXCHANGE_RATE_API_KEY": os.environ.get("EXCHANGERATE_API_KEY", ""),
    "EXCHANGE_RATE_TIMEOUT": 10.0,
}

# ---------- Logging ----------
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
    "loggers": {
        "ledger_core": {
            "handlers": ["console"],
            "level": os.environ.get("LEDGER_LOG_LEVEL", "INFO"),
            "propagate": False,
        },
    },
}
