"""
Django settings for the ERP catalog sync service.

All deployment-specific values come from environment variables (a local
``.env`` file is loaded if present).
"""

import os
from pathlib import Path

from celery.schedules import crontab
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent


def env_bool(name, default="False"):
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


SECRET_KEY = os.getenv("SECRET_KEY", "django-insecure-catalog-sync-dev-key")

DEBUG = env_bool("DEBUG")

ALLOWED_HOSTS = os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1").split(",")

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    "catalog",
]

DATABASES = {
    "default": {
        "ENGINE": os.getenv("DB_ENGINE", "django.db.backends.sqlite3"),
        "NAME": os.getenv("DB_NAME", str(BASE_DIR / "db.sqlite3")),
        "USER": os.getenv("DB_USER", ""),
        "PASSWORD": os.getenv("DB_PASSWORD", ""),
        "HOST": os.getenv("DB_HOST", ""),
        "PORT": os.getenv("DB_PORT", ""),
    }
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LANGUAGE_CODE = "en-us"

TIME_ZONE = os.getenv("TZ", "Europe/Istanbul")

USE_I18N = True

USE_TZ = True


# ERP (SOAP) connection

ERP_WSDL_URL = os.getenv("ERP_WSDL_URL", "")
ERP_ENDPOINT_URL = os.getenv("ERP_ENDPOINT_URL", "")
ERP_CONNECT_TIMEOUT = float(os.getenv("ERP_CONNECT_TIMEOUT", "10"))
ERP_OPERATION_TIMEOUT = float(os.getenv("ERP_OPERATION_TIMEOUT", "30"))

# Catalog sync

ERP_SYNC_ACCOUNT = os.getenv("ERP_SYNC_ACCOUNT", "")
ERP_SYNC_BATCH_SIZE = int(os.getenv("ERP_SYNC_BATCH_SIZE", "500"))
ERP_SYNC_RUN_TIMEOUT = float(os.getenv("ERP_SYNC_RUN_TIMEOUT", str(90 * 60)))
ERP_SYNC_LEASE_SECONDS = float(os.getenv("ERP_SYNC_LEASE_SECONDS", str(2 * 60 * 60)))
LOCAL_CURRENCY = os.getenv("LOCAL_CURRENCY", "TRY")
ALLOW_PRODUCT_SYNC = env_bool("ALLOW_PRODUCT_SYNC")
ENABLE_PRODUCT_CRON = env_bool("ENABLE_PRODUCT_CRON")
PRODUCT_CRON_HOURS = int(os.getenv("PRODUCT_CRON_HOURS", "3"))

# Exchange rates

EXCHANGE_RATE_URL = os.getenv("EXCHANGE_RATE_URL", "https://www.tcmb.gov.tr/kurlar/today.xml")
USD_TO_TRY_RATE = float(os.getenv("USD_TO_TRY_RATE", "33.50"))
EUR_TO_TRY_RATE = float(os.getenv("EUR_TO_TRY_RATE", "36.20"))


# Celery

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/0")
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_TIMEZONE = TIME_ZONE
CELERY_TASK_TIME_LIMIT = 2 * 60 * 60  # hard bound above ERP_SYNC_RUN_TIMEOUT

CELERY_BEAT_SCHEDULE = {}
if ENABLE_PRODUCT_CRON:
    CELERY_BEAT_SCHEDULE["sync-products"] = {
        "task": "catalog.sync_products",
        "schedule": crontab(minute=0, hour=f"*/{PRODUCT_CRON_HOURS}"),
        "kwargs": {"mode": "delta"},
    }
    CELERY_BEAT_SCHEDULE["refresh-exchange-rates"] = {
        "task": "catalog.refresh_exchange_rates",
        "schedule": crontab(minute=30, hour=15),  # TCMB publishes daily at 15:30
    }


# Logging

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{levelname} {asctime} {name} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": os.getenv("DJANGO_LOG_LEVEL", "WARNING"),
        },
        "catalog": {
            "handlers": ["console"],
            "level": os.getenv("LOG_LEVEL", "INFO"),
        },
    },
}
