"""
Test settings for the e-CF compliance core
Fast, isolated testing environment.
"""

import os
import tempfile
from typing import Any

from .base import *  # noqa: F403

# ===============================================================================
# TEST FLAGS
# ===============================================================================

DEBUG = False
ALLOWED_HOSTS = ["testserver", "localhost"]

SECRET_KEY = "django-insecure-test-key-only"  # noqa: S105

# ===============================================================================
# TEST DATABASE (file-backed SQLite so threaded allocation tests share it)
# ===============================================================================

# BEGIN IMMEDIATE takes the write lock up front, so concurrent allocations
# queue on the busy timeout instead of failing on a lock upgrade.
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": os.path.join(tempfile.gettempdir(), "ecf_core.sqlite3"),
        "OPTIONS": {
            "timeout": 20,
            "transaction_mode": "IMMEDIATE",
            "init_command": "PRAGMA synchronous=OFF",
        },
        "TEST": {
            "NAME": os.path.join(tempfile.gettempdir(), f"test_ecf_core_{os.getpid()}.sqlite3"),
            "SERIALIZE": False,
        },
    }
}


# Disable migrations for faster tests
class DisableMigrations:
    def __contains__(self, item: str) -> bool:
        return True

    def __getitem__(self, item: str) -> None:
        return None


MIGRATION_MODULES = DisableMigrations()

# ===============================================================================
# TEST LOGGING (Minimal)
# ===============================================================================

LOGGING: dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,
    "handlers": {
        "null": {
            "class": "logging.NullHandler",
        },
    },
    "root": {
        "handlers": ["null"],
        "level": "CRITICAL",
    },
}

# ===============================================================================
# DJANGO-Q2 (Synchronous execution in tests)
# ===============================================================================

Q_CLUSTER = {
    **Q_CLUSTER_BASE,  # noqa: F405
    "workers": 1,
    "sync": True,
}

# ===============================================================================
# e-CF (Deterministic)
# ===============================================================================

ECF_SCHEDULE_TASKS = False
ECF_METRICS_ENABLED = False
ECF_DGII_API_TOKEN = "test-token"  # noqa: S105
ECF_DGII_RETRY_DELAY = 0.0
ECF_ALLOCATION_LOCK_TIMEOUT_MS = 0
