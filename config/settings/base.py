"""
Django settings for the e-CF compliance core - Base Configuration
Dominican Republic electronic invoicing (DGII e-CF).
"""

import os
from pathlib import Path
from typing import Any

# ===============================================================================
# CORE DJANGO SETTINGS
# ===============================================================================

BASE_DIR = Path(__file__).resolve().parent.parent.parent

# Application definition
DJANGO_APPS: list[str] = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
]

THIRD_PARTY_APPS: list[str] = [
    "rest_framework",
    "django_q",
]

LOCAL_APPS: list[str] = [
    "apps.audit",
    "apps.ecf",  # 🧾 Sequences, validation, lifecycle, contingency
]

INSTALLED_APPS: list[str] = DJANGO_APPS + THIRD_PARTY_APPS + LOCAL_APPS

MIDDLEWARE: list[str] = [
    "apps.common.middleware.RequestIDMiddleware",
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "config.urls"

WSGI_APPLICATION = "config.wsgi.application"
ASGI_APPLICATION = "config.asgi.application"

# ===============================================================================
# DATABASE CONFIGURATION
# ===============================================================================

DATABASES: dict[str, dict[str, Any]] = {
    "default": {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": os.environ.get("DB_NAME", "ecf"),
        "USER": os.environ.get("DB_USER", "ecf"),
        "PASSWORD": os.environ.get("DB_PASSWORD", "development_password"),
        "HOST": os.environ.get("DB_HOST", "localhost"),
        "PORT": os.environ.get("DB_PORT", "5432"),
        "CONN_MAX_AGE": 60,  # Database connection pooling
        "OPTIONS": {
            "application_name": "ecf_core",
        },
    }
}

# ===============================================================================
# INTERNATIONALIZATION & LOCALIZATION
# ===============================================================================

LANGUAGE_CODE = "es"
TIME_ZONE = "America/Santo_Domingo"
USE_I18N = True
USE_TZ = True

# ===============================================================================
# DJANGO REST FRAMEWORK
# ===============================================================================

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.IsAuthenticated",
    ],
    "DEFAULT_RENDERER_CLASSES": [
        "rest_framework.renderers.JSONRenderer",
    ],
    "UNAUTHENTICATED_USER": None,
}

# ===============================================================================
# DJANGO-Q2 TASK QUEUE
# ===============================================================================

Q_CLUSTER_BASE = {
    "name": "ecf-cluster",
    "timeout": 300,  # 5 minutes
    "retry": 600,  # 10 minutes retry delay
    "save_limit": 1000,  # Keep last 1000 task results
    "catch_up": False,  # Don't run missed scheduled tasks
    "orm": "default",
    "bulk": 10,
    "queue_limit": 100,
}

Q_CLUSTER = {
    **Q_CLUSTER_BASE,
    "workers": 2,
    "recycle": 500,
    "sync": False,
}

# ===============================================================================
# e-CF CONFIGURATION 🧾
# ===============================================================================

# DGII web services
ECF_DGII_ENVIRONMENT = os.environ.get("ECF_DGII_ENVIRONMENT", "testecf")  # testecf | certecf | ecf
ECF_DGII_API_TOKEN = os.environ.get("ECF_DGII_API_TOKEN", "")
ECF_DGII_TIMEOUT = int(os.environ.get("ECF_DGII_TIMEOUT", "30"))
ECF_DGII_MAX_RETRIES = int(os.environ.get("ECF_DGII_MAX_RETRIES", "3"))
ECF_DGII_RETRY_DELAY = float(os.environ.get("ECF_DGII_RETRY_DELAY", "1.0"))
ECF_DGII_MAX_RETRY_AFTER = float(os.environ.get("ECF_DGII_MAX_RETRY_AFTER", "60"))  # longest Retry-After honoured

# Signing
ECF_SIGNER_CLASS = os.environ.get("ECF_SIGNER_CLASS", "apps.ecf.gateways.DevelopmentSigner")

# Sequence allocation
ECF_ALLOCATION_MAX_RETRIES = 3
ECF_ALLOCATION_LOCK_TIMEOUT_MS = int(os.environ.get("ECF_ALLOCATION_LOCK_TIMEOUT_MS", "5000"))
ECF_SEQUENCE_LOW_WATERMARK = 0.10  # Warn when 10% of a range is left

# Polling & contingency
ECF_POLL_BATCH_SIZE = 100
ECF_RESUBMIT_BATCH_SIZE = 50
ECF_CONTINGENCY_URGENT_HOURS = 12

# Background jobs
ECF_SCHEDULE_TASKS = os.environ.get("ECF_SCHEDULE_TASKS", "false").lower() == "true"
ECF_METRICS_ENABLED = os.environ.get("ECF_METRICS_ENABLED", "true").lower() == "true"

# ===============================================================================
# DEFAULT AUTO FIELD
# ===============================================================================

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# ===============================================================================
# SECURITY SETTINGS (Base - override in prod.py)
# ===============================================================================

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY")
if not SECRET_KEY:
    # Development fallback - never use this in production
    import warnings

    warnings.warn(
        "🚨 SECURITY WARNING: Using default SECRET_KEY. "
        "Set DJANGO_SECRET_KEY environment variable for production!",
        UserWarning,
        stacklevel=2,
    )
    SECRET_KEY = "django-insecure-dev-key-only-change-in-production-or-tests"  # noqa: S105


def validate_production_secret_key() -> None:
    """Validate SECRET_KEY meets production security requirements"""
    if SECRET_KEY and SECRET_KEY.startswith("django-insecure-"):
        raise ValueError("🔥 CRITICAL SECURITY ERROR: Cannot use insecure SECRET_KEY in production!")
