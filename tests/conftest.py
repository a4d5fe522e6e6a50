# ===============================================================================
# PYTEST CONFIGURATION FOR THE e-CF COMPLIANCE CORE
# ===============================================================================
"""
Global test configuration.

Test Structure:
- tests/ mirrors apps/ structure for app-specific tests
- tests/factories/ holds model builders shared across apps

Test Discovery:
- Run specific app tests: pytest tests/ecf/
- Run all tests: pytest tests/
"""

import os

import django


def pytest_configure():
    """Configure Django settings for pytest"""
    os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings.test")

    # Configure Django
    django.setup()
