"""
Root pytest configuration for the Django project.

Provides environment defaults so the settings module can be imported
without a .env file, then boots Django. App-specific fixtures are
defined in each app's tests/conftest.py.
"""

import os
import tempfile

import django

# Ensure Django settings are configured before any tests run
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("DEBUG", "False")
os.environ.setdefault("SECURE_SSL_REDIRECT", "False")
os.environ.setdefault(
    "DATABASE_URL",
    "sqlite:///" + os.path.join(tempfile.gettempdir(), "donations-test.sqlite3"),
)
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_dummy")
os.environ.setdefault("SCHEDULER_SECRET", "scheduler-test-secret")


def pytest_configure():
    """Configure Django settings before tests run."""
    django.setup()
