"""
Shared pytest configuration for the Django apps.

Adjusts settings for fast, isolated test runs and auto-marks tests by
file name. App-specific fixtures live in each app's tests/conftest.py.
"""

import pytest


def pytest_configure():
    """Tune settings for the test run."""
    from django.conf import settings

    # Disable throttling during tests to prevent rate limit failures
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_CLASSES"] = []
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"] = {}

    # Use fast password hasher for tests (PBKDF2 is too slow with 870K iterations)
    settings.PASSWORD_HASHERS = [
        "django.contrib.auth.hashers.MD5PasswordHasher",
    ]

    # No Redis in the test environment; lock tests patch the connection
    settings.CACHES = {
        "default": {"BACKEND": "django.core.cache.backends.locmem.LocMemCache"}
    }

    # Tasks queued from views run inline unless a test patches .delay
    settings.CELERY_TASK_ALWAYS_EAGER = True
    settings.CELERY_TASK_EAGER_PROPAGATES = True

    settings.NOTIFICATION_DISPATCHER = (
        "notifications.dispatchers.DatabaseNotificationDispatcher"
    )


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_integration.py → e2e (full donation / refund journeys)
    - test_views.py, test_services.py, test_tasks.py, etc. → integration
    - test_models.py, test_fees.py, test_locks.py, etc. → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    e2e_patterns = ["test_integration.py"]

    integration_patterns = [
        "test_views.py",
        "test_services.py",
        "test_tasks.py",
        "test_webhooks.py",
        "test_handlers.py",
        "test_scanner.py",
        "test_state_machine.py",
        "test_event_ledger.py",
        "test_execution.py",
        "test_ledger_concurrency.py",
    ]

    unit_patterns = [
        "test_models.py",
        "test_fees.py",
        "test_managers.py",
        "test_adapters.py",
        "test_locks.py",
        "test_exceptions.py",
        "test_dispatchers.py",
    ]

    for item in items:
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filename = str(item.fspath).split("/")[-1]

        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in integration_patterns):
            item.add_marker(pytest.mark.integration)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            item.add_marker(pytest.mark.integration)


@pytest.fixture(autouse=True)
def redis_client(mocker):
    """
    Mock Redis client behind DistributedLock.

    Every lock is granted by default. Tests for contention set
    ``redis_client.set.return_value = False``.
    """
    client = mocker.MagicMock()
    client.set.return_value = True
    client.eval.return_value = 1
    mocker.patch("payments.locks.get_redis_connection", return_value=client)
    return client
