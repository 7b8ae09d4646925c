"""
Core views providing infrastructure endpoints.

Used by container health checks and load balancers; not part of the
donation domain.
"""

from django.db import connection
from django.http import JsonResponse


def health_check(request):
    """
    Health check endpoint for monitoring and orchestration.

    Returns:
        200 with {"status": "healthy", "database": "connected", "cache": ...}
        503 when the database is unreachable. Cache problems degrade the
        report but do not fail it.
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "cache": "unknown",
    }
    is_healthy = True

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        health_status["database"] = "connected"
    except Exception:
        health_status["database"] = "disconnected"
        health_status["status"] = "unhealthy"
        is_healthy = False

    try:
        from django.core.cache import cache

        cache.set("health_check", "ok", timeout=1)
        if cache.get("health_check") == "ok":
            health_status["cache"] = "connected"
        else:
            health_status["cache"] = "disconnected"
    except Exception:
        health_status["cache"] = "disconnected"

    status_code = 200 if is_healthy else 503
    return JsonResponse(health_status, status=status_code)
