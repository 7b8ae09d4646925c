"""
Root URL configuration.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface
    /health/                       - Health check endpoint (load balancers, Docker)
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/auth/                  - JWT endpoints (simplejwt)
        token/                     - Obtain access/refresh pair (email + password)
        token/refresh/             - Rotate refresh token
    /api/v1/payments/              - Donation endpoints
        donations/                 - Start a checkout (POST)
        donations/{id}/            - Donation detail
        donations/{id}/verify/     - Verify payment status
        webhooks/stripe/           - Stripe webhook endpoint (POST)
    /api/v1/refunds/               - Refund endpoints
        decisions/                 - Current donor's refund decisions
        decisions/{id}/            - Submit a decision (POST)
        scheduler/run/             - Run the refund sweep (scheduler secret)
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
api_v1_patterns = [
    path("auth/token/", TokenObtainPairView.as_view(), name="token_obtain_pair"),
    path("auth/token/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
    path("payments/", include("payments.urls", namespace="payments")),
    path("refunds/", include("refunds.urls", namespace="refunds")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    path("admin/", admin.site.urls),
    path("health/", health_check, name="health_check"),
    path("api/v1/", include(api_v1_patterns)),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Donations Admin"
admin.site.site_title = "Donations Admin"
admin.site.index_title = "Campaigns, donations and refunds"
