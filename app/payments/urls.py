"""
URL configuration for the payments app.

Routes:
    - POST /donations/ - Start a donation checkout
    - GET  /donations/<donation_id>/ - Donation detail
    - POST /donations/<donation_id>/verify/ - Verify a donation payment
    - POST /webhooks/stripe/ - Stripe webhook endpoint

All routes are prefixed with /api/v1/payments/ when included in the main URLconf.
"""

from django.urls import path

from payments.views import DonationCheckoutView, DonationDetailView, DonationVerifyView
from payments.webhooks.views import stripe_webhook

app_name = "payments"

urlpatterns = [
    path("donations/", DonationCheckoutView.as_view(), name="donation-checkout"),
    path(
        "donations/<uuid:donation_id>/",
        DonationDetailView.as_view(),
        name="donation-detail",
    ),
    path(
        "donations/<uuid:donation_id>/verify/",
        DonationVerifyView.as_view(),
        name="donation-verify",
    ),
    # Webhook endpoints
    path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
]
