"""
URL configuration for the refunds app.

Routes:
    - GET  /decisions/ - Current donor's refund decisions
    - POST /decisions/<decision_id>/ - Submit a decision
    - POST /scheduler/run/ - Run the refund sweep (scheduler secret)

All routes are prefixed with /api/v1/refunds/ when included in the main URLconf.
"""

from django.urls import path

from refunds.views import DecisionListView, DecisionSubmitView, RefundSchedulerView

app_name = "refunds"

urlpatterns = [
    path("decisions/", DecisionListView.as_view(), name="decision-list"),
    path(
        "decisions/<uuid:decision_id>/",
        DecisionSubmitView.as_view(),
        name="decision-submit",
    ),
    path("scheduler/run/", RefundSchedulerView.as_view(), name="scheduler-run"),
]
